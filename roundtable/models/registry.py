"""Provider registry: picks a completion adapter from configuration."""
from __future__ import annotations

from typing import Any, Callable, Dict
import logging

from roundtable.config import Config
from roundtable.errors import ConfigError
from roundtable.models.base import CompletionProvider
from roundtable.models.gemini import GeminiClient
from roundtable.models.ollama import OllamaClient
from roundtable.models.openai_compat import OpenAIClient

logger = logging.getLogger(__name__)


def _build_openai(settings: Dict[str, Any]) -> CompletionProvider:
    return OpenAIClient(
        model=settings.get("model", "gpt-4o"),
        api_key=settings.get("api_key"),
        base_url=settings.get("base_url", "https://api.openai.com/v1"),
        timeout_seconds=float(settings.get("timeout_seconds", 120)),
    )


def _build_ollama(settings: Dict[str, Any]) -> CompletionProvider:
    return OllamaClient(
        model=settings.get("model", "qwen2.5:14b"),
        base_url=settings.get("base_url", "http://localhost:11434"),
        timeout_seconds=float(settings.get("timeout_seconds", 120)),
    )


def _build_gemini(settings: Dict[str, Any]) -> CompletionProvider:
    kwargs: Dict[str, Any] = {
        "model": settings.get("model", "2.5-flash"),
        "api_key": settings.get("api_key"),
        "timeout_seconds": float(settings.get("timeout_seconds", 120)),
    }
    if settings.get("base_url"):
        kwargs["base_url"] = settings["base_url"]
    client = GeminiClient(**kwargs)
    if not client.available:
        logger.warning("GEMINI_API_KEY not set; Gemini calls will fail")
    return client


PROVIDERS: Dict[str, Callable[[Dict[str, Any]], CompletionProvider]] = {
    "openai": _build_openai,
    "ollama": _build_ollama,
    "gemini": _build_gemini,
}


def build_provider(config: Config) -> CompletionProvider:
    settings = dict(config.provider)
    kind = str(settings.get("kind", "openai")).lower()
    factory = PROVIDERS.get(kind)
    if factory is None:
        raise ConfigError(f"Unknown provider kind {kind!r}; expected one of {sorted(PROVIDERS)}")
    # The packaged base_url targets OpenAI; other kinds fall back to their own default.
    if kind != "openai" and settings.get("base_url") == "https://api.openai.com/v1":
        settings.pop("base_url")
    provider = factory(settings)
    logger.info("Using %s provider (model=%s)", kind, getattr(provider, "model", "?"))
    return provider
