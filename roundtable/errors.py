"""Typed errors raised by Roundtable."""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import hashlib
import uuid


# Provider failures
PROVIDER_CONNECTION_FAILED = "E001"
TIMEOUT_EXCEEDED = "E003"
RATE_LIMIT_EXCEEDED = "E004"
API_KEY_INVALID = "E005"

# Validation and security
PROMPT_INJECTION_DETECTED = "E101"
RESPONSE_VALIDATION_FAILED = "E102"
FAKE_DATA_DETECTED = "E104"

# Internal
AGENT_NOT_FOUND = "E204"
INVALID_CONFIG = "E205"


def new_run_id() -> str:
    return str(uuid.uuid4())


def hash_prompt(prompt: str) -> str:
    return "sha256:" + hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16]


@dataclass
class ErrorContext:
    run_id: str = field(default_factory=new_run_id)
    role: Optional[str] = None
    action: Optional[str] = None
    prompt_hash: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class AgentError(Exception):
    """Base error carrying a code and structured run context."""

    def __init__(
        self,
        code: str,
        message: str,
        context: ErrorContext | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context or ErrorContext()
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "context": asdict(self.context),
            "timestamp": self.timestamp,
            "recoverable": self.recoverable,
        }


class ValidationError(AgentError):
    """Raised when a response fails enforced validation checks."""

    def __init__(
        self,
        failures: List[str],
        context: ErrorContext | None = None,
        code: str = RESPONSE_VALIDATION_FAILED,
    ) -> None:
        super().__init__(code, f"Validation failed: {', '.join(failures)}", context)
        self.failures = list(failures)


class SecurityError(AgentError):
    """Raised when a response trips an enforced security check."""

    CODES = {
        "prompt_injection": PROMPT_INJECTION_DETECTED,
        "unsafe_code": RESPONSE_VALIDATION_FAILED,
    }

    def __init__(self, kind: str, message: str, context: ErrorContext | None = None) -> None:
        super().__init__(self.CODES.get(kind, RESPONSE_VALIDATION_FAILED), message, context)
        self.kind = kind


class ProviderError(AgentError):
    """Base for completion provider failures. Retrying is left to the caller."""


class ProviderConnectionError(ProviderError):
    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        context: ErrorContext | None = None,
        code: str = PROVIDER_CONNECTION_FAILED,
    ) -> None:
        super().__init__(code, message, context, recoverable=True)
        self.provider = provider
        self.status_code = status_code


class RateLimitError(ProviderError):
    def __init__(
        self,
        provider: str,
        retry_after_ms: int | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        message = f"{provider} rate limit exceeded"
        if retry_after_ms:
            message += f". Retry after {retry_after_ms}ms"
        super().__init__(RATE_LIMIT_EXCEEDED, message, context, recoverable=True)
        self.provider = provider
        self.retry_after_ms = retry_after_ms


class AgentNotFoundError(AgentError):
    def __init__(self, role: str) -> None:
        super().__init__(AGENT_NOT_FOUND, f"Unknown agent role: {role}", ErrorContext(role=role))
        self.role = role


class ConfigError(AgentError):
    def __init__(self, message: str) -> None:
        super().__init__(INVALID_CONFIG, message)
