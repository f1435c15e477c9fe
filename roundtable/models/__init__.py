"""Completion provider adapters."""
from roundtable.models.base import CompletionProvider, CompletionResult
from roundtable.models.registry import PROVIDERS, build_provider

__all__ = ["CompletionProvider", "CompletionResult", "PROVIDERS", "build_provider"]
