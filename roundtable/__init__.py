"""Roundtable: multi-persona LLM deliberation."""

__version__ = "0.1.0"
