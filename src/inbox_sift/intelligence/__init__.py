"""LLM-powered analysis services."""

from .analyzer import AnalysisReport, BatchAnalyzer
from .fingerprint import fingerprint, fingerprint_item
from .llm import (
    AnthropicApiClient,
    ClaudeCliClient,
    FallbackLLMClient,
    LLMClient,
    LLMError,
    ReasoningBackend,
    build_llm_client,
)
from .reminder_drafter import ReminderDraft, ReminderDrafter

__all__ = [
    "AnalysisReport",
    "AnthropicApiClient",
    "BatchAnalyzer",
    "ClaudeCliClient",
    "FallbackLLMClient",
    "LLMClient",
    "LLMError",
    "ReasoningBackend",
    "ReminderDraft",
    "ReminderDrafter",
    "build_llm_client",
    "fingerprint",
    "fingerprint_item",
]
