"""Persistence adapters."""

from .sqlite import SqliteAnalysisStore

__all__ = ["SqliteAnalysisStore"]
