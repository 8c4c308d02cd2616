"""Core utilities for configuration, logging, and domain models."""

from .config import AppSettings, load_app_settings, validate_settings
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "configure_logging",
    "load_app_settings",
    "validate_settings",
]
