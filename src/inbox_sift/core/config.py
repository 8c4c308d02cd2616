"""Application configuration models and loader utilities."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator


class ImapSettings(BaseModel):
    """Settings controlling IMAP connectivity for a single account."""

    host: str = Field(default="imap.gmail.com", description="IMAP hostname")
    port: int = Field(default=993, description="IMAP port, typically 993 for SSL")
    username: str | None = Field(default=None, description="Account username")
    app_password: str | None = Field(default=None, description="Gmail app password")
    mailbox: str = Field(default="INBOX", description="Mailbox to triage")
    use_ssl: bool = Field(default=True, description="Whether to enforce SSL")


class AccountSettings(BaseModel):
    """A mail account whose starred and unread messages are triaged."""

    name: str = Field(description="Short account name shown next to items")
    email: str = Field(description="Address of the account")
    group: str = Field(description="Logical group used for filtering")
    imap: ImapSettings = Field(default_factory=ImapSettings)


class LlmSettings(BaseModel):
    """Settings for the reasoning backend (local CLI first, metered API second)."""

    prefer_cli: bool = Field(
        default=True, description="Try the local CLI tool before the HTTP API"
    )
    cli_command: str = Field(default="claude", description="Local CLI executable")
    cli_timeout_seconds: float = Field(
        default=300, gt=0, description="Hard timeout for one CLI invocation"
    )
    cli_max_retries: int = Field(
        default=2, ge=0, description="Retries after a failed CLI invocation"
    )
    cli_retry_backoff_seconds: float = Field(
        default=2.0, ge=0, description="Fixed delay between CLI retries"
    )
    api_key: str | None = Field(default=None, description="Metered API credential")
    api_base_url: str = Field(
        default="https://api.anthropic.com", description="Messages API base URL"
    )
    api_model: str = Field(
        default="claude-sonnet-4-20250514", description="Model identifier"
    )
    api_version: str = Field(default="2023-06-01", description="API version header")
    max_output_tokens: int = Field(
        default=4096,
        ge=32,
        description="Maximum tokens to request from the provider",
    )
    timeout_seconds: float = Field(
        default=120, gt=0, description="Request timeout for API calls"
    )


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./.cache/sift.db"), description="SQLite database path"
    )


class TrackerListSettings(BaseModel):
    """A tracker list merged into the action list."""

    list: str = Field(description="Name of the reminders list")
    group: str = Field(description="Group the list's entries belong to")


class TrackerSettings(BaseModel):
    """Settings for the external task tracker."""

    enabled: bool = Field(default=True, description="Query the tracker at all")
    command: str = Field(default="remindctl", description="Tracker CLI executable")
    lists: list[TrackerListSettings] = Field(
        default_factory=lambda: [TrackerListSettings(list="Work", group="Work")]
    )
    timeout_seconds: float = Field(
        default=30, gt=0, description="Timeout for one tracker command"
    )
    thread_url_template: str | None = Field(
        default=None,
        description="Link placed in reminder notes, formatted with {thread_id}",
    )

    @field_validator("lists", mode="before")
    @classmethod
    def _decode_lists(cls, value: Any) -> Any:
        return _decode_json_list(value)

    @property
    def default_list(self) -> str:
        """List that receives reminders created from action items."""
        return self.lists[0].list if self.lists else "Work"


class AnalysisSettings(BaseModel):
    """Settings controlling batching and classification windows."""

    batch_size: int = Field(
        default=50, ge=1, description="Items submitted per backend call"
    )
    backlog_days: int = Field(
        default=30, ge=0, description="Items older than this go to the backlog"
    )
    starred_limit: int = Field(
        default=200, ge=0, description="Starred messages fetched per account"
    )
    unread_limit: int = Field(
        default=100, ge=0, description="Unread messages fetched per account"
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle brace-style structured log lines"
    )
    file_path: Path | None = Field(
        default=None, description="Also append log records to this file"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    accounts: list[AccountSettings] = Field(default_factory=list)
    llm: LlmSettings = Field(default_factory=LlmSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("accounts", mode="before")
    @classmethod
    def _decode_accounts(cls, value: Any) -> Any:
        return _decode_json_list(value)

    def account_groups(self) -> list[str]:
        """Return distinct account groups in configuration order."""
        groups: list[str] = []
        for account in self.accounts:
            if account.group not in groups:
                groups.append(account.group)
        return groups


ENV_PREFIX = "INBOX_SIFT_"


def _decode_json_list(value: Any) -> Any:
    """Allow list settings to be supplied as a JSON string."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError("expected a JSON list") from exc
    return value


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = {}
    if include_environment:
        env_values = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment=include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


def validate_settings(settings: AppSettings) -> list[str]:
    """Return human readable problems that prevent a triage run."""
    errors: list[str] = []
    if not settings.accounts:
        errors.append("No accounts configured")
    for account in settings.accounts:
        if not account.name:
            errors.append("Account missing 'name'")
        if not account.email:
            errors.append("Account missing 'email'")
        if not account.group:
            errors.append("Account missing 'group'")
    if not settings.llm.api_key and not settings.llm.prefer_cli:
        if not os.environ.get("ANTHROPIC_API_KEY"):
            errors.append("No API key configured and the CLI tool is disabled")
    return errors


__all__ = [
    "AccountSettings",
    "AnalysisSettings",
    "AppSettings",
    "ImapSettings",
    "LlmSettings",
    "LoggingSettings",
    "StorageSettings",
    "TrackerListSettings",
    "TrackerSettings",
    "load_app_settings",
    "validate_settings",
]
