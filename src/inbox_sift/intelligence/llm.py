"""LLM client abstractions used by intelligence features."""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar
from urllib.parse import urljoin

import httpx
from pydantic import BaseModel, ValidationError

from inbox_sift.core.config import LlmSettings

LOGGER = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_PROBE_TIMEOUT_SECONDS = 5
_API_ATTEMPTS = 3


class LLMError(RuntimeError):
    """Raised when the LLM provider fails to respond as expected."""


class LLMClient(Protocol):
    """Protocol describing the minimal LLM client behaviour."""

    @property
    def provider_id(self) -> str:
        """Identifier describing the backing model/provider."""
        raise NotImplementedError

    def generate(self, prompt: str) -> str:
        """Return the raw text completion for ``prompt``."""
        raise NotImplementedError


Runner = Callable[..., subprocess.CompletedProcess[str]]


@dataclass(slots=True)
class ClaudeCliClient:
    """Run prompts through the locally installed, already authenticated CLI."""

    settings: LlmSettings
    runner: Runner = subprocess.run
    sleep: Callable[[float], None] = time.sleep
    _available: bool | None = field(default=None, init=False, repr=False)

    def is_available(self) -> bool:
        """Return whether the CLI executable answers ``--version``."""
        if self._available is None:
            try:
                result = self.runner(
                    [self.settings.cli_command, "--version"],
                    capture_output=True,
                    text=True,
                    timeout=_PROBE_TIMEOUT_SECONDS,
                    check=False,
                )
                self._available = result.returncode == 0
            except (OSError, subprocess.SubprocessError) as exc:
                LOGGER.debug("CLI probe for %s failed: %s", self.settings.cli_command, exc)
                self._available = False
        return self._available

    def generate(self, prompt: str) -> str:
        """Pipe ``prompt`` to the CLI and return its stdout."""
        command = [self.settings.cli_command, "-p", "--output-format", "text"]
        attempts = self.settings.cli_max_retries + 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                result = self.runner(
                    command,
                    input=prompt,
                    capture_output=True,
                    text=True,
                    timeout=self.settings.cli_timeout_seconds,
                    check=False,
                )
            except subprocess.TimeoutExpired as exc:
                last_error = exc
                LOGGER.warning(
                    "CLI timed out after %ss (attempt %d/%d)",
                    self.settings.cli_timeout_seconds,
                    attempt,
                    attempts,
                )
            except OSError as exc:
                raise LLMError(
                    f"Unable to launch {self.settings.cli_command}: {exc}"
                ) from exc
            else:
                if result.returncode == 0:
                    return result.stdout.strip()
                detail = (result.stderr or "").strip()
                last_error = LLMError(
                    detail or f"CLI exited with code {result.returncode}"
                )
                LOGGER.warning(
                    "CLI failed (attempt %d/%d): %s", attempt, attempts, last_error
                )

            if attempt < attempts:
                self.sleep(self.settings.cli_retry_backoff_seconds)

        raise LLMError(f"CLI request failed after {attempts} attempt(s)") from last_error

    @property
    def provider_id(self) -> str:
        """Return a human readable identifier for the CLI path."""
        return f"cli:{self.settings.cli_command}"


@dataclass(slots=True)
class AnthropicApiClient:
    """Thin synchronous client for the metered Messages HTTP API."""

    settings: LlmSettings
    api_key: str
    sleep: Callable[[float], None] = time.sleep

    def generate(self, prompt: str) -> str:
        """Send a single-turn message request and return the text reply."""
        endpoint = _resolve_endpoint(self.settings.api_base_url)
        payload: dict[str, object] = {
            "model": self.settings.api_model,
            "max_tokens": self.settings.max_output_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.settings.api_version,
            "content-type": "application/json",
        }
        data: dict[str, Any] | None = None
        last_error: Exception | None = None
        for attempt in range(1, _API_ATTEMPTS + 1):
            try:
                response = httpx.post(
                    endpoint,
                    json=payload,
                    headers=headers,
                    timeout=self.settings.timeout_seconds,
                )
                response.raise_for_status()
                data = response.json()
                break
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status != 429 and status < 500:
                    raise LLMError(f"API rejected the request ({status})") from exc
                last_error = exc
                LOGGER.warning(
                    "API request failed (attempt %d/%d): %s",
                    attempt,
                    _API_ATTEMPTS,
                    exc,
                )
            except httpx.HTTPError as exc:  # pragma: no cover - network dependent
                last_error = exc
                LOGGER.warning(
                    "API request failed (attempt %d/%d): %s",
                    attempt,
                    _API_ATTEMPTS,
                    exc,
                )
            except json.JSONDecodeError as exc:
                raise LLMError("API returned invalid JSON") from exc

            if attempt < _API_ATTEMPTS:
                self.sleep(min(2**attempt, 8))

        if data is None:
            raise LLMError("API request failed after retries") from last_error

        for block in data.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "text":
                return str(block.get("text", ""))
        raise LLMError("No text response from API")

    @property
    def provider_id(self) -> str:
        """Return a human readable identifier for the configured model."""
        return f"api:{self.settings.api_model}"


class FallbackLLMClient:
    """Prefer the local CLI and fall back to the metered API."""

    def __init__(
        self,
        cli: ClaudeCliClient | None,
        api: AnthropicApiClient | None,
        *,
        prefer_cli: bool = True,
    ) -> None:
        """Store the two paths; either may be missing."""
        self._cli = cli
        self._api = api
        self._prefer_cli = prefer_cli
        self._last_provider = "none"

    def generate(self, prompt: str) -> str:
        """Return a completion from the first path that succeeds."""
        if self._prefer_cli and self._cli is not None and self._cli.is_available():
            try:
                result = self._cli.generate(prompt)
                self._last_provider = self._cli.provider_id
                return result
            except LLMError as exc:
                if self._api is None:
                    raise
                LOGGER.warning("CLI path failed, falling back to API: %s", exc)

        if self._api is not None:
            result = self._api.generate(prompt)
            self._last_provider = self._api.provider_id
            return result

        raise LLMError(
            "No LLM available. Install the CLI tool or set ANTHROPIC_API_KEY."
        )

    @property
    def provider_id(self) -> str:
        """Return the identifier of the path that answered last."""
        return self._last_provider


def build_llm_client(settings: LlmSettings) -> FallbackLLMClient:
    """Assemble the CLI-then-API client chain from configuration."""
    api_key = settings.api_key or os.environ.get("ANTHROPIC_API_KEY")
    cli = ClaudeCliClient(settings) if settings.prefer_cli else None
    api = AnthropicApiClient(settings, api_key) if api_key else None
    return FallbackLLMClient(cli, api, prefer_cli=settings.prefer_cli)


class ReasoningBackend:
    """Invoke an LLM with a strict output schema."""

    def __init__(self, client: LLMClient) -> None:
        """Wrap ``client``; every call is validated against a pydantic model."""
        self._client = client

    @property
    def provider_id(self) -> str:
        """Identifier of the underlying client."""
        return self._client.provider_id

    def invoke(self, prompt: str, schema: type[ModelT]) -> ModelT:
        """Return the model response parsed into ``schema``.

        Payloads that are not JSON or fail validation raise :class:`LLMError`.
        """
        raw = self._client.generate(prompt)
        match = _JSON_OBJECT.search(raw)
        if match is None:
            raise LLMError("No JSON object in model response")
        try:
            return schema.model_validate_json(match.group(0))
        except ValidationError as exc:
            raise LLMError(
                f"Model response failed {schema.__name__} validation: {raw[:200]}"
            ) from exc


def _resolve_endpoint(base_url: str) -> str:
    trimmed = base_url.rstrip("/") + "/"
    return urljoin(trimmed, "v1/messages")


__all__ = [
    "AnthropicApiClient",
    "ClaudeCliClient",
    "FallbackLLMClient",
    "LLMClient",
    "LLMError",
    "ReasoningBackend",
    "build_llm_client",
]
