"""Runtimes: one blocking, non-streaming backend call per request.

A runtime builds the SDK client and sends an already-encoded
``ProviderRequest``. Every failure surfaces as ``BackendError`` with the
upstream message passed through; no retries happen at this layer.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, Type

import openai
from anthropic import Anthropic
from google import genai
from openai import OpenAI

from .errors import BackendError, ConfigError
from .provider_adapters import ProviderRequest

logger = logging.getLogger(__name__)


class ProviderRuntime(Protocol):
    runtime_id: str

    def create_client(self, api_key: str, *, base_url: Optional[str] = None) -> Any:
        ...

    def send(self, client: Any, request: ProviderRequest) -> Any:
        ...


def _status_error_message(exc: Any, fallback: str) -> str:
    """Pull ``error.message`` out of an upstream error body when present."""
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
        if body.get("message"):
            return str(body["message"])
    return str(getattr(exc, "message", "") or fallback)


# ---------------------------------------------------------------------------
# Gemini generateContent
# ---------------------------------------------------------------------------


class GeminiRuntime:
    runtime_id = "gemini_generate_content"

    def create_client(self, api_key: str, *, base_url: Optional[str] = None) -> Any:
        kwargs: Dict[str, Any] = {"api_key": api_key}
        if base_url:
            kwargs["http_options"] = {"base_url": base_url}
        return genai.Client(**kwargs)

    def send(self, client: Any, request: ProviderRequest) -> Any:
        try:
            return client.models.generate_content(**request.payload)
        except Exception as exc:
            message = getattr(exc, "message", None) or str(exc) or "Gemini API request failed"
            logger.error("gemini generate_content failed: %s", message)
            raise BackendError(str(message)) from exc


# ---------------------------------------------------------------------------
# Anthropic Messages
# ---------------------------------------------------------------------------


class AnthropicMessagesRuntime:
    runtime_id = "anthropic_messages"

    def create_client(self, api_key: str, *, base_url: Optional[str] = None) -> Any:
        kwargs: Dict[str, Any] = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        return Anthropic(**kwargs)

    def send(self, client: Any, request: ProviderRequest) -> Any:
        try:
            return client.messages.create(**request.payload)
        except Exception as exc:
            message = _status_error_message(exc, str(exc) or "Anthropic API request failed")
            logger.error("anthropic messages.create failed: %s", message)
            raise BackendError(message) from exc


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions (Groq, OpenAI, OpenRouter)
# ---------------------------------------------------------------------------


class OpenAIChatRuntime:
    runtime_id = "openai_chat"

    def create_client(self, api_key: str, *, base_url: Optional[str] = None) -> Any:
        kwargs: Dict[str, Any] = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        return OpenAI(**kwargs)

    def send(self, client: Any, request: ProviderRequest) -> Any:
        try:
            return client.chat.completions.create(**request.payload)
        except openai.APIStatusError as exc:
            message = _status_error_message(exc, "Chat completions API request failed")
            logger.error("chat.completions.create returned HTTP %s: %s", exc.status_code, message)
            raise BackendError(message, details={"status_code": exc.status_code}) from exc
        except Exception as exc:
            logger.error("chat.completions.create failed: %s", exc)
            raise BackendError(str(exc) or "Chat completions API request failed") from exc


RUNTIMES: Dict[str, Type[Any]] = {
    GeminiRuntime.runtime_id: GeminiRuntime,
    AnthropicMessagesRuntime.runtime_id: AnthropicMessagesRuntime,
    OpenAIChatRuntime.runtime_id: OpenAIChatRuntime,
}


def create_runtime(runtime_id: str) -> ProviderRuntime:
    runtime_cls = RUNTIMES.get(runtime_id)
    if runtime_cls is None:
        raise ConfigError(f"Unknown provider runtime '{runtime_id}'")
    return runtime_cls()


__all__ = [
    "AnthropicMessagesRuntime",
    "GeminiRuntime",
    "OpenAIChatRuntime",
    "ProviderRuntime",
    "RUNTIMES",
    "create_runtime",
]
