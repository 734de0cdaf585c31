"""
Provider adapters: translate the canonical tool-calling contract to each
backend family and normalize replies back into a CanonicalResponse.

Three independent implementations of one interface, selected by
configuration (see provider_routing):

- structured_declaration (Gemini): schema maps field-for-field, parts 1:1
- content_block (Anthropic): ``input_schema`` + ordered content blocks
- flat_chat (Groq/OpenAI-compatible): ``{"type": "function"}`` envelope,
  one string per turn, JSON-text arguments

Both ``encode`` and ``decode`` are pure. Network I/O lives in provider_runtime.
"""
from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .config import ProviderSettings, SafetySetting
from .errors import ArgumentParseError, ConfigError
from .provider_ir import (
    ActionCall,
    CanonicalResponse,
    ConversationTurn,
    build_canonical_response,
)
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderRequest:
    """Backend-specific call payload produced by ``encode``."""

    adapter_id: str
    payload: Dict[str, Any]
    warnings: Tuple[str, ...] = field(default=())


class ProviderAdapter(Protocol):
    adapter_id: str

    def encode(
        self,
        history: Sequence[ConversationTurn],
        file_system: Mapping[str, str],
        instruction: str,
    ) -> ProviderRequest:
        ...

    def decode(self, response: Any) -> CanonicalResponse:
        ...


# ---------------------------------------------------------------------------
# Shared helpers (functions, not a base class)
# ---------------------------------------------------------------------------


def _get_attr(obj: Any, *names: str, default: Any = None) -> Any:
    """Read the first present attribute/key among ``names`` from SDK objects or dicts."""
    if obj is None:
        return default
    for name in names:
        if isinstance(obj, Mapping):
            if name in obj and obj[name] is not None:
                return obj[name]
        elif getattr(obj, name, None) is not None:
            return getattr(obj, name)
    return default


def _as_dict(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    # Also covers proto-backed maps returned by some SDKs
    return dict(value)


def _result_payload(response: Any) -> Dict[str, Any]:
    return dict(response) if isinstance(response, Mapping) else {"result": response}


class _ToolCallIds:
    """Deterministic ids pairing historical calls with their results.

    Canonical history carries no call ids, so ids are derived from the turn
    and part position; results are matched to the oldest pending call of the
    same name (falling back to the oldest pending call).
    """

    def __init__(self, prefix: str):
        self.prefix = prefix
        self.pending: List[Tuple[str, str]] = []

    def issue(self, turn_idx: int, part_idx: int, name: str) -> str:
        call_id = f"{self.prefix}_{turn_idx:03d}_{part_idx:02d}"
        self.pending.append((name, call_id))
        return call_id

    def claim(self, name: str) -> Optional[str]:
        for idx, (pending_name, call_id) in enumerate(self.pending):
            if pending_name == name:
                del self.pending[idx]
                return call_id
        if self.pending:
            return self.pending.pop(0)[1]
        return None


# ---------------------------------------------------------------------------
# Structured-declaration variant (Gemini)
# ---------------------------------------------------------------------------


def _gemini_schema(schema: Mapping[str, Any]) -> Dict[str, Any]:
    """Canonical JSON schema -> Gemini Schema dict (upper-case type enum)."""
    out: Dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type":
            out["type"] = str(value).upper()
        elif key == "properties":
            out["properties"] = {name: _gemini_schema(sub) for name, sub in value.items()}
        elif key == "items":
            out["items"] = _gemini_schema(value)
        elif key == "additionalProperties":
            # Not expressible in the declaration schema; the description carries it.
            continue
        else:
            out[key] = value
    return out


class StructuredDeclarationAdapter:
    adapter_id = "structured_declaration"

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        model: str,
        safety_settings: Sequence[SafetySetting] = (),
    ):
        self.registry = registry
        self.model = model
        self.safety_settings = tuple(safety_settings)
        self._declarations = [
            {
                "name": tool.name,
                "description": tool.description,
                "parameters": _gemini_schema(tool.json_schema()),
            }
            for tool in registry
        ]

    def _encode_turn(self, turn: ConversationTurn) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = []
        for part in turn.parts:
            if part.text is not None:
                parts.append({"text": part.text})
            elif part.inline_image is not None:
                parts.append(
                    {"inline_data": {"mime_type": part.inline_image.mime_type, "data": part.inline_image.data}}
                )
            elif part.function_call is not None:
                parts.append({"function_call": {"name": part.function_call.name, "args": dict(part.function_call.args)}})
            elif part.function_result is not None:
                parts.append(
                    {
                        "function_response": {
                            "name": part.function_result.name,
                            "response": _result_payload(part.function_result.response),
                        }
                    }
                )
        return {"role": "model" if turn.role == "assistant" else "user", "parts": parts}

    def encode(
        self,
        history: Sequence[ConversationTurn],
        file_system: Mapping[str, str],
        instruction: str,
    ) -> ProviderRequest:
        contents = [self._encode_turn(turn) for turn in history if turn.parts]
        config: Dict[str, Any] = {
            "system_instruction": instruction,
            "tools": [{"function_declarations": copy.deepcopy(self._declarations)}],
        }
        if self.safety_settings:
            config["safety_settings"] = [
                {"category": s.category, "threshold": s.threshold} for s in self.safety_settings
            ]
        return ProviderRequest(
            adapter_id=self.adapter_id,
            payload={"model": self.model, "contents": contents, "config": config},
        )

    def decode(self, response: Any) -> CanonicalResponse:
        candidates = _get_attr(response, "candidates", default=[]) or []
        if not candidates:
            return CanonicalResponse()
        content = _get_attr(candidates[0], "content")
        text_chunks: List[str] = []
        actions: List[ActionCall] = []
        for part in _get_attr(content, "parts", default=[]) or []:
            if _get_attr(part, "thought", default=False):
                continue
            call = _get_attr(part, "function_call", "functionCall")
            if call is not None:
                actions.append(ActionCall(name=str(_get_attr(call, "name", default="")), args=_as_dict(_get_attr(call, "args"))))
                continue
            text = _get_attr(part, "text")
            if isinstance(text, str):
                text_chunks.append(text)
        return build_canonical_response(text_chunks, actions)


# ---------------------------------------------------------------------------
# Content-block variant (Anthropic)
# ---------------------------------------------------------------------------


class ContentBlockAdapter:
    adapter_id = "content_block"

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        model: str,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
        tool_choice: Any = None,
    ):
        self.registry = registry
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.tool_choice = tool_choice
        self._tools = [
            {"name": tool.name, "description": tool.description, "input_schema": tool.json_schema()}
            for tool in registry
        ]

    def _encode_messages(self, history: Sequence[ConversationTurn]) -> List[Dict[str, Any]]:
        ids = _ToolCallIds("toolu")
        messages: List[Dict[str, Any]] = []
        for turn_idx, turn in enumerate(history):
            blocks: List[Dict[str, Any]] = []
            for part_idx, part in enumerate(turn.parts):
                if part.text is not None:
                    if part.text:
                        blocks.append({"type": "text", "text": part.text})
                elif part.inline_image is not None:
                    blocks.append(
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": part.inline_image.mime_type,
                                "data": part.inline_image.data,
                            },
                        }
                    )
                elif part.function_call is not None:
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": ids.issue(turn_idx, part_idx, part.function_call.name),
                            "name": part.function_call.name,
                            "input": dict(part.function_call.args),
                        }
                    )
                elif part.function_result is not None:
                    payload = json.dumps(part.function_result.response, default=str)
                    call_id = ids.claim(part.function_result.name)
                    if call_id is None:
                        blocks.append({"type": "text", "text": f"[{part.function_result.name} result] {payload}"})
                    else:
                        blocks.append({"type": "tool_result", "tool_use_id": call_id, "content": payload})
            if blocks:
                messages.append({"role": turn.role, "content": blocks})
        return messages

    def encode(
        self,
        history: Sequence[ConversationTurn],
        file_system: Mapping[str, str],
        instruction: str,
    ) -> ProviderRequest:
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": int(self.max_tokens),
            "system": instruction,
            "messages": self._encode_messages(history),
            "tools": copy.deepcopy(self._tools),
        }
        if self.tool_choice is not None:
            payload["tool_choice"] = self.tool_choice
        if self.temperature is not None:
            payload["temperature"] = float(self.temperature)
        return ProviderRequest(adapter_id=self.adapter_id, payload=payload)

    def decode(self, response: Any) -> CanonicalResponse:
        text_chunks: List[str] = []
        actions: List[ActionCall] = []
        # Emission order of tool_use blocks is preserved for the engine.
        for block in _get_attr(response, "content", default=[]) or []:
            block_type = _get_attr(block, "type")
            if block_type == "text":
                text_chunks.append(str(_get_attr(block, "text", default="")))
            elif block_type == "tool_use":
                actions.append(
                    ActionCall(name=str(_get_attr(block, "name", default="")), args=_as_dict(_get_attr(block, "input")))
                )
        return build_canonical_response(text_chunks, actions)


# ---------------------------------------------------------------------------
# Flat-chat variant (Groq / OpenAI-compatible chat completions)
# ---------------------------------------------------------------------------


class FlatChatAdapter:
    """OpenAI-compatible chat completions.

    Limitation: message content is a single string per turn, so inline images
    in history are dropped. Each drop is logged and reported in
    ``ProviderRequest.warnings``.
    """

    adapter_id = "flat_chat"

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        model: str,
        temperature: Optional[float] = None,
        tool_choice: Any = None,
    ):
        self.registry = registry
        self.model = model
        self.temperature = temperature
        self.tool_choice = tool_choice
        self._tools = [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.json_schema(),
                },
            }
            for tool in registry
        ]

    def _encode_messages(
        self, history: Sequence[ConversationTurn], instruction: str
    ) -> Tuple[List[Dict[str, Any]], List[str]]:
        ids = _ToolCallIds("call")
        warnings: List[str] = []
        messages: List[Dict[str, Any]] = [{"role": "system", "content": instruction}]
        for turn_idx, turn in enumerate(history):
            dropped = sum(1 for p in turn.parts if p.inline_image is not None)
            if dropped:
                warnings.append(f"history[{turn_idx}]: {dropped} inline image(s) dropped; flat-chat turns carry text only")

            text = " ".join(turn.text_parts())
            if turn.role == "assistant":
                tool_calls = [
                    {
                        "id": ids.issue(turn_idx, part_idx, part.function_call.name),
                        "type": "function",
                        "function": {
                            "name": part.function_call.name,
                            "arguments": json.dumps(dict(part.function_call.args)),
                        },
                    }
                    for part_idx, part in enumerate(turn.parts)
                    if part.function_call is not None
                ]
                message: Dict[str, Any] = {"role": "assistant", "content": text or None}
                if tool_calls:
                    message["tool_calls"] = tool_calls
                if text or tool_calls:
                    messages.append(message)
                continue

            # Tool messages must directly follow the assistant message that issued the calls.
            orphan_results: List[str] = []
            tool_messages: List[Dict[str, Any]] = []
            for part in turn.parts:
                if part.function_result is None:
                    continue
                payload = json.dumps(part.function_result.response, default=str)
                call_id = ids.claim(part.function_result.name)
                if call_id is None:
                    orphan_results.append(f"[{part.function_result.name} result] {payload}")
                else:
                    tool_messages.append({"role": "tool", "tool_call_id": call_id, "content": payload})
            messages.extend(tool_messages)
            content = " ".join([t for t in [text, *orphan_results] if t])
            if content or not tool_messages:
                messages.append({"role": "user", "content": content})
        return messages, warnings

    def encode(
        self,
        history: Sequence[ConversationTurn],
        file_system: Mapping[str, str],
        instruction: str,
    ) -> ProviderRequest:
        messages, warnings = self._encode_messages(history, instruction)
        for warning in warnings:
            logger.warning("flat-chat encode: %s", warning)
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "tools": copy.deepcopy(self._tools),
        }
        if self.tool_choice is not None:
            payload["tool_choice"] = self.tool_choice
        if self.temperature is not None:
            payload["temperature"] = float(self.temperature)
        return ProviderRequest(adapter_id=self.adapter_id, payload=payload, warnings=tuple(warnings))

    def _parse_arguments(self, name: str, arguments: Any, partial: CanonicalResponse) -> Dict[str, Any]:
        if arguments is None or (isinstance(arguments, str) and not arguments.strip()):
            return {}
        if isinstance(arguments, Mapping):
            return dict(arguments)
        try:
            parsed = json.loads(arguments)
        except (TypeError, ValueError) as exc:
            raise ArgumentParseError(
                f"Could not parse arguments for tool '{name}': {exc}",
                partial=partial,
                tool_name=name,
                raw_arguments=str(arguments),
            ) from exc
        if not isinstance(parsed, dict):
            raise ArgumentParseError(
                f"Arguments for tool '{name}' must decode to an object, got {type(parsed).__name__}",
                partial=partial,
                tool_name=name,
                raw_arguments=str(arguments),
            )
        return parsed

    def decode(self, response: Any) -> CanonicalResponse:
        choices = _get_attr(response, "choices", default=[]) or []
        if not choices:
            return CanonicalResponse()
        message = _get_attr(choices[0], "message")
        content = _get_attr(message, "content")
        text = content if isinstance(content, str) else None
        partial = CanonicalResponse(text=text or None)

        actions: List[ActionCall] = []
        for tool_call in _get_attr(message, "tool_calls", default=[]) or []:
            fn = _get_attr(tool_call, "function")
            name = str(_get_attr(fn, "name", default=""))
            args = self._parse_arguments(name, _get_attr(fn, "arguments"), partial)
            actions.append(ActionCall(name=name, args=args))
        return build_canonical_response([text or ""], actions)


# ---------------------------------------------------------------------------
# Selection by configuration
# ---------------------------------------------------------------------------


def create_adapter(
    settings: ProviderSettings,
    registry: ToolRegistry,
    safety_settings: Sequence[SafetySetting] = (),
) -> ProviderAdapter:
    """Instantiate the adapter variant named by ``settings.adapter``."""
    if settings.adapter == StructuredDeclarationAdapter.adapter_id:
        return StructuredDeclarationAdapter(registry, model=settings.model, safety_settings=safety_settings)
    if settings.adapter == ContentBlockAdapter.adapter_id:
        return ContentBlockAdapter(
            registry,
            model=settings.model,
            max_tokens=settings.max_tokens or 4096,
            temperature=settings.temperature,
            tool_choice=settings.tool_choice,
        )
    if settings.adapter == FlatChatAdapter.adapter_id:
        return FlatChatAdapter(
            registry,
            model=settings.model,
            temperature=settings.temperature,
            tool_choice=settings.tool_choice,
        )
    raise ConfigError(f"Unknown adapter '{settings.adapter}' for provider '{settings.provider_id}'")


__all__ = [
    "ContentBlockAdapter",
    "FlatChatAdapter",
    "ProviderAdapter",
    "ProviderRequest",
    "StructuredDeclarationAdapter",
    "create_adapter",
]
