"""Provider-agnostic intermediate representation (IR) for conversations and tool use."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple

from .errors import ValidationError


Role = Literal["user", "assistant"]

# Wire roles accepted from clients and the IR role they map to.
_WIRE_ROLES: Dict[str, Role] = {
    "user": "user",
    "model": "assistant",
    "assistant": "assistant",
    "function": "user",
    "tool": "user",
}


@dataclass(frozen=True)
class InlineImage:
    mime_type: str
    data: str


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FunctionResult:
    name: str
    response: Any = None


@dataclass(frozen=True)
class IRPart:
    text: Optional[str] = None
    inline_image: Optional[InlineImage] = None
    function_call: Optional[FunctionCall] = None
    function_result: Optional[FunctionResult] = None

    @staticmethod
    def text_part(content: str) -> "IRPart":
        return IRPart(text=content)

    @staticmethod
    def image_part(mime_type: str, data: str) -> "IRPart":
        return IRPart(inline_image=InlineImage(mime_type=mime_type, data=data))

    @staticmethod
    def call_part(name: str, args: Mapping[str, Any]) -> "IRPart":
        return IRPart(function_call=FunctionCall(name=name, args=dict(args)))

    @staticmethod
    def result_part(name: str, response: Any) -> "IRPart":
        return IRPart(function_result=FunctionResult(name=name, response=response))


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    parts: Tuple[IRPart, ...] = ()

    def text_parts(self) -> List[str]:
        return [p.text for p in self.parts if p.text is not None]


@dataclass(frozen=True)
class ActionCall:
    """A normalized invocation of a named tool, independent of the backend."""

    name: str
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "args": dict(self.args)}


@dataclass(frozen=True)
class CanonicalResponse:
    """Uniform adapter output: optional text plus ordered ActionCalls."""

    text: Optional[str] = None
    actions: Tuple[ActionCall, ...] = ()

    def degraded(self) -> "CanonicalResponse":
        return CanonicalResponse(text=self.text, actions=())

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.text:
            out["text"] = self.text
        out["actions"] = [a.to_dict() for a in self.actions]
        return out

    def to_wire(self) -> Dict[str, Any]:
        """Render the client-facing response body."""
        parts: List[Dict[str, Any]] = []
        if self.text:
            parts.append({"text": self.text})
        for action in self.actions:
            parts.append({"functionCall": {"name": action.name, "args": dict(action.args)}})
        return {"candidates": [{"content": {"parts": parts}}]}


def build_canonical_response(text_chunks: Iterable[str], actions: Iterable[ActionCall]) -> CanonicalResponse:
    """Join text chunks in order; empty text becomes ``None``."""
    text = "".join(chunk for chunk in text_chunks if chunk)
    return CanonicalResponse(text=text or None, actions=tuple(actions))


# ---------------------------------------------------------------------------
# Wire <-> IR conversion
# ---------------------------------------------------------------------------


def _pick(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _parse_part(raw: Any, where: str) -> IRPart:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{where}: part must be an object")

    text = raw.get("text")
    if isinstance(text, str):
        return IRPart.text_part(text)

    inline = _pick(raw, "inlineData", "inline_data", "inlineImage")
    if isinstance(inline, Mapping):
        mime = _pick(inline, "mimeType", "mime_type")
        data = inline.get("data")
        if not isinstance(mime, str) or not isinstance(data, str):
            raise ValidationError(f"{where}: inlineData requires mimeType and data")
        return IRPart.image_part(mime, data)

    call = _pick(raw, "functionCall", "function_call")
    if isinstance(call, Mapping):
        name = call.get("name")
        args = call.get("args") or {}
        if not isinstance(name, str) or not isinstance(args, Mapping):
            raise ValidationError(f"{where}: functionCall requires a name and object args")
        return IRPart.call_part(name, args)

    result = _pick(raw, "functionResponse", "function_response", "functionResult")
    if isinstance(result, Mapping):
        name = result.get("name")
        if not isinstance(name, str):
            raise ValidationError(f"{where}: functionResponse requires a name")
        return IRPart.result_part(name, result.get("response"))

    raise ValidationError(f"{where}: unsupported part {sorted(raw.keys())}")


def parse_history(raw_history: Any) -> List[ConversationTurn]:
    """Convert client history (Gemini-shaped JSON) into IR turns."""
    if not isinstance(raw_history, Sequence) or isinstance(raw_history, (str, bytes)):
        raise ValidationError("history must be an array of turns")

    turns: List[ConversationTurn] = []
    for idx, raw_turn in enumerate(raw_history):
        if not isinstance(raw_turn, Mapping):
            raise ValidationError(f"history[{idx}] must be an object")
        role = _WIRE_ROLES.get(str(raw_turn.get("role", "")))
        if role is None:
            raise ValidationError(f"history[{idx}]: unsupported role {raw_turn.get('role')!r}")
        raw_parts = raw_turn.get("parts") or []
        if not isinstance(raw_parts, Sequence) or isinstance(raw_parts, (str, bytes)):
            raise ValidationError(f"history[{idx}].parts must be an array")
        parts = tuple(_parse_part(p, f"history[{idx}].parts[{p_idx}]") for p_idx, p in enumerate(raw_parts))
        turns.append(ConversationTurn(role=role, parts=parts))
    return turns


def turn_to_wire(turn: ConversationTurn) -> Dict[str, Any]:
    """Inverse of :func:`parse_history` for one turn (used for transcripts)."""
    has_results = any(p.function_result is not None for p in turn.parts)
    role = "model" if turn.role == "assistant" else ("function" if has_results else "user")
    parts: List[Dict[str, Any]] = []
    for part in turn.parts:
        if part.text is not None:
            parts.append({"text": part.text})
        elif part.inline_image is not None:
            parts.append({"inlineData": {"mimeType": part.inline_image.mime_type, "data": part.inline_image.data}})
        elif part.function_call is not None:
            parts.append({"functionCall": {"name": part.function_call.name, "args": dict(part.function_call.args)}})
        elif part.function_result is not None:
            parts.append({"functionResponse": {"name": part.function_result.name, "response": part.function_result.response}})
    return {"role": role, "parts": parts}


def model_turn(response: CanonicalResponse) -> ConversationTurn:
    """Assistant turn echoing a decoded response back into history."""
    parts: List[IRPart] = []
    if response.text:
        parts.append(IRPart.text_part(response.text))
    parts.extend(IRPart.call_part(a.name, a.args) for a in response.actions)
    return ConversationTurn(role="assistant", parts=tuple(parts))


def function_turn(results: Iterable[Tuple[str, Any]]) -> ConversationTurn:
    """User-side turn carrying tool results, in call order."""
    return ConversationTurn(role="user", parts=tuple(IRPart.result_part(name, payload) for name, payload in results))


__all__ = [
    "ActionCall",
    "CanonicalResponse",
    "ConversationTurn",
    "FunctionCall",
    "FunctionResult",
    "IRPart",
    "InlineImage",
    "build_canonical_response",
    "function_turn",
    "model_turn",
    "parse_history",
    "turn_to_wire",
]
