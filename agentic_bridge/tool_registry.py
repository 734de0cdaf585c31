"""
Tool Schema Registry

Loads the canonical tool catalog from YAML into immutable ToolDefinition
values. The registry is constructed once and passed explicitly into adapters
and the workflow engine.

YAML schema:

tools:
  - name: read_file
    description: Read the content of a specific file.
    parameters:
      - name: path
        type: string
        description: The full path of the file to read.
        required: true
      - name: files            # object-valued parameter
        type: object
        values: string         # type of each mapping value
      - name: steps            # array-valued parameter
        type: array
        items: string          # type of each element
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import yaml
from jsonschema import Draft7Validator

from .errors import ConfigError, UnknownToolError
from .provider_ir import ActionCall


DEFAULT_TOOL_DEFS = Path(__file__).resolve().parent / "tool_defs.yaml"

REQUIRED_TOOL_FIELDS = ["name", "description", "parameters"]
REQUIRED_PARAM_FIELDS = ["name", "type"]
_SCALAR_TYPES = {"string", "integer", "number", "boolean", "array", "object"}


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str
    description: str = ""
    required: bool = False
    items: Optional[str] = None
    values: Optional[str] = None

    def json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.type == "array":
            schema["items"] = {"type": self.items or "string"}
        elif self.type == "object" and self.values:
            schema["additionalProperties"] = {"type": self.values}
        return schema


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: Tuple[ToolParameter, ...] = ()

    @property
    def required(self) -> List[str]:
        return [p.name for p in self.parameters if p.required]

    def json_schema(self) -> Dict[str, Any]:
        """Canonical JSON-schema object for the tool's arguments."""
        return {
            "type": "object",
            "properties": {p.name: p.json_schema() for p in self.parameters},
            "required": self.required,
        }


class ToolRegistry:
    """Fixed, ordered set of tool definitions with one schema per name."""

    def __init__(self, tools: Iterable[ToolDefinition]):
        ordered = tuple(tools)
        seen: Dict[str, ToolDefinition] = {}
        for tool in ordered:
            if tool.name in seen:
                raise ConfigError(f"Duplicate tool definition: {tool.name}")
            seen[tool.name] = tool
        self._tools = ordered
        self._by_name = seen
        self._validators = {t.name: Draft7Validator(t.json_schema()) for t in ordered}

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    @property
    def names(self) -> List[str]:
        return [t.name for t in self._tools]

    def require(self, name: str) -> ToolDefinition:
        """Return the definition for ``name`` or raise UnknownToolError."""
        tool = self._by_name.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    def argument_errors(self, call: ActionCall) -> List[str]:
        """Schema violations for ``call.args`` (empty when valid)."""
        self.require(call.name)
        validator = self._validators[call.name]
        errors = sorted(validator.iter_errors(call.args), key=lambda e: list(e.path))
        messages: List[str] = []
        for err in errors:
            location = ".".join(str(p) for p in err.path)
            messages.append(f"{location}: {err.message}" if location else err.message)
        return messages


def _validate_tool_dict(tool_data: Dict[str, Any], source: str) -> None:
    for field_name in REQUIRED_TOOL_FIELDS:
        if field_name not in tool_data:
            raise ConfigError(f"Tool definition missing required field '{field_name}' in {source}")
    for param in tool_data.get("parameters") or []:
        for field_name in REQUIRED_PARAM_FIELDS:
            if field_name not in param:
                raise ConfigError(
                    f"Parameter of tool '{tool_data['name']}' missing '{field_name}' in {source}"
                )
        if param["type"] not in _SCALAR_TYPES:
            raise ConfigError(f"Unsupported parameter type '{param['type']}' in {source}")


def _to_tool(tool_data: Dict[str, Any]) -> ToolDefinition:
    params = tuple(
        ToolParameter(
            name=p["name"],
            type=p["type"],
            description=" ".join(str(p.get("description", "")).split()),
            required=bool(p.get("required", False)),
            items=p.get("items"),
            values=p.get("values"),
        )
        for p in tool_data.get("parameters") or []
    )
    return ToolDefinition(
        name=tool_data["name"],
        description=" ".join(str(tool_data["description"]).split()),
        parameters=params,
    )


def load_tool_registry(path: Optional[str] = None) -> ToolRegistry:
    """Load the tool catalog (the packaged default when ``path`` is None)."""
    defs_path = Path(path) if path else DEFAULT_TOOL_DEFS
    if not defs_path.is_file():
        raise ConfigError(f"Tool definitions file not found: {defs_path}")
    with open(defs_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    tools: List[ToolDefinition] = []
    for tool_data in data.get("tools") or []:
        _validate_tool_dict(tool_data, str(defs_path))
        tools.append(_to_tool(tool_data))
    return ToolRegistry(tools)


__all__ = [
    "DEFAULT_TOOL_DEFS",
    "ToolDefinition",
    "ToolParameter",
    "ToolRegistry",
    "load_tool_registry",
]
