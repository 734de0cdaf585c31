"""Error taxonomy shared by the gate, adapters, service and workflow engine."""

from __future__ import annotations

from typing import Any, Dict, Optional


class BridgeError(RuntimeError):
    """Base error carrying an HTTP status and diagnostic details."""

    status_code: int = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}


class AuthError(BridgeError):
    """Missing or invalid bearer credential."""

    status_code = 401


# Name used by the auth gate contract.
Unauthenticated = AuthError


class ConfigError(BridgeError):
    """The server is missing configuration (typically a backend credential).

    Operator-facing: ``public_message`` is what a client gets to see.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        public_message: str = "Server configuration error.",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.public_message = public_message


class ValidationError(BridgeError):
    """Malformed request body."""

    status_code = 400


class BackendError(BridgeError):
    """Upstream model or collaborator call failed; message is passed through."""

    status_code = 500


class ArgumentParseError(BridgeError):
    """Tool-call arguments from the flat-chat backend could not be decoded.

    ``partial`` holds the degraded CanonicalResponse (any text, no actions).
    """

    status_code = 200

    def __init__(
        self,
        message: str,
        *,
        partial: Any = None,
        tool_name: Optional[str] = None,
        raw_arguments: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            details={"tool_name": tool_name, "raw_arguments": raw_arguments},
        )
        self.partial = partial
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments


class UnknownToolError(BridgeError):
    """An ActionCall names a tool that is not in the registry."""

    status_code = 400

    def __init__(self, tool_name: str, *, outcome: Any = None) -> None:
        super().__init__(f"Unknown tool: {tool_name!r}", details={"tool_name": tool_name})
        self.tool_name = tool_name
        # Partial turn outcome (effects already applied before the unknown call).
        self.outcome = outcome


class UnknownProviderError(BridgeError):
    """No provider is configured under the requested id."""

    status_code = 404


class TaskBusyError(BridgeError):
    """A new request arrived while a task is still in progress on the snapshot."""

    status_code = 409


__all__ = [
    "ArgumentParseError",
    "AuthError",
    "BackendError",
    "BridgeError",
    "ConfigError",
    "TaskBusyError",
    "Unauthenticated",
    "UnknownProviderError",
    "UnknownToolError",
    "ValidationError",
]
