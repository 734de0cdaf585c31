"""
Framework-independent handler for ``/api/generate-{provider}``.

One request is: method check -> provider lookup -> auth gate -> body
validation -> system instruction -> adapter encode -> backend call ->
decode -> canonical wire body. Every failure maps to ``{"error": ...}``
with the status code carried by the raised BridgeError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .auth_gate import AuthGate, create_auth_gate, require_principal
from .config import BridgeConfig
from .errors import ArgumentParseError, BridgeError, ConfigError, UnknownProviderError, ValidationError
from .provider_ir import CanonicalResponse, ConversationTurn, parse_history
from .provider_routing import ProviderRouter
from .system_prompt import build_system_instruction
from .tool_registry import ToolRegistry, load_tool_registry
from .workflow.file_system import FileSystemSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResponse:
    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


def parse_request_body(body: Any) -> Tuple[List[ConversationTurn], FileSystemSnapshot]:
    if not isinstance(body, Mapping) or body.get("history") is None or body.get("fileSystem") is None:
        raise ValidationError("Missing history or fileSystem in request body")
    return parse_history(body["history"]), FileSystemSnapshot.from_wire(body["fileSystem"])


class GenerateService:
    def __init__(
        self,
        config: BridgeConfig,
        *,
        registry: Optional[ToolRegistry] = None,
        router: Optional[ProviderRouter] = None,
        auth_gate: Optional[AuthGate] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.config = config
        self.registry = registry or load_tool_registry(config.tool_defs_path)
        self.router = router or ProviderRouter(config, self.registry, environ=environ)
        self.environ = environ
        self._auth_gate = auth_gate

    @property
    def auth_gate(self) -> AuthGate:
        # Built on first use so a missing Supabase env surfaces as a per-request 500.
        if self._auth_gate is None:
            self._auth_gate = create_auth_gate(self.config.auth, self.environ)
        return self._auth_gate

    def handle(
        self,
        method: str,
        provider_id: str,
        authorization: Optional[str],
        body: Any,
    ) -> ServiceResponse:
        if method.upper() != "POST":
            return ServiceResponse(405, {"error": f"Method {method.upper()} Not Allowed"}, {"Allow": "POST"})
        try:
            response = self.generate(provider_id, authorization, body)
        except ArgumentParseError as exc:
            logger.warning("Degrading %s reply: %s", provider_id, exc.message)
            partial = exc.partial if isinstance(exc.partial, CanonicalResponse) else CanonicalResponse()
            return ServiceResponse(200, partial.degraded().to_wire())
        except ConfigError as exc:
            logger.error("Configuration error serving %s: %s", provider_id, exc.message)
            return ServiceResponse(exc.status_code, {"error": exc.public_message})
        except BridgeError as exc:
            if exc.status_code >= 500:
                logger.error("Request to %s failed: %s", provider_id, exc.message)
            else:
                logger.info("Request to %s rejected (%d): %s", provider_id, exc.status_code, exc.message)
            return ServiceResponse(exc.status_code, {"error": exc.message})
        except Exception as exc:
            logger.exception("Unexpected error serving %s", provider_id)
            return ServiceResponse(500, {"error": str(exc) or "An internal server error occurred."})
        return ServiceResponse(200, response.to_wire())

    def generate(self, provider_id: str, authorization: Optional[str], body: Any) -> CanonicalResponse:
        """Run one request; raises BridgeError subclasses on failure."""
        binding = self.router.resolve(provider_id)
        if binding is None:
            raise UnknownProviderError(f"Unknown provider: {provider_id}")

        principal = require_principal(self.auth_gate, authorization)
        history, file_system = parse_request_body(body)
        client = self.router.client_for(binding)

        instruction = build_system_instruction(file_system)
        request = binding.adapter.encode(history, file_system, instruction)
        logger.info(
            "generate provider=%s principal=%s turns=%d files=%d",
            binding.provider_id,
            principal,
            len(history),
            len(file_system),
        )
        raw = binding.runtime.send(client, request)
        return binding.adapter.decode(raw)


__all__ = ["GenerateService", "ServiceResponse", "parse_request_body"]
