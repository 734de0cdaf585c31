"""
Provider routing: maps a provider id (``gemini``, ``claude``, ``groq``, ...)
to its configured adapter variant, runtime and credential.

Selection is purely configuration-driven; adapters never know which provider
id asked for them.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .config import BridgeConfig, ProviderSettings, resolve_secret
from .errors import ConfigError
from .provider_adapters import ProviderAdapter, create_adapter
from .provider_runtime import ProviderRuntime, create_runtime
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderBinding:
    """Everything needed to serve one provider id."""

    settings: ProviderSettings
    adapter: ProviderAdapter
    runtime: ProviderRuntime

    @property
    def provider_id(self) -> str:
        return self.settings.provider_id


class ProviderRouter:
    """Resolves provider ids to bindings and lazily builds SDK clients."""

    def __init__(
        self,
        config: BridgeConfig,
        registry: ToolRegistry,
        *,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.config = config
        self.registry = registry
        self.environ = environ
        self._bindings: Dict[str, ProviderBinding] = {}
        self._clients: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def available_providers(self) -> List[str]:
        return sorted(self.config.providers.keys())

    def resolve(self, provider_id: str) -> Optional[ProviderBinding]:
        """Binding for ``provider_id`` (or alias); None when not configured."""
        settings = self.config.provider(provider_id)
        if settings is None:
            return None
        with self._lock:
            binding = self._bindings.get(settings.provider_id)
            if binding is None:
                binding = ProviderBinding(
                    settings=settings,
                    adapter=create_adapter(settings, self.registry, self.config.safety_settings),
                    runtime=create_runtime(settings.runtime),
                )
                self._bindings[settings.provider_id] = binding
        return binding

    def api_key_for(self, binding: ProviderBinding) -> str:
        api_key = resolve_secret(binding.settings.api_key_env, self.environ)
        if not api_key:
            names = ", ".join(binding.settings.api_key_env)
            logger.error("%s not set in environment", names)
            raise ConfigError(
                f"Missing API key for provider '{binding.provider_id}' (set {names})",
                public_message="Server configuration error: AI provider key missing.",
            )
        return api_key

    def client_for(self, binding: ProviderBinding) -> Any:
        """SDK client for the binding; ConfigError when its key is missing."""
        api_key = self.api_key_for(binding)
        with self._lock:
            client = self._clients.get(binding.provider_id)
            if client is None:
                client = binding.runtime.create_client(api_key, base_url=binding.settings.base_url)
                self._clients[binding.provider_id] = client
        return client


__all__ = ["ProviderBinding", "ProviderRouter"]
