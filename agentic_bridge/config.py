"""
Configuration for the bridge service and agent sessions.

Defaults live in code; an optional YAML file (see agent_configs/default.yaml)
is merged over them. The result is a frozen value constructed once and handed
to the router, adapters and sessions explicitly. Secrets are never stored in
the config itself, only the names of the environment variables holding them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import yaml
from dotenv import load_dotenv as _load_env_file

from .errors import ConfigError


CONFIG_ENV_VAR = "AGENTIC_BRIDGE_CONFIG"

ADAPTER_IDS = {"structured_declaration", "content_block", "flat_chat"}
RUNTIME_IDS = {"gemini_generate_content", "anthropic_messages", "openai_chat"}


@dataclass(frozen=True)
class SafetySetting:
    category: str
    threshold: str


@dataclass(frozen=True)
class ProviderSettings:
    provider_id: str
    adapter: str
    runtime: str
    model: str
    api_key_env: Tuple[str, ...]
    base_url: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    tool_choice: Any = None
    aliases: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AuthSettings:
    mode: str = "supabase"  # supabase | static
    url_env: Tuple[str, ...] = ("SUPABASE_URL", "VITE_SUPABASE_URL")
    service_key_env: Tuple[str, ...] = ("SUPABASE_SERVICE_ROLE_KEY",)
    static_tokens_env: str = "AGENTIC_BRIDGE_STATIC_TOKENS"
    timeout: float = 10.0


@dataclass(frozen=True)
class SessionSettings:
    max_turns: int = 50
    require_plan_approval: bool = False


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    enabled: bool = False
    root_dir: str = "logging"
    redact: bool = True


@dataclass(frozen=True)
class PexelsSettings:
    api_key_env: Tuple[str, ...] = ("PEXELS_API_KEY",)
    base_url: str = "https://api.pexels.com/v1"
    timeout: float = 10.0


DEFAULT_SAFETY_SETTINGS: Tuple[SafetySetting, ...] = tuple(
    SafetySetting(category=category, threshold="BLOCK_LOW_AND_ABOVE")
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
)

DEFAULT_PROVIDERS: Dict[str, ProviderSettings] = {
    "gemini": ProviderSettings(
        provider_id="gemini",
        adapter="structured_declaration",
        runtime="gemini_generate_content",
        model="gemini-2.5-flash",
        api_key_env=("GEMINI_API_KEY",),
    ),
    "claude": ProviderSettings(
        provider_id="claude",
        adapter="content_block",
        runtime="anthropic_messages",
        model="claude-3-5-sonnet-20240620",
        api_key_env=("ANTHROPIC_API_KEY", "CLAUDE_API_KEY"),
        max_tokens=4096,
        tool_choice={"type": "auto"},
        aliases=("anthropic",),
    ),
    "groq": ProviderSettings(
        provider_id="groq",
        adapter="flat_chat",
        runtime="openai_chat",
        model="llama3-70b-8192",
        api_key_env=("GROQ_API_KEY",),
        base_url="https://api.groq.com/openai/v1",
        temperature=0.1,
        tool_choice="auto",
    ),
    "openai": ProviderSettings(
        provider_id="openai",
        adapter="flat_chat",
        runtime="openai_chat",
        model="gpt-4o-mini",
        api_key_env=("OPENAI_API_KEY",),
        tool_choice="auto",
    ),
    "openrouter": ProviderSettings(
        provider_id="openrouter",
        adapter="flat_chat",
        runtime="openai_chat",
        model="openai/gpt-4o-mini",
        api_key_env=("OPENROUTER_API_KEY",),
        base_url="https://openrouter.ai/api/v1",
        tool_choice="auto",
    ),
}


@dataclass(frozen=True)
class BridgeConfig:
    providers: Mapping[str, ProviderSettings] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_PROVIDERS))
    )
    safety_settings: Tuple[SafetySetting, ...] = DEFAULT_SAFETY_SETTINGS
    auth: AuthSettings = field(default_factory=AuthSettings)
    session: SessionSettings = field(default_factory=SessionSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    pexels: PexelsSettings = field(default_factory=PexelsSettings)
    tool_defs_path: Optional[str] = None
    default_provider: str = "gemini"

    def provider(self, provider_id: str) -> Optional[ProviderSettings]:
        """Look up provider settings by id or alias."""
        key = (provider_id or "").strip().lower()
        if key in self.providers:
            return self.providers[key]
        for settings in self.providers.values():
            if key in settings.aliases:
                return settings
        return None


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------


def resolve_secret(env_names: Sequence[str], environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """First non-empty value among ``env_names``."""
    env = os.environ if environ is None else environ
    for name in env_names:
        value = env.get(name)
        if value:
            return value
    return None


def load_dotenv(path: Optional[str] = None) -> None:
    """Fill unset environment variables from a ``.env`` file if one exists."""
    env_path = Path(path) if path else Path(".").resolve() / ".env"
    if env_path.is_file():
        # Never overwrite what the environment already has
        _load_env_file(env_path, override=False)


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------


def _as_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _merge_provider(provider_id: str, raw: Mapping[str, Any], base: Optional[ProviderSettings]) -> ProviderSettings:
    data: Dict[str, Any] = {}
    if base is not None:
        data.update(base.__dict__)
    data.update(raw)
    data["provider_id"] = provider_id
    for key in ("adapter", "runtime", "model", "api_key_env"):
        if not data.get(key):
            raise ConfigError(f"Provider '{provider_id}' is missing '{key}'")
    if data["adapter"] not in ADAPTER_IDS:
        raise ConfigError(f"Provider '{provider_id}' has unknown adapter '{data['adapter']}'")
    if data["runtime"] not in RUNTIME_IDS:
        raise ConfigError(f"Provider '{provider_id}' has unknown runtime '{data['runtime']}'")
    data["api_key_env"] = _as_tuple(data["api_key_env"])
    data["aliases"] = _as_tuple(data.get("aliases"))
    unknown = set(data) - set(ProviderSettings.__dataclass_fields__)
    if unknown:
        raise ConfigError(f"Provider '{provider_id}' has unknown keys: {sorted(unknown)}")
    return ProviderSettings(**data)


def _section(raw: Mapping[str, Any], name: str, cls: Any, base: Any) -> Any:
    values = raw.get(name) or {}
    if not isinstance(values, Mapping):
        raise ConfigError(f"'{name}' must be a mapping")
    unknown = set(values) - set(cls.__dataclass_fields__)
    if unknown:
        raise ConfigError(f"'{name}' has unknown keys: {sorted(unknown)}")
    coerced = {k: (_as_tuple(v) if isinstance(getattr(base, k), tuple) else v) for k, v in values.items()}
    return replace(base, **coerced)


def config_from_dict(raw: Mapping[str, Any]) -> BridgeConfig:
    """Merge a parsed YAML mapping over the defaults."""
    if not isinstance(raw, Mapping):
        raise ConfigError("Configuration root must be a mapping")

    providers: Dict[str, ProviderSettings] = dict(DEFAULT_PROVIDERS)
    for provider_id, provider_raw in (raw.get("providers") or {}).items():
        if not isinstance(provider_raw, Mapping):
            raise ConfigError(f"Provider '{provider_id}' must be a mapping")
        providers[provider_id] = _merge_provider(provider_id, provider_raw, providers.get(provider_id))

    safety = DEFAULT_SAFETY_SETTINGS
    if "safety_settings" in raw:
        try:
            safety = tuple(
                SafetySetting(category=str(s["category"]), threshold=str(s["threshold"]))
                for s in raw.get("safety_settings") or []
            )
        except (KeyError, TypeError) as exc:
            raise ConfigError(f"Invalid safety_settings entry: {exc}") from exc

    defaults = BridgeConfig()
    config = BridgeConfig(
        providers=MappingProxyType(providers),
        safety_settings=safety,
        auth=_section(raw, "auth", AuthSettings, defaults.auth),
        session=_section(raw, "session", SessionSettings, defaults.session),
        logging=_section(raw, "logging", LoggingSettings, defaults.logging),
        pexels=_section(raw, "pexels", PexelsSettings, defaults.pexels),
        tool_defs_path=(raw.get("tools") or {}).get("defs_path"),
        default_provider=str(raw.get("default_provider") or defaults.default_provider),
    )
    if config.provider(config.default_provider) is None:
        raise ConfigError(f"default_provider '{config.default_provider}' is not configured")
    if config.auth.mode not in {"supabase", "static"}:
        raise ConfigError(f"Unknown auth mode '{config.auth.mode}'")
    return config


def load_config(path: Optional[str] = None) -> BridgeConfig:
    """Load configuration from ``path`` (or $AGENTIC_BRIDGE_CONFIG); defaults otherwise."""
    config_path = path or os.environ.get(CONFIG_ENV_VAR)
    if not config_path:
        return BridgeConfig()
    p = Path(config_path)
    if not p.is_file():
        raise ConfigError(f"Configuration file '{config_path}' not found")
    try:
        with open(p, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file '{config_path}' is not valid YAML: {exc}") from exc
    return config_from_dict(raw)


__all__ = [
    "AuthSettings",
    "BridgeConfig",
    "DEFAULT_PROVIDERS",
    "DEFAULT_SAFETY_SETTINGS",
    "LoggingSettings",
    "PexelsSettings",
    "ProviderSettings",
    "SafetySetting",
    "SessionSettings",
    "config_from_dict",
    "load_config",
    "load_dotenv",
    "resolve_secret",
]
