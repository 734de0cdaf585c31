import pytest

from agentic_bridge.config import BridgeConfig
from agentic_bridge.errors import ConfigError
from agentic_bridge.provider_adapters import ContentBlockAdapter, FlatChatAdapter, StructuredDeclarationAdapter
from agentic_bridge.provider_routing import ProviderRouter
from agentic_bridge.provider_runtime import OpenAIChatRuntime


def test_resolve_by_id_and_alias(registry):
    router = ProviderRouter(BridgeConfig(), registry, environ={})
    assert isinstance(router.resolve("gemini").adapter, StructuredDeclarationAdapter)
    claude = router.resolve("claude")
    assert isinstance(claude.adapter, ContentBlockAdapter)
    assert router.resolve("anthropic") is claude
    assert router.resolve("GROQ").provider_id == "groq"
    assert router.resolve("mistral") is None


def test_flat_chat_providers_share_variant(registry):
    router = ProviderRouter(BridgeConfig(), registry, environ={})
    for provider in ("groq", "openai", "openrouter"):
        binding = router.resolve(provider)
        assert isinstance(binding.adapter, FlatChatAdapter)
        assert isinstance(binding.runtime, OpenAIChatRuntime)
    assert router.available_providers() == ["claude", "gemini", "groq", "openai", "openrouter"]


def test_missing_key_is_config_error(registry):
    router = ProviderRouter(BridgeConfig(), registry, environ={})
    with pytest.raises(ConfigError) as excinfo:
        router.client_for(router.resolve("groq"))
    assert "GROQ_API_KEY" in excinfo.value.message
    assert excinfo.value.public_message == "Server configuration error: AI provider key missing."


def test_client_built_once_with_fallback_key(registry, monkeypatch):
    created = []

    class FakeAnthropic:
        def __init__(self, **kwargs):
            created.append(kwargs)

    monkeypatch.setattr("agentic_bridge.provider_runtime.Anthropic", FakeAnthropic)
    router = ProviderRouter(BridgeConfig(), registry, environ={"CLAUDE_API_KEY": "ck"})
    binding = router.resolve("claude")
    first = router.client_for(binding)
    assert router.client_for(binding) is first
    assert created == [{"api_key": "ck"}]
