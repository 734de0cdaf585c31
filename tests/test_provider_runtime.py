import types

import httpx
import openai
import pytest

from agentic_bridge.errors import BackendError, ConfigError
from agentic_bridge.provider_adapters import ProviderRequest
from agentic_bridge.provider_runtime import (
    AnthropicMessagesRuntime,
    GeminiRuntime,
    OpenAIChatRuntime,
    create_runtime,
)


def _request(payload=None):
    return ProviderRequest(adapter_id="test", payload=payload or {"model": "m", "messages": []})


def test_create_runtime_known_and_unknown():
    assert isinstance(create_runtime("gemini_generate_content"), GeminiRuntime)
    assert isinstance(create_runtime("anthropic_messages"), AnthropicMessagesRuntime)
    assert isinstance(create_runtime("openai_chat"), OpenAIChatRuntime)
    with pytest.raises(ConfigError):
        create_runtime("carrier_pigeon")


def test_openai_chat_runtime_passes_base_url_and_payload(monkeypatch):
    seen = {}
    reply = types.SimpleNamespace(choices=[])

    class FakeCompletions:
        def create(self, **kwargs):
            seen["payload"] = kwargs
            return reply

    class FakeOpenAI:
        def __init__(self, **kwargs):
            seen["client_kwargs"] = kwargs
            self.chat = types.SimpleNamespace(completions=FakeCompletions())

    monkeypatch.setattr("agentic_bridge.provider_runtime.OpenAI", FakeOpenAI)

    runtime = OpenAIChatRuntime()
    client = runtime.create_client("gk", base_url="https://api.groq.com/openai/v1")
    assert seen["client_kwargs"] == {"api_key": "gk", "base_url": "https://api.groq.com/openai/v1"}
    assert runtime.send(client, _request({"model": "llama", "messages": []})) is reply
    assert seen["payload"] == {"model": "llama", "messages": []}


def test_openai_chat_runtime_status_error_passes_message_through():
    request = httpx.Request("POST", "https://api.groq.com/openai/v1/chat/completions")
    response = httpx.Response(429, request=request)
    error = openai.RateLimitError(
        "rate limited", response=response, body={"error": {"message": "Rate limit reached for model"}}
    )

    class FakeCompletions:
        def create(self, **kwargs):
            raise error

    client = types.SimpleNamespace(chat=types.SimpleNamespace(completions=FakeCompletions()))
    with pytest.raises(BackendError) as excinfo:
        OpenAIChatRuntime().send(client, _request())
    assert excinfo.value.message == "Rate limit reached for model"
    assert excinfo.value.details["status_code"] == 429
    assert excinfo.value.status_code == 500


def test_anthropic_runtime_create_and_error(monkeypatch):
    class FakeMessages:
        def create(self, **kwargs):
            raise RuntimeError("overloaded")

    class FakeAnthropic:
        def __init__(self, **kwargs):
            self.kwargs = kwargs
            self.messages = FakeMessages()

    monkeypatch.setattr("agentic_bridge.provider_runtime.Anthropic", FakeAnthropic)

    runtime = AnthropicMessagesRuntime()
    client = runtime.create_client("ak")
    assert client.kwargs == {"api_key": "ak"}
    with pytest.raises(BackendError) as excinfo:
        runtime.send(client, _request())
    assert "overloaded" in excinfo.value.message


def test_gemini_runtime_uses_generate_content(monkeypatch):
    seen = {}

    class FakeModels:
        def generate_content(self, **kwargs):
            seen.update(kwargs)
            return "reply"

    class FakeClient:
        def __init__(self, **kwargs):
            seen["client_kwargs"] = kwargs
            self.models = FakeModels()

    monkeypatch.setattr("agentic_bridge.provider_runtime.genai.Client", FakeClient)

    runtime = GeminiRuntime()
    client = runtime.create_client("gem")
    payload = {"model": "gemini-2.5-flash", "contents": [], "config": {}}
    assert runtime.send(client, _request(payload)) == "reply"
    assert seen["client_kwargs"] == {"api_key": "gem"}
    assert seen["model"] == "gemini-2.5-flash"


def test_gemini_runtime_wraps_failures():
    class FakeModels:
        def generate_content(self, **kwargs):
            raise ValueError("API key not valid")

    client = types.SimpleNamespace(models=FakeModels())
    with pytest.raises(BackendError) as excinfo:
        GeminiRuntime().send(client, _request())
    assert excinfo.value.message == "API key not valid"
