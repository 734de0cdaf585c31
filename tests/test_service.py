import types

import httpx
import pytest

from agentic_bridge.auth_gate import StaticTokenAuthGate, SupabaseAuthGate
from agentic_bridge.config import BridgeConfig
from agentic_bridge.errors import BackendError
from agentic_bridge.service import GenerateService


AUTH = "Bearer good-token"
BODY = {
    "history": [{"role": "user", "parts": [{"text": "hi"}]}],
    "fileSystem": {"src/App.tsx": "export default function App() {}"},
}


def groq_reply(content=None, calls=()):
    tool_calls = [
        types.SimpleNamespace(
            id=f"call_{i}", type="function", function=types.SimpleNamespace(name=name, arguments=arguments)
        )
        for i, (name, arguments) in enumerate(calls)
    ]
    message = types.SimpleNamespace(content=content, tool_calls=tool_calls or None)
    return types.SimpleNamespace(choices=[types.SimpleNamespace(message=message)])


@pytest.fixture
def service(registry, scripted_runtime):
    return GenerateService(
        BridgeConfig(),
        registry=registry,
        auth_gate=StaticTokenAuthGate({"good-token": "user-1"}),
        environ={"GROQ_API_KEY": "gk"},
    )


def test_non_post_is_405(service):
    response = service.handle("GET", "groq", AUTH, None)
    assert response.status_code == 405
    assert response.body == {"error": "Method GET Not Allowed"}
    assert response.headers == {"Allow": "POST"}


def test_unknown_provider_is_404_before_auth(service):
    response = service.handle("POST", "mistral", None, BODY)
    assert response.status_code == 404
    assert "mistral" in response.body["error"]


@pytest.mark.parametrize(
    "authorization,error",
    [
        (None, "No authorization token provided."),
        ("Token good-token", "No authorization token provided."),
        ("Bearer stolen", "Unauthorized: Invalid token."),
    ],
)
def test_auth_failures_are_401(service, scripted_runtime, authorization, error):
    response = service.handle("POST", "groq", authorization, BODY)
    assert (response.status_code, response.body) == (401, {"error": error})
    assert scripted_runtime.requests == []


@pytest.mark.parametrize("body", [None, {}, {"history": []}, {"fileSystem": {}}])
def test_missing_fields_are_400(service, body):
    response = service.handle("POST", "groq", AUTH, body)
    assert response.status_code == 400
    assert response.body == {"error": "Missing history or fileSystem in request body"}


def test_malformed_history_is_400(service):
    response = service.handle("POST", "groq", AUTH, {"history": [{"role": "robot", "parts": []}], "fileSystem": {}})
    assert response.status_code == 400


def test_missing_provider_key_is_500_with_public_message(registry, scripted_runtime):
    service = GenerateService(
        BridgeConfig(), registry=registry, auth_gate=StaticTokenAuthGate({"good-token": "u"}), environ={}
    )
    response = service.handle("POST", "groq", AUTH, BODY)
    assert response.status_code == 500
    assert response.body == {"error": "Server configuration error: AI provider key missing."}


def test_success_returns_canonical_wire_body(service, scripted_runtime):
    scripted_runtime.replies.append(groq_reply(calls=[("chat", '{"response": "hi"}')]))
    response = service.handle("POST", "groq", AUTH, BODY)
    assert response.status_code == 200
    assert response.body == {
        "candidates": [{"content": {"parts": [{"functionCall": {"name": "chat", "args": {"response": "hi"}}}]}}]
    }

    request = scripted_runtime.requests[0]
    assert request.adapter_id == "flat_chat"
    assert request.payload["model"] == "llama3-70b-8192"
    system = request.payload["messages"][0]
    assert system["role"] == "system"
    assert "src/App.tsx" in system["content"]
    assert request.payload["messages"][1] == {"role": "user", "content": "hi"}
    assert scripted_runtime.clients[0].api_key == "gk"


def test_text_then_calls_keep_order_on_the_wire(service, scripted_runtime):
    scripted_runtime.replies.append(
        groq_reply("On it.", [("plan_steps", '{"steps": ["a"]}'), ("list_files", "")])
    )
    parts = service.handle("POST", "groq", AUTH, BODY).body["candidates"][0]["content"]["parts"]
    assert parts == [
        {"text": "On it."},
        {"functionCall": {"name": "plan_steps", "args": {"steps": ["a"]}}},
        {"functionCall": {"name": "list_files", "args": {}}},
    ]


def test_unparseable_arguments_degrade_to_text(service, scripted_runtime):
    scripted_runtime.replies.append(groq_reply("Let me write that", [("create_or_update_files", '{"files": {')]))
    response = service.handle("POST", "groq", AUTH, BODY)
    assert response.status_code == 200
    assert response.body == {"candidates": [{"content": {"parts": [{"text": "Let me write that"}]}}]}


def test_backend_error_message_passes_through(service, scripted_runtime):
    scripted_runtime.replies.append(BackendError("Rate limit reached for model"))
    response = service.handle("POST", "groq", AUTH, BODY)
    assert (response.status_code, response.body) == (500, {"error": "Rate limit reached for model"})


def test_unexpected_error_still_has_error_body(registry, scripted_runtime):
    class BrokenGate:
        def verify(self, credential):
            raise KeyError("user")

    service = GenerateService(BridgeConfig(), registry=registry, auth_gate=BrokenGate(), environ={"GROQ_API_KEY": "gk"})
    response = service.handle("POST", "groq", AUTH, BODY)
    assert response.status_code == 500
    assert set(response.body) == {"error"}
    assert response.body["error"]


def test_unreadable_auth_service_reply_is_500(registry, scripted_runtime):
    client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>gateway</html>")))
    gate = SupabaseAuthGate("https://proj.supabase.co", "service-key", client=client)
    service = GenerateService(BridgeConfig(), registry=registry, auth_gate=gate, environ={"GROQ_API_KEY": "gk"})
    response = service.handle("POST", "groq", AUTH, BODY)
    assert response.status_code == 500
    assert response.body == {"error": "Authentication service returned an unreadable response"}
    assert scripted_runtime.requests == []
