import os
import sys
import types

import pytest


# Ensure project root is on sys.path so tests run without an editable install
ROOT = os.path.dirname(os.path.abspath(__file__))
PROJ = os.path.abspath(os.path.join(ROOT, os.pardir))
if PROJ not in sys.path:
    sys.path.insert(0, PROJ)

from agentic_bridge.tool_registry import load_tool_registry  # noqa: E402


@pytest.fixture(scope="session")
def registry():
    return load_tool_registry()


@pytest.fixture(autouse=True)
def _no_provider_env(monkeypatch):
    # Tests must never pick up real credentials from the developer's shell.
    for name in (
        "GEMINI_API_KEY",
        "ANTHROPIC_API_KEY",
        "CLAUDE_API_KEY",
        "GROQ_API_KEY",
        "OPENAI_API_KEY",
        "OPENROUTER_API_KEY",
        "SUPABASE_URL",
        "VITE_SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "PEXELS_API_KEY",
        "AGENTIC_BRIDGE_CONFIG",
        "AGENTIC_BRIDGE_STATIC_TOKENS",
    ):
        monkeypatch.delenv(name, raising=False)


class ScriptedRuntime:
    """Provider runtime stand-in that replays queued replies (or raises queued errors)."""

    def __init__(self):
        self.replies = []
        self.requests = []
        self.clients = []

    def create_client(self, api_key, base_url=None):
        client = types.SimpleNamespace(api_key=api_key, base_url=base_url)
        self.clients.append(client)
        return client

    def send(self, client, request):
        self.requests.append(request)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def scripted_runtime(monkeypatch):
    runtime = ScriptedRuntime()
    monkeypatch.setattr("agentic_bridge.provider_routing.create_runtime", lambda name: runtime)
    return runtime
