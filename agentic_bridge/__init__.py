"""
agentic-bridge

Bridges one canonical tool-calling contract to Gemini, Anthropic and
OpenAI-compatible backends and supervises the resulting tool stream with a
Plan -> Code -> Verify -> Debug -> Finish workflow engine.
"""

from .agent_session import AgentSession, SessionResult, StopReason
from .config import BridgeConfig, load_config
from .provider_ir import ActionCall, CanonicalResponse, ConversationTurn
from .provider_routing import ProviderRouter
from .service import GenerateService
from .tool_registry import ToolRegistry, load_tool_registry
from .workflow import FileSystemSnapshot, WorkflowEngine, WorkflowState

__all__ = [
    "ActionCall",
    "AgentSession",
    "BridgeConfig",
    "CanonicalResponse",
    "ConversationTurn",
    "FileSystemSnapshot",
    "GenerateService",
    "ProviderRouter",
    "SessionResult",
    "StopReason",
    "ToolRegistry",
    "WorkflowEngine",
    "WorkflowState",
    "load_config",
    "load_tool_registry",
]
