"""
Agent session: drives the model <-> workflow loop for one project snapshot.

Each model turn is encoded for the selected provider, sent, decoded and
handed to the WorkflowEngine; the engine's function results are appended to
history as the next user-side turn and the loop repeats until the task is
finished, the model chats or replies with text only, a turn is halted, the
turn cap is hit, or a plan is waiting for approval.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from .config import BridgeConfig, resolve_secret
from .errors import ArgumentParseError, BridgeError, TaskBusyError, UnknownProviderError, UnknownToolError, ValidationError
from .provider_ir import (
    CanonicalResponse,
    ConversationTurn,
    IRPart,
    function_turn,
    model_turn,
    turn_to_wire,
)
from .provider_routing import ProviderBinding, ProviderRouter
from .run_logger import RunLogger
from .system_prompt import build_system_instruction
from .tool_registry import ToolRegistry, load_tool_registry
from .workflow import (
    FileSystemSnapshot,
    PexelsImageSearch,
    ProtocolViolation,
    TurnOutcome,
    WorkflowEngine,
    WorkflowState,
    describe_turn_activity,
)
from .workflow.collaborators import BuildVerifier, ImageSearch

logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    FINISHED = "finished"
    CHATTED = "chatted"
    TEXT_ONLY = "text_only"
    HALTED = "halted"
    TURN_LIMIT = "turn_limit"
    AWAITING_APPROVAL = "awaiting_approval"


@dataclass(frozen=True)
class SessionResult:
    stop_reason: StopReason
    turns: int
    text: Optional[str]
    state: WorkflowState
    retry_count: int
    violations: Tuple[ProtocolViolation, ...]
    file_system: FileSystemSnapshot


TurnCallback = Callable[[int, CanonicalResponse, Optional[TurnOutcome]], None]


class AgentSession:
    def __init__(
        self,
        config: BridgeConfig,
        provider_id: Optional[str] = None,
        *,
        file_system: Optional[FileSystemSnapshot] = None,
        registry: Optional[ToolRegistry] = None,
        router: Optional[ProviderRouter] = None,
        build_verifier: Optional[BuildVerifier] = None,
        image_search: Optional[ImageSearch] = None,
        run_logger: Optional[RunLogger] = None,
        on_turn: Optional[TurnCallback] = None,
        session_id: Optional[str] = None,
    ):
        self.config = config
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.registry = registry or load_tool_registry(config.tool_defs_path)
        self.router = router or ProviderRouter(config, self.registry)
        pid = provider_id or config.default_provider
        binding = self.router.resolve(pid)
        if binding is None:
            raise UnknownProviderError(f"Unknown provider: {pid}")
        self.binding: ProviderBinding = binding

        if image_search is None:
            image_search = PexelsImageSearch(
                resolve_secret(config.pexels.api_key_env),
                base_url=config.pexels.base_url,
                timeout=config.pexels.timeout,
            )
        self.engine = WorkflowEngine(
            self.registry,
            file_system,
            build_verifier=build_verifier,
            image_search=image_search,
        )
        self.run_logger = run_logger or RunLogger(config.logging)
        self.run_logger.start_run(self.session_id)
        self.on_turn = on_turn
        self.history: List[ConversationTurn] = []
        self.turns = 0
        self._pending_plan: Optional[TurnOutcome] = None
        self._request_start = 0
        self._running = threading.Lock()

    @property
    def file_system(self) -> FileSystemSnapshot:
        return self.engine.file_system

    @property
    def awaiting_approval(self) -> bool:
        return self._pending_plan is not None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def submit(self, prompt: str, *, images: Sequence[IRPart] = ()) -> SessionResult:
        """Start a new user request and drive it until the loop stops."""
        with self._exclusive():
            if self._pending_plan is not None:
                raise TaskBusyError("A plan is awaiting approval")
            self.engine.begin_request(prompt)
            self._request_start = len(self.history)
            self.history.append(ConversationTurn(role="user", parts=(IRPart.text_part(prompt), *images)))
            return self._drive()

    def approve_plan(self) -> SessionResult:
        """Resume after a plan pause, feeding the plan result back to the model."""
        with self._exclusive():
            outcome = self._take_pending_plan()
            self.history.append(function_turn(outcome.function_results()))
            return self._drive()

    def reject_plan(self, reason: str = "Plan rejected by user.") -> None:
        """Drop the pending plan and its prompt from history and fail the task."""
        with self._exclusive():
            self._take_pending_plan()
            # Forget the prompt that produced the rejected plan and everything after it.
            del self.history[self._request_start:]
            self.engine.fail_task(reason)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _exclusive(self) -> "_Exclusive":
        return _Exclusive(self._running)

    def _take_pending_plan(self) -> TurnOutcome:
        if self._pending_plan is None:
            raise ValidationError("No plan is awaiting approval")
        outcome, self._pending_plan = self._pending_plan, None
        return outcome

    def _drive(self) -> SessionResult:
        max_turns = self.config.session.max_turns
        turns_this_request = 0
        last_text: Optional[str] = None
        try:
            while turns_this_request < max_turns:
                turns_this_request += 1
                self.turns += 1
                response = self._call_model()
                last_text = response.text or last_text

                if not response.actions:
                    self.history.append(model_turn(response))
                    self._notify(response, None)
                    return self._stop(StopReason.TEXT_ONLY, last_text)

                logger.info("[%s] %s", self.session_id, describe_turn_activity([a.name for a in response.actions]))

                if self.config.session.require_plan_approval and any(a.name == "plan_steps" for a in response.actions):
                    plan_only = CanonicalResponse(
                        text=response.text,
                        actions=tuple(a for a in response.actions if a.name == "plan_steps")[:1],
                    )
                    outcome = self.engine.apply_turn(plan_only)
                    self.history.append(model_turn(plan_only))
                    self._pending_plan = outcome
                    self._notify(plan_only, outcome)
                    return self._stop(StopReason.AWAITING_APPROVAL, last_text)

                self.history.append(model_turn(response))
                try:
                    outcome = self.engine.apply_turn(response)
                except UnknownToolError as exc:
                    partial: TurnOutcome = exc.outcome
                    results = partial.function_results() + [(exc.tool_name, {"error": "Unknown tool"})]
                    self.history.append(function_turn(results))
                    self._notify(response, partial)
                    return self._stop(StopReason.HALTED, last_text, str(exc))

                self.history.append(function_turn(outcome.function_results()))
                self._log_turn(response, outcome)
                self._notify(response, outcome)

                if outcome.state is WorkflowState.DONE:
                    return self._stop(StopReason.FINISHED, last_text)
                if any(a.name == "chat" for a in response.actions):
                    return self._stop(StopReason.CHATTED, last_text)
            return self._stop(StopReason.TURN_LIMIT, last_text, f"turn limit of {max_turns} reached")
        except BridgeError as exc:
            self.run_logger.write_json(f"errors/turn_{self.turns:03d}.json", {"type": type(exc).__name__, "message": exc.message})
            self.engine.fail_task(exc.message)
            raise
        except Exception as exc:
            logger.exception("[%s] unexpected error on turn %d", self.session_id, self.turns)
            self.run_logger.write_json(f"errors/turn_{self.turns:03d}.json", {"type": type(exc).__name__, "message": str(exc)})
            self.engine.fail_task(f"Unexpected error: {exc}")
            raise

    def _call_model(self) -> CanonicalResponse:
        instruction = build_system_instruction(self.engine.file_system)
        request = self.binding.adapter.encode(self.history, self.engine.file_system, instruction)
        self.run_logger.write_json(
            f"turns/turn_{self.turns:03d}_request.json",
            {"provider": self.binding.provider_id, "adapter": request.adapter_id, "warnings": list(request.warnings), "payload": request.payload},
        )
        client = self.router.client_for(self.binding)
        raw = self.binding.runtime.send(client, request)
        try:
            response = self.binding.adapter.decode(raw)
        except ArgumentParseError as exc:
            logger.warning("[%s] %s; continuing with degraded response", self.session_id, exc.message)
            partial = exc.partial if isinstance(exc.partial, CanonicalResponse) else CanonicalResponse()
            response = partial.degraded()
        self.run_logger.write_json(f"turns/turn_{self.turns:03d}_response.json", response.to_dict())
        return response

    def _log_turn(self, response: CanonicalResponse, outcome: TurnOutcome) -> None:
        self.run_logger.write_json(
            f"turns/turn_{self.turns:03d}_results.json",
            {
                "state": outcome.state.value,
                "retry_count": outcome.retry_count,
                "results": [{"name": n, "result": r} for n, r in outcome.function_results()],
                "violations": [v.rule for v in outcome.violations],
            },
        )

    def _notify(self, response: CanonicalResponse, outcome: Optional[TurnOutcome]) -> None:
        if self.on_turn is not None:
            self.on_turn(self.turns, response, outcome)

    def _stop(self, reason: StopReason, text: Optional[str], detail: Optional[str] = None) -> SessionResult:
        detail = detail or reason.value
        if reason is not StopReason.AWAITING_APPROVAL and self.engine.busy:
            self.engine.fail_task(f"Agent stopped without finishing: {detail}")
        self.run_logger.write_json("meta/history.json", [turn_to_wire(t) for t in self.history])
        self.run_logger.write_json("meta/status.json", {"stop_reason": reason.value, **self.engine.status()})
        logger.info("[%s] stopped: %s (state=%s, retries=%d)", self.session_id, detail, self.engine.state.value, self.engine.retry_count)
        return SessionResult(
            stop_reason=reason,
            turns=self.turns,
            text=text,
            state=self.engine.state,
            retry_count=self.engine.retry_count,
            violations=tuple(self.engine.violations),
            file_system=self.engine.file_system,
        )


class _Exclusive:
    """Non-blocking guard: a second caller gets TaskBusyError instead of waiting."""

    def __init__(self, lock: threading.Lock):
        self._lock = lock

    def __enter__(self) -> None:
        if not self._lock.acquire(blocking=False):
            raise TaskBusyError("The session is already processing a request")

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()


__all__ = ["AgentSession", "SessionResult", "StopReason"]
