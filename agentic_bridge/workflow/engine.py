"""
Agent workflow engine.

Purely reactive sequencer: it records, orders and applies the ActionCalls of
each decoded model turn, tracks the Plan -> Code -> Verify -> Debug -> Finish
protocol and flags deviations as ProtocolViolations without blocking them.

State machine (per task)::

    AWAITING_PLAN --plan_steps--> PLANNING --read/list/write/delete--> EXECUTING
    EXECUTING --run_build_and_lint--> VERIFYING
    VERIFYING --build failed (retry_count += 1)--> EXECUTING
    * --finish_task--> DONE
    AWAITING_PLAN --chat-only turn--> CHATTING

The retry counter is observable and has no ceiling.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from ..errors import BridgeError, TaskBusyError, UnknownToolError
from ..provider_ir import ActionCall, CanonicalResponse
from ..tool_registry import ToolRegistry
from .collaborators import BuildResult, BuildVerifier, ImageSearch, PackageJsonBuildVerifier
from .file_system import FileSystemSnapshot
from .models import (
    AITask,
    ActionOutcome,
    ActionType,
    ProtocolViolation,
    TaskStatus,
    TurnOutcome,
    WorkflowState,
)

logger = logging.getLogger(__name__)

MUTATING_TOOLS = frozenset({"create_or_update_files", "delete_file"})


def _counter_ids() -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"task-{next(counter)}"


class WorkflowEngine:
    def __init__(
        self,
        registry: ToolRegistry,
        file_system: Optional[FileSystemSnapshot] = None,
        *,
        build_verifier: Optional[BuildVerifier] = None,
        image_search: Optional[ImageSearch] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self.registry = registry
        self.file_system = file_system if file_system is not None else FileSystemSnapshot()
        self.build_verifier: BuildVerifier = build_verifier or PackageJsonBuildVerifier()
        self.image_search = image_search
        self._next_id = id_factory or _counter_ids()
        self._lock = threading.Lock()

        self.state = WorkflowState.AWAITING_PLAN
        self.retry_count = 0
        self.tasks: List[AITask] = []
        self.violations: List[ProtocolViolation] = []
        self._planned = False
        self._mutated = False
        self._verified = False
        self._debugging = False
        self._handlers = {
            "plan_steps": self._plan_steps,
            "list_files": self._list_files,
            "read_file": self._read_file,
            "create_or_update_files": self._create_or_update_files,
            "delete_file": self._delete_file,
            "run_build_and_lint": self._run_build_and_lint,
            "finish_task": self._finish_task,
            "chat": self._chat,
            "search_pexels_for_images": self._search_images,
        }

    # ------------------------------------------------------------------
    # Task lifecycle
    # ------------------------------------------------------------------

    @property
    def current_task(self) -> Optional[AITask]:
        return self.tasks[-1] if self.tasks else None

    @property
    def verified(self) -> bool:
        return self._verified

    @property
    def busy(self) -> bool:
        task = self.current_task
        return task is not None and task.status is TaskStatus.IN_PROGRESS

    def begin_request(self, description: str) -> AITask:
        """Open a fresh task for a new user request.

        Raises TaskBusyError while the previous task is still in progress.
        """
        with self._lock:
            if self.busy:
                raise TaskBusyError(
                    f"Task {self.current_task.id} is still in progress",
                    details={"task_id": self.current_task.id},
                )
            task = AITask(id=self._next_id(), description=description)
            self.tasks.append(task)
            self.state = WorkflowState.AWAITING_PLAN
            self.retry_count = 0
            self._planned = False
            self._mutated = False
            self._verified = False
            self._debugging = False
            logger.debug("opened %s: %s", task.id, description)
            return task

    def fail_task(self, reason: str) -> None:
        """Close the current task as FAILED (unrecoverable error, rejected plan)."""
        task = self.current_task
        if task is None or task.status.terminal:
            return
        task.record(ActionType.TASK_FAIL, reason)
        task.advance(TaskStatus.FAILED)
        logger.info("%s failed: %s", task.id, reason)

    # ------------------------------------------------------------------
    # Turn application
    # ------------------------------------------------------------------

    def apply_turn(self, response: CanonicalResponse) -> TurnOutcome:
        """Apply a decoded turn's actions strictly in emission order.

        An unregistered tool name halts the turn with UnknownToolError; effects
        of the actions before it stay applied and travel on the exception.
        """
        with self._lock:
            chat_only = bool(response.actions) and all(a.name == "chat" for a in response.actions)
            violations_before = len(self.violations)
            outcomes: List[ActionOutcome] = []
            for call in response.actions:
                if call.name not in self.registry:
                    logger.warning("Unknown tool %r; halting turn after %d action(s)", call.name, len(outcomes))
                    partial = self._turn_outcome(outcomes, violations_before, halted_by=call.name)
                    raise UnknownToolError(call.name, outcome=partial)
                outcomes.append(self._apply(call, chat_only=chat_only))
            return self._turn_outcome(outcomes, violations_before)

    def status(self) -> Dict[str, Any]:
        task = self.current_task
        return {
            "state": self.state.value,
            "retry_count": self.retry_count,
            "verified": self._verified,
            "task": task.to_dict() if task else None,
            "violations": [v.rule for v in self.violations],
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _turn_outcome(
        self, outcomes: List[ActionOutcome], violations_before: int, halted_by: Optional[str] = None
    ) -> TurnOutcome:
        return TurnOutcome(
            actions=tuple(outcomes),
            state=self.state,
            retry_count=self.retry_count,
            violations=tuple(self.violations[violations_before:]),
            halted_by=halted_by,
        )

    def _open_task(self) -> AITask:
        task = self.current_task
        if task is None:
            task = AITask(id=self._next_id(), description="")
            self.tasks.append(task)
        if task.status is TaskStatus.PENDING:
            task.advance(TaskStatus.IN_PROGRESS)
            task.record(ActionType.TASK_START, task.description or None)
        return task

    def _violate(self, task: AITask, rule: str, message: str, tool_name: str) -> None:
        violation = ProtocolViolation(rule=rule, message=message, task_id=task.id, tool_name=tool_name)
        self.violations.append(violation)
        logger.warning("Protocol violation [%s] in %s: %s", rule, task.id, message)

    def _apply(self, call: ActionCall, *, chat_only: bool) -> ActionOutcome:
        task = self._open_task()
        errors = self.registry.argument_errors(call)
        if errors:
            message = f"Invalid arguments for {call.name}: " + "; ".join(errors)
            logger.info(message)
            return ActionOutcome(call=call, result={"success": False, "error": message}, applied=False)

        finished = task.status.terminal
        if finished and call.name != "chat":
            self._violate(task, "action_after_finish", f"{call.name} called after the task was closed", call.name)
        if call.name in MUTATING_TOOLS and not self._planned and not self._mutated:
            self._violate(task, "mutation_before_plan", f"{call.name} before any plan_steps in this task", call.name)

        result = self._handlers[call.name](task, call.args, chat_only=chat_only, finished=finished)
        logger.debug("%s -> state=%s retry=%d", call.name, self.state.value, self.retry_count)
        return ActionOutcome(call=call, result=result)

    def _enter(self, state: WorkflowState, finished: bool) -> None:
        # Closed tasks keep their terminal state; late actions only apply effects.
        if not finished:
            self.state = state

    # Handlers: (task, args, chat_only, finished) -> result payload

    def _plan_steps(self, task: AITask, args: Dict[str, Any], **flags: bool) -> Dict[str, Any]:
        steps = list(args["steps"])
        self._planned = True
        task.record(ActionType.PLAN_GENERATE, f"{len(steps)} steps")
        self._enter(WorkflowState.PLANNING, flags["finished"])
        return {"success": True, "plan": steps}

    def _list_files(self, task: AITask, args: Dict[str, Any], **flags: bool) -> Dict[str, Any]:
        task.record(ActionType.READ, ".")
        self._enter(WorkflowState.EXECUTING, flags["finished"])
        return {"files": self.file_system.paths()}

    def _read_file(self, task: AITask, args: Dict[str, Any], **flags: bool) -> Dict[str, Any]:
        path = args["path"]
        task.record(ActionType.READ, path)
        self._enter(WorkflowState.EXECUTING, flags["finished"])
        content = self.file_system.get(path)
        return {"content": content if content is not None else "File not found."}

    def _mutation_type(self, path: str) -> ActionType:
        if self._debugging:
            return ActionType.FIXING
        return ActionType.EDIT if path in self.file_system else ActionType.WRITE

    def _create_or_update_files(self, task: AITask, args: Dict[str, Any], **flags: bool) -> Dict[str, Any]:
        files: Dict[str, str] = dict(args["files"])
        for path in files:
            task.record(self._mutation_type(path), path)
        self.file_system = self.file_system.with_files(files)
        self._mutated = True
        self._verified = False
        self._enter(WorkflowState.EXECUTING, flags["finished"])
        return {"success": True, "files_written": list(files)}

    def _delete_file(self, task: AITask, args: Dict[str, Any], **flags: bool) -> Dict[str, Any]:
        path = args["path"]
        task.record(self._mutation_type(path), path)
        self.file_system = self.file_system.without(path)
        self._mutated = True
        self._verified = False
        self._enter(WorkflowState.EXECUTING, flags["finished"])
        return {"success": True, "path": path}

    def _run_build_and_lint(self, task: AITask, args: Dict[str, Any], **flags: bool) -> Dict[str, Any]:
        task.record(ActionType.BUILD)
        self._enter(WorkflowState.VERIFYING, flags["finished"])
        try:
            result = self.build_verifier(self.file_system)
        except (BridgeError, OSError, ValueError) as exc:
            message = exc.message if isinstance(exc, BridgeError) else str(exc)
            logger.warning("%s: build verifier raised: %s", task.id, message)
            result = BuildResult(success=False, error=f"Build verification failed: {message}")
        if result.success:
            self._verified = True
            self._debugging = False
            task.record(ActionType.VALIDATING, "passed")
        else:
            self._verified = False
            self._debugging = True
            self.retry_count += 1
            self._enter(WorkflowState.EXECUTING, flags["finished"])
            logger.info("%s: build failed, retry_count=%d", task.id, self.retry_count)
        return result.to_payload()

    def _finish_task(self, task: AITask, args: Dict[str, Any], **flags: bool) -> Dict[str, Any]:
        summary = args["summary"]
        if not self._verified:
            self._violate(task, "finish_without_verification", "finish_task without a successful run_build_and_lint", "finish_task")
        if not flags["finished"]:
            task.record(ActionType.TASK_COMPLETE, summary)
            task.advance(TaskStatus.COMPLETED)
            self.state = WorkflowState.DONE
        return {"success": True, "summary": summary}

    def _chat(self, task: AITask, args: Dict[str, Any], **flags: bool) -> Dict[str, Any]:
        response = args["response"]
        task.record(ActionType.THINKING)
        if flags["chat_only"] and self.state is WorkflowState.AWAITING_PLAN and not flags["finished"]:
            task.record(ActionType.TASK_COMPLETE)
            task.advance(TaskStatus.COMPLETED)
            self.state = WorkflowState.CHATTING
        return {"success": True, "response": response}

    def _search_images(self, task: AITask, args: Dict[str, Any], **flags: bool) -> Dict[str, Any]:
        query = args["query"]
        task.record(ActionType.SEARCH, query)
        if self.image_search is None:
            return {"success": False, "error": "Image search is not configured."}
        return self.image_search(query, args.get("orientation"))


__all__ = ["MUTATING_TOOLS", "WorkflowEngine"]
