"""Task, action and state records kept by the workflow engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..provider_ir import ActionCall


class ActionType(str, Enum):
    THINKING = "THINKING"
    PLANNING = "PLANNING"
    INSTALL = "INSTALL"
    READ = "READ"
    WRITE = "WRITE"
    EDIT = "EDIT"
    BUILD = "BUILD"
    FIXING = "FIXING"
    COMMAND = "COMMAND"
    COMPLETE = "COMPLETE"
    PLAN_GENERATE = "PLAN_GENERATE"
    SEARCH = "SEARCH"
    RESEARCH = "RESEARCH"
    TASK_START = "TASK_START"
    TASK_COMPLETE = "TASK_COMPLETE"
    TASK_FAIL = "TASK_FAIL"
    VALIDATING = "VALIDATING"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


_STATUS_RANK = {
    TaskStatus.PENDING: 0,
    TaskStatus.IN_PROGRESS: 1,
    TaskStatus.COMPLETED: 2,
    TaskStatus.FAILED: 2,
}


class WorkflowState(str, Enum):
    AWAITING_PLAN = "AWAITING_PLAN"
    PLANNING = "PLANNING"
    EXECUTING = "EXECUTING"
    VERIFYING = "VERIFYING"
    DONE = "DONE"
    CHATTING = "CHATTING"

    @property
    def terminal(self) -> bool:
        return self in (WorkflowState.DONE, WorkflowState.CHATTING)


@dataclass(frozen=True)
class AIAction:
    type: ActionType
    target: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type.value}
        if self.target is not None:
            out["target"] = self.target
        return out


@dataclass
class AITask:
    id: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    actions: List[AIAction] = field(default_factory=list)

    def advance(self, status: TaskStatus) -> None:
        """Move forward to ``status``. Moving backwards or sideways raises ValueError."""
        if status is self.status:
            return
        if self.status.terminal or _STATUS_RANK[status] <= _STATUS_RANK[self.status]:
            raise ValueError(f"Task {self.id}: illegal status change {self.status.value} -> {status.value}")
        self.status = status

    def record(self, action_type: ActionType, target: Optional[str] = None) -> AIAction:
        action = AIAction(type=action_type, target=target)
        self.actions.append(action)
        return action

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "actions": [a.to_dict() for a in self.actions],
        }


@dataclass(frozen=True)
class ProtocolViolation:
    """A non-blocking sequencing mismatch; logged and kept for inspection."""

    rule: str
    message: str
    task_id: Optional[str] = None
    tool_name: Optional[str] = None


@dataclass(frozen=True)
class ActionOutcome:
    call: ActionCall
    result: Dict[str, Any]
    applied: bool = True


@dataclass(frozen=True)
class TurnOutcome:
    """What one model turn did to the engine."""

    actions: Tuple[ActionOutcome, ...]
    state: WorkflowState
    retry_count: int
    violations: Tuple[ProtocolViolation, ...] = ()
    halted_by: Optional[str] = None

    @property
    def halted(self) -> bool:
        return self.halted_by is not None

    def function_results(self) -> List[Tuple[str, Dict[str, Any]]]:
        """(tool name, result payload) pairs in emission order."""
        return [(o.call.name, o.result) for o in self.actions]


__all__ = [
    "AIAction",
    "AITask",
    "ActionOutcome",
    "ActionType",
    "ProtocolViolation",
    "TaskStatus",
    "TurnOutcome",
    "WorkflowState",
]
