"""
Agent workflow: task/action bookkeeping, the Plan -> Code -> Verify -> Finish
state machine and the in-memory file system it mutates.
"""

from .collaborators import (
    BuildResult,
    NpmBuildRunner,
    PackageJsonBuildVerifier,
    PexelsImageSearch,
    describe_turn_activity,
)
from .engine import WorkflowEngine
from .file_system import FileSystemSnapshot
from .models import (
    AIAction,
    AITask,
    ActionOutcome,
    ActionType,
    ProtocolViolation,
    TaskStatus,
    TurnOutcome,
    WorkflowState,
)

__all__ = [
    "AIAction",
    "AITask",
    "ActionOutcome",
    "ActionType",
    "BuildResult",
    "FileSystemSnapshot",
    "NpmBuildRunner",
    "PackageJsonBuildVerifier",
    "PexelsImageSearch",
    "ProtocolViolation",
    "TaskStatus",
    "TurnOutcome",
    "WorkflowEngine",
    "WorkflowState",
    "describe_turn_activity",
]
