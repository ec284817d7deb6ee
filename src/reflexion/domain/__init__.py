"""Domain model: tasks, delegations and orchestrator versions."""

from .task import Task, TaskStatus, TaskType, TaskResult, TaskError
from .delegation import Delegation, DelegationStatus, DelegationResult, LogEntry
from .version import (
    OrchestratorVersion,
    OrchestratorConfig,
    VersionMetrics,
    VersionStatus,
    VersionTaskResult,
)

__all__ = [
    "Task",
    "TaskStatus",
    "TaskType",
    "TaskResult",
    "TaskError",
    "Delegation",
    "DelegationStatus",
    "DelegationResult",
    "LogEntry",
    "OrchestratorVersion",
    "OrchestratorConfig",
    "VersionMetrics",
    "VersionStatus",
    "VersionTaskResult",
]
