"""Task dataclass for orchestrated work."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional
from enum import Enum
import uuid

from ..exceptions import InvalidStateTransitionError


class TaskStatus(Enum):
    """Task status enumeration."""
    QUEUED = "queued"
    PLANNING = "planning"
    EXECUTING = "executing"
    MONITORING = "monitoring"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class TaskType(Enum):
    """Kind of work a task represents."""
    FEATURE = "feature"
    BUG = "bug"
    REFACTOR = "refactor"
    TEST = "test"
    DOCUMENTATION = "documentation"
    RESEARCH = "research"
    REVIEW = "review"
    MAINTENANCE = "maintenance"


ALLOWED_TRANSITIONS: dict[TaskStatus, tuple[TaskStatus, ...]] = {
    TaskStatus.QUEUED: (TaskStatus.PLANNING, TaskStatus.CANCELLED),
    TaskStatus.PLANNING: (TaskStatus.EXECUTING, TaskStatus.FAILED, TaskStatus.CANCELLED),
    TaskStatus.EXECUTING: (
        TaskStatus.MONITORING,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    ),
    TaskStatus.MONITORING: (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED),
    TaskStatus.COMPLETED: (),
    TaskStatus.FAILED: (),
    TaskStatus.CANCELLED: (),
}


@dataclass(frozen=True)
class TaskResult:
    """Success payload of a completed task."""
    summary: str
    files_modified: list[str] = field(default_factory=list)
    learnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "files_modified": list(self.files_modified),
            "learnings": list(self.learnings),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TaskResult":
        return cls(
            summary=data["summary"],
            files_modified=data.get("files_modified", []),
            learnings=data.get("learnings", []),
        )


@dataclass(frozen=True)
class TaskError:
    """Failure payload of a failed task."""
    code: str
    message: str
    recoverable: bool = False

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "recoverable": self.recoverable}

    @classmethod
    def from_dict(cls, data: dict) -> "TaskError":
        return cls(
            code=data["code"],
            message=data["message"],
            recoverable=data.get("recoverable", False),
        )


@dataclass(frozen=True)
class Task:
    """
    Represents a unit of work dispatched by an orchestrator.

    Tasks are immutable: every transition returns a new instance. The
    result and error payloads are only set on the terminal transition
    and are mutually exclusive.

    Attributes:
        id: Unique task identifier
        orchestrator_id: Owning orchestrator
        user_id: Requesting user
        folder_id: Project folder, if any
        description: What needs to be done
        type: Task type
        status: Lifecycle status
        confidence: Planning certainty (0.0-1.0)
        estimated_duration: Estimated duration in seconds
        assigned_agent: Agent provider running the task
        delegation_id: Current delegation
        issue_id: Linked external issue
        context_injected: Context injected into the agent session
    """
    id: str
    orchestrator_id: str
    user_id: str
    description: str
    type: TaskType
    status: TaskStatus = TaskStatus.QUEUED
    folder_id: Optional[str] = None
    confidence: float = 1.0
    estimated_duration: Optional[int] = None
    assigned_agent: Optional[str] = None
    delegation_id: Optional[str] = None
    issue_id: Optional[str] = None
    context_injected: Optional[str] = None
    result: Optional[TaskResult] = None
    error: Optional[TaskError] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.description:
            raise ValueError("Task.description must be a non-empty string")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Task.confidence must be between 0 and 1, got {self.confidence}")
        if self.result is not None and self.error is not None:
            raise ValueError("Task.result and Task.error are mutually exclusive")
        if not self.status.is_terminal and (self.result is not None or self.error is not None):
            raise ValueError("Task.result/error may only be set on a terminal status")

    @classmethod
    def create(
        cls,
        orchestrator_id: str,
        user_id: str,
        description: str,
        task_type: TaskType = TaskType.FEATURE,
        folder_id: Optional[str] = None,
        confidence: float = 1.0,
        estimated_duration: Optional[int] = None,
        issue_id: Optional[str] = None,
    ) -> "Task":
        """Create a new queued task with generated ID."""
        return cls(
            id=uuid.uuid4().hex,
            orchestrator_id=orchestrator_id,
            user_id=user_id,
            description=description,
            type=task_type,
            folder_id=folder_id,
            confidence=confidence,
            estimated_duration=estimated_duration,
            issue_id=issue_id,
        )

    def _transition(self, target: TaskStatus, **updates) -> "Task":
        allowed = ALLOWED_TRANSITIONS[self.status]
        if target not in allowed:
            raise InvalidStateTransitionError(
                entity="Task",
                current=self.status.value,
                target=target.value,
                allowed=[s.value for s in allowed],
            )
        now = datetime.now(timezone.utc)
        if target.is_terminal:
            updates["completed_at"] = now
        return replace(self, status=target, updated_at=now, **updates)

    def start_planning(self) -> "Task":
        """Move from queued to planning."""
        return self._transition(TaskStatus.PLANNING)

    def start_execution(self, agent: str, context: str) -> "Task":
        """Assign an agent and start execution."""
        return self._transition(
            TaskStatus.EXECUTING,
            assigned_agent=agent,
            context_injected=context,
        )

    def attach_delegation(self, delegation_id: str) -> "Task":
        """Attach the current delegation (a spawned agent session)."""
        if self.status not in (TaskStatus.EXECUTING, TaskStatus.MONITORING):
            raise InvalidStateTransitionError(
                entity="Task",
                current=self.status.value,
                target="attach_delegation",
                allowed=[TaskStatus.EXECUTING.value, TaskStatus.MONITORING.value],
            )
        return replace(self, delegation_id=delegation_id, updated_at=datetime.now(timezone.utc))

    def start_monitoring(self) -> "Task":
        """Start monitoring the delegation."""
        return self._transition(TaskStatus.MONITORING)

    def complete(self, result: TaskResult) -> "Task":
        """Mark task as completed."""
        return self._transition(TaskStatus.COMPLETED, result=result)

    def fail(self, error: TaskError) -> "Task":
        """Mark task as failed."""
        return self._transition(TaskStatus.FAILED, error=error)

    def cancel(self) -> "Task":
        """Cancel the task."""
        return self._transition(TaskStatus.CANCELLED)

    def link_issue(self, issue_id: str) -> "Task":
        """Link an external issue."""
        if self.status.is_terminal:
            raise InvalidStateTransitionError(
                entity="Task",
                current=self.status.value,
                target="link_issue",
            )
        return replace(self, issue_id=issue_id, updated_at=datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict:
        """Convert task to dictionary for serialization."""
        return {
            "id": self.id,
            "orchestrator_id": self.orchestrator_id,
            "user_id": self.user_id,
            "folder_id": self.folder_id,
            "description": self.description,
            "type": self.type.value,
            "status": self.status.value,
            "confidence": self.confidence,
            "estimated_duration": self.estimated_duration,
            "assigned_agent": self.assigned_agent,
            "delegation_id": self.delegation_id,
            "issue_id": self.issue_id,
            "context_injected": self.context_injected,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error.to_dict() if self.error else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Create task from dictionary."""
        return cls(
            id=data["id"],
            orchestrator_id=data["orchestrator_id"],
            user_id=data["user_id"],
            folder_id=data.get("folder_id"),
            description=data["description"],
            type=TaskType(data["type"]),
            status=TaskStatus(data["status"]),
            confidence=data.get("confidence", 1.0),
            estimated_duration=data.get("estimated_duration"),
            assigned_agent=data.get("assigned_agent"),
            delegation_id=data.get("delegation_id"),
            issue_id=data.get("issue_id"),
            context_injected=data.get("context_injected"),
            result=TaskResult.from_dict(data["result"]) if data.get("result") else None,
            error=TaskError.from_dict(data["error"]) if data.get("error") else None,
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
        )
