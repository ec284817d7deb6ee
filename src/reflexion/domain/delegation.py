"""Delegation: one agent's execution attempt for a task."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import uuid

from ..exceptions import InvalidStateTransitionError


class DelegationStatus(Enum):
    SPAWNING = "spawning"
    INJECTING_CONTEXT = "injecting_context"
    RUNNING = "running"
    MONITORING = "monitoring"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[DelegationStatus, tuple[DelegationStatus, ...]] = {
    DelegationStatus.SPAWNING: (DelegationStatus.INJECTING_CONTEXT, DelegationStatus.FAILED),
    DelegationStatus.INJECTING_CONTEXT: (DelegationStatus.RUNNING, DelegationStatus.FAILED),
    DelegationStatus.RUNNING: (
        DelegationStatus.MONITORING,
        DelegationStatus.COMPLETED,
        DelegationStatus.FAILED,
    ),
    DelegationStatus.MONITORING: (DelegationStatus.COMPLETED, DelegationStatus.FAILED),
    DelegationStatus.COMPLETED: (),
    DelegationStatus.FAILED: (),
}


@dataclass(frozen=True)
class LogEntry:
    """A single execution log line."""
    timestamp: datetime
    level: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DelegationResult:
    success: bool
    summary: str
    exit_code: Optional[int] = None


@dataclass(frozen=True)
class Delegation:
    """
    An agent session spawned to execute a task.

    A task may accumulate several delegations (retries); the task's
    ``delegation_id`` points at the current one.
    """
    id: str
    task_id: str
    session_id: str
    agent_provider: str
    status: DelegationStatus = DelegationStatus.SPAWNING
    worktree_id: Optional[str] = None
    context_injected: Optional[str] = None
    execution_logs: tuple[LogEntry, ...] = ()
    result: Optional[DelegationResult] = None
    error: Optional[str] = None
    transcript_path: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        task_id: str,
        session_id: str,
        agent_provider: str,
        worktree_id: Optional[str] = None,
    ) -> "Delegation":
        return cls(
            id=uuid.uuid4().hex,
            task_id=task_id,
            session_id=session_id,
            agent_provider=agent_provider,
            worktree_id=worktree_id,
        )

    def _transition(self, target: DelegationStatus, **updates) -> "Delegation":
        allowed = ALLOWED_TRANSITIONS[self.status]
        if target not in allowed:
            raise InvalidStateTransitionError(
                entity="Delegation",
                current=self.status.value,
                target=target.value,
                allowed=[s.value for s in allowed],
            )
        now = datetime.now(timezone.utc)
        if target in (DelegationStatus.COMPLETED, DelegationStatus.FAILED):
            updates["completed_at"] = now
        return replace(self, status=target, updated_at=now, **updates)

    def inject_context(self, context: str) -> "Delegation":
        return self._transition(DelegationStatus.INJECTING_CONTEXT, context_injected=context)

    def start_running(self) -> "Delegation":
        return self._transition(DelegationStatus.RUNNING)

    def start_monitoring(self) -> "Delegation":
        return self._transition(DelegationStatus.MONITORING)

    def complete(self, result: DelegationResult, transcript_path: Optional[str] = None) -> "Delegation":
        return self._transition(
            DelegationStatus.COMPLETED,
            result=result,
            transcript_path=transcript_path,
        )

    def fail(self, error: str) -> "Delegation":
        return self._transition(DelegationStatus.FAILED, error=error)

    def add_log(self, level: str, message: str, **metadata) -> "Delegation":
        """Append an execution log entry, keeping the log ordered."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc),
            level=level,
            message=message,
            metadata=metadata,
        )
        return replace(self, execution_logs=self.execution_logs + (entry,))

    @property
    def is_finished(self) -> bool:
        return self.status in (DelegationStatus.COMPLETED, DelegationStatus.FAILED)

    @property
    def is_successful(self) -> bool:
        return self.status == DelegationStatus.COMPLETED and bool(self.result and self.result.success)
