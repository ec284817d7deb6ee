"""Types for transcript evaluation and reflection."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class SessionOutcome(Enum):
    """Classified outcome of one agent session."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"
    INTERRUPTED = "interrupted"


class ErrorType(Enum):
    TYPE = "type"
    SYNTAX = "syntax"
    RUNTIME = "runtime"
    TEST = "test"
    LINT = "lint"
    OTHER = "other"


@dataclass(frozen=True)
class ToolCall:
    """Structured record of a tool invocation inside a transcript chunk."""
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    output: Optional[str] = None


@dataclass(frozen=True)
class TranscriptChunk:
    """One turn of a session transcript."""
    content: str
    tool_calls: tuple[ToolCall, ...] = ()
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class EvaluationContext:
    """Timing and task linkage for an evaluation."""
    task_id: Optional[str] = None
    task_description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


@dataclass(frozen=True)
class ErrorRecord:
    type: ErrorType
    message: str
    resolved: bool = False
    turns_to_resolve: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "message": self.message,
            "resolved": self.resolved,
            "turns_to_resolve": self.turns_to_resolve,
        }


@dataclass(frozen=True)
class EvaluationMetrics:
    total_turns: int = 0
    total_tokens_estimate: int = 0
    duration_seconds: int = 0
    tool_call_count: int = 0
    error_count: int = 0
    retry_count: int = 0

    def to_dict(self) -> dict:
        return {
            "total_turns": self.total_turns,
            "total_tokens_estimate": self.total_tokens_estimate,
            "duration_seconds": self.duration_seconds,
            "tool_call_count": self.tool_call_count,
            "error_count": self.error_count,
            "retry_count": self.retry_count,
        }


@dataclass(frozen=True)
class TranscriptEvaluation:
    """
    Immutable analysis of one session transcript.

    All four scores are in [0, 1] and
    ``overall_score == 0.5 * completion + 0.3 * efficiency + 0.2 * error``.
    """
    session_id: str
    task_completion_score: float
    efficiency_score: float
    error_score: float
    overall_score: float
    outcome: SessionOutcome
    metrics: EvaluationMetrics
    what_worked: tuple[str, ...] = ()
    what_failed: tuple[str, ...] = ()
    inefficiencies: tuple[str, ...] = ()
    errors_encountered: tuple[ErrorRecord, ...] = ()
    task_id: Optional[str] = None
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def unresolved_errors(self) -> list[ErrorRecord]:
        return [e for e in self.errors_encountered if not e.resolved]

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "task_id": self.task_id,
            "evaluated_at": self.evaluated_at.isoformat(),
            "task_completion_score": self.task_completion_score,
            "efficiency_score": self.efficiency_score,
            "error_score": self.error_score,
            "overall_score": self.overall_score,
            "what_worked": list(self.what_worked),
            "what_failed": list(self.what_failed),
            "inefficiencies": list(self.inefficiencies),
            "errors_encountered": [e.to_dict() for e in self.errors_encountered],
            "outcome": self.outcome.value,
            "metrics": self.metrics.to_dict(),
        }


class ActionType(Enum):
    """Kind of change a reflection suggests to the project."""
    ADD_TO_CLAUDEMD = "add_to_claudemd"
    CREATE_SKILL = "create_skill"
    ADD_GOTCHA = "add_gotcha"
    CREATE_TOOL = "create_tool"
    UPDATE_CONVENTION = "update_convention"
    ADD_PATTERN = "add_pattern"


class ActionSource(Enum):
    ERROR_ANALYSIS = "error_analysis"
    INEFFICIENCY = "inefficiency"
    SUCCESS_PATTERN = "success_pattern"
    FAILURE_PATTERN = "failure_pattern"


class Priority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class SuggestedAction:
    type: ActionType
    title: str
    description: str
    implementation: str
    confidence: float
    source: ActionSource

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"SuggestedAction.confidence must be in [0, 1], got {self.confidence}")

    @property
    def key(self) -> tuple[ActionType, str]:
        return (self.type, self.title)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "implementation": self.implementation,
            "confidence": self.confidence,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class Reflection:
    """Verbal learnings and suggested actions derived from one evaluation."""
    session_id: str
    reflections: tuple[str, ...]
    suggested_actions: tuple[SuggestedAction, ...]
    priority: Priority
    confidence: float
    task_id: Optional[str] = None
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "task_id": self.task_id,
            "generated_at": self.generated_at.isoformat(),
            "reflections": list(self.reflections),
            "suggested_actions": [a.to_dict() for a in self.suggested_actions],
            "priority": self.priority.value,
            "confidence": self.confidence,
        }
