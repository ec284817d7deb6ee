"""Episode types for the episodic memory store."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid


class EpisodeType(Enum):
    """Types of episode."""

    TASK_EXECUTION = "task_execution"
    ERROR_RECOVERY = "error_recovery"
    TOOL_DISCOVERY = "tool_discovery"
    AGENT_INTERACTION = "agent_interaction"
    USER_FEEDBACK = "user_feedback"


class EpisodeOutcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"
    CANCELLED = "cancelled"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Optional[str]) -> datetime:
    return datetime.fromisoformat(value) if value else _now()


@dataclass(frozen=True)
class TrajectoryStep:
    """One recorded action during a task."""

    action: str
    success: bool = True
    tool: Optional[str] = None
    input: Optional[str] = None
    output: Optional[str] = None
    duration_ms: int = 0
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "success": self.success,
            "tool": self.tool,
            "input": self.input,
            "output": self.output,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TrajectoryStep":
        return cls(
            action=data["action"],
            success=data.get("success", True),
            tool=data.get("tool"),
            input=data.get("input"),
            output=data.get("output"),
            duration_ms=data.get("duration_ms", 0),
            timestamp=_parse_time(data.get("timestamp")),
        )


@dataclass(frozen=True)
class Decision:
    context: str
    options: tuple[str, ...]
    chosen: str
    reasoning: str
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "context": self.context,
            "options": list(self.options),
            "chosen": self.chosen,
            "reasoning": self.reasoning,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Decision":
        return cls(
            context=data["context"],
            options=tuple(data.get("options", [])),
            chosen=data["chosen"],
            reasoning=data.get("reasoning", ""),
            timestamp=_parse_time(data.get("timestamp")),
        )


class PivotTrigger(Enum):
    ERROR = "error"
    FEEDBACK = "feedback"
    DISCOVERY = "discovery"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Pivot:
    """A change of approach mid-task."""

    from_approach: str
    to_approach: str
    reason: str
    triggered_by: PivotTrigger
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "from_approach": self.from_approach,
            "to_approach": self.to_approach,
            "reason": self.reason,
            "triggered_by": self.triggered_by.value,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Pivot":
        return cls(
            from_approach=data["from_approach"],
            to_approach=data["to_approach"],
            reason=data.get("reason", ""),
            triggered_by=PivotTrigger(data["triggered_by"]),
            timestamp=_parse_time(data.get("timestamp")),
        )


@dataclass(frozen=True)
class EpisodeContext:
    task_description: str
    project_path: str = ""
    initial_state: str = ""
    agent_provider: Optional[str] = None
    session_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "task_description": self.task_description,
            "project_path": self.project_path,
            "initial_state": self.initial_state,
            "agent_provider": self.agent_provider,
            "session_id": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EpisodeContext":
        return cls(
            task_description=data.get("task_description", ""),
            project_path=data.get("project_path", ""),
            initial_state=data.get("initial_state", ""),
            agent_provider=data.get("agent_provider"),
            session_id=data.get("session_id"),
        )


@dataclass(frozen=True)
class EpisodeTrajectory:
    """Ordered record of what happened during the task."""

    actions: tuple[TrajectoryStep, ...] = ()
    observations: tuple[str, ...] = ()
    decisions: tuple[Decision, ...] = ()
    pivots: tuple[Pivot, ...] = ()

    def to_dict(self) -> dict:
        return {
            "actions": [a.to_dict() for a in self.actions],
            "observations": list(self.observations),
            "decisions": [d.to_dict() for d in self.decisions],
            "pivots": [p.to_dict() for p in self.pivots],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EpisodeTrajectory":
        return cls(
            actions=tuple(TrajectoryStep.from_dict(a) for a in data.get("actions", [])),
            observations=tuple(data.get("observations", [])),
            decisions=tuple(Decision.from_dict(d) for d in data.get("decisions", [])),
            pivots=tuple(Pivot.from_dict(p) for p in data.get("pivots", [])),
        )


@dataclass(frozen=True)
class EpisodeOutcomeData:
    outcome: EpisodeOutcome
    result: str = ""
    duration_ms: int = 0
    error_count: int = 0
    tool_call_count: int = 0
    cost: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "result": self.result,
            "duration_ms": self.duration_ms,
            "error_count": self.error_count,
            "tool_call_count": self.tool_call_count,
            "cost": self.cost,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EpisodeOutcomeData":
        return cls(
            outcome=EpisodeOutcome(data["outcome"]),
            result=data.get("result", ""),
            duration_ms=data.get("duration_ms", 0),
            error_count=data.get("error_count", 0),
            tool_call_count=data.get("tool_call_count", 0),
            cost=data.get("cost"),
        )


@dataclass(frozen=True)
class EpisodeReflection:
    what_worked: tuple[str, ...] = ()
    what_failed: tuple[str, ...] = ()
    key_insights: tuple[str, ...] = ()
    would_do_differently: Optional[str] = None
    user_rating: Optional[int] = None  # 1-5
    user_feedback: Optional[str] = None

    @property
    def item_count(self) -> int:
        return len(self.what_worked) + len(self.what_failed) + len(self.key_insights)

    def to_dict(self) -> dict:
        return {
            "what_worked": list(self.what_worked),
            "what_failed": list(self.what_failed),
            "key_insights": list(self.key_insights),
            "would_do_differently": self.would_do_differently,
            "user_rating": self.user_rating,
            "user_feedback": self.user_feedback,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EpisodeReflection":
        return cls(
            what_worked=tuple(data.get("what_worked", [])),
            what_failed=tuple(data.get("what_failed", [])),
            key_insights=tuple(data.get("key_insights", [])),
            would_do_differently=data.get("would_do_differently"),
            user_rating=data.get("user_rating"),
            user_feedback=data.get("user_feedback"),
        )


@dataclass(frozen=True)
class Episode:
    """
    A stored unit of task experience.

    Attributes:
        id: Unique identifier
        task_id: Task this episode was recorded for
        folder_id: Project folder scope (None for global)
        type: Episode type
        context: What the task was and where it ran
        trajectory: Ordered actions, observations, decisions and pivots
        outcome: Result, duration and counts
        reflection: Learnings and optional user feedback
        tags: Tags for categorization

    The quality score is always derived from these fields and never
    stored on its own.
    """

    id: str
    task_id: str
    type: EpisodeType
    context: EpisodeContext
    outcome: EpisodeOutcomeData
    folder_id: Optional[str] = None
    trajectory: EpisodeTrajectory = field(default_factory=EpisodeTrajectory)
    reflection: EpisodeReflection = field(default_factory=EpisodeReflection)
    tags: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @classmethod
    def create(
        cls,
        task_id: str,
        context: EpisodeContext,
        outcome: EpisodeOutcomeData,
        episode_type: EpisodeType = EpisodeType.TASK_EXECUTION,
        folder_id: Optional[str] = None,
        trajectory: Optional[EpisodeTrajectory] = None,
        reflection: Optional[EpisodeReflection] = None,
        tags: Optional[list[str]] = None,
    ) -> "Episode":
        """Create a new episode."""
        return cls(
            id=uuid.uuid4().hex[:12],
            task_id=task_id,
            folder_id=folder_id,
            type=episode_type,
            context=context,
            outcome=outcome,
            trajectory=trajectory or EpisodeTrajectory(),
            reflection=reflection or EpisodeReflection(),
            tags=tuple(tags or ()),
        )

    @property
    def is_success(self) -> bool:
        return self.outcome.outcome == EpisodeOutcome.SUCCESS

    @property
    def is_failed(self) -> bool:
        return self.outcome.outcome == EpisodeOutcome.FAILURE

    @property
    def quality_score(self) -> float:
        """Usefulness for retrieval, 0-100."""
        score = 0.0
        if self.is_success:
            score += 50
        elif self.outcome.outcome == EpisodeOutcome.PARTIAL:
            score += 25

        if self.reflection.user_rating:
            score += self.reflection.user_rating / 5 * 30

        score += min(self.reflection.item_count * 2, 20)
        return min(score, 100.0)

    @property
    def age_days(self) -> float:
        return (_now() - self.created_at).total_seconds() / 86400

    def with_reflection(self, reflection: EpisodeReflection) -> "Episode":
        return replace(self, reflection=reflection, updated_at=_now())

    def with_user_feedback(self, rating: int, feedback: Optional[str] = None) -> "Episode":
        if not 1 <= rating <= 5:
            raise ValueError(f"User rating must be between 1 and 5, got {rating}")
        reflection = replace(self.reflection, user_rating=rating, user_feedback=feedback)
        return replace(self, reflection=reflection, updated_at=_now())

    def with_tags(self, tags: list[str]) -> "Episode":
        merged = tuple(dict.fromkeys((*self.tags, *tags)))
        return replace(self, tags=merged, updated_at=_now())

    def with_trajectory(self, trajectory: EpisodeTrajectory) -> "Episode":
        return replace(self, trajectory=trajectory, updated_at=_now())

    def embedding_text(self) -> str:
        """Text embedded for similarity search."""
        r = self.reflection
        parts = [self.context.task_description, self.outcome.result]
        parts.extend(f"✓ {w}" for w in r.what_worked)
        parts.extend(f"✗ {f}" for f in r.what_failed)
        parts.extend(f"💡 {i}" for i in r.key_insights)
        if r.would_do_differently:
            parts.append(r.would_do_differently)
        return " ".join(p for p in parts if p)

    def summary(self) -> str:
        marker = "✅" if self.is_success else "❌" if self.is_failed else "⚠️"
        seconds = round(self.outcome.duration_ms / 1000)
        return (
            f"{marker} {self.type.value}: {self.context.task_description[:100]}... "
            f"({seconds}s, {self.outcome.tool_call_count} tools)"
        )

    def learnings_summary(self) -> str:
        r = self.reflection
        parts = []
        if r.what_worked:
            parts.append(f"What worked: {'; '.join(r.what_worked)}")
        if r.what_failed:
            parts.append(f"What failed: {'; '.join(r.what_failed)}")
        if r.key_insights:
            parts.append(f"Key insights: {'; '.join(r.key_insights)}")
        if r.would_do_differently:
            parts.append(f"Would do differently: {r.would_do_differently}")
        return "\n".join(parts)

    def context_for_similar_task(self) -> str:
        """Markdown block injected into the prompt of a similar new task."""
        r = self.reflection
        lines = [
            "## Previous Similar Task Experience",
            f"Task: {self.context.task_description}",
            f"Outcome: {self.outcome.outcome.value} ({round(self.outcome.duration_ms / 1000)}s)",
        ]

        if self.is_success:
            if r.what_worked:
                lines.append("\n### What Worked")
                lines.extend(f"- {item}" for item in r.what_worked)
            if r.key_insights:
                lines.append("\n### Key Insights")
                lines.extend(f"- {item}" for item in r.key_insights)
        else:
            if r.what_failed:
                lines.append("\n### What Failed (Avoid These)")
                lines.extend(f"- ⚠️ {item}" for item in r.what_failed)
            if r.would_do_differently:
                lines.append("\n### Recommended Approach")
                lines.append(r.would_do_differently)

        return "\n".join(lines)

    def key_decisions(self) -> list[str]:
        return [f"{d.chosen}: {d.reasoning}" for d in self.trajectory.decisions]

    def pivots(self) -> list[str]:
        return [
            f'Changed from "{p.from_approach}" to "{p.to_approach}" because: {p.reason}'
            for p in self.trajectory.pivots
        ]

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "id": self.id,
            "task_id": self.task_id,
            "folder_id": self.folder_id,
            "type": self.type.value,
            "context": self.context.to_dict(),
            "trajectory": self.trajectory.to_dict(),
            "outcome": self.outcome.to_dict(),
            "reflection": self.reflection.to_dict(),
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Episode":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            task_id=data["task_id"],
            folder_id=data.get("folder_id"),
            type=EpisodeType(data["type"]),
            context=EpisodeContext.from_dict(data["context"]),
            trajectory=EpisodeTrajectory.from_dict(data.get("trajectory", {})),
            outcome=EpisodeOutcomeData.from_dict(data["outcome"]),
            reflection=EpisodeReflection.from_dict(data.get("reflection", {})),
            tags=tuple(data.get("tags", [])),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

    def __repr__(self) -> str:
        return f"Episode({self.id[:6]}, {self.type.value}, {self.outcome.outcome.value})"


@dataclass
class EpisodeSearchOptions:
    """Query options for episode search."""

    limit: int = 5
    min_score: float = 0.4
    types: Optional[list[EpisodeType]] = None
    outcomes: Optional[list[EpisodeOutcome]] = None
    folder_id: Optional[str] = None
    min_quality_score: Optional[float] = None
    prefer_recent: bool = True


@dataclass(frozen=True)
class EpisodeSearchResult:
    episode: Episode
    score: float  # 0-1
    relevance_reason: str


@dataclass(frozen=True)
class SimilarExperiences:
    successful_approaches: list[EpisodeSearchResult]
    warnings_from_failures: list[EpisodeSearchResult]
    relevant_insights: list[str]


@dataclass(frozen=True)
class EpisodeStats:
    total_episodes: int
    by_type: dict[str, int]
    by_outcome: dict[str, int]
    avg_quality_score: float
    avg_duration_ms: float
