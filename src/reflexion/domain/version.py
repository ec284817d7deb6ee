"""Versioned orchestrator configuration."""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import re
import uuid

from ..exceptions import InvalidStateTransitionError


def to_snake(name: str) -> str:
    """Convert a camelCase config key to its attribute name."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def to_camel(name: str) -> str:
    """Convert an attribute name to its camelCase config key."""
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class VersionStatus(Enum):
    """Lifecycle of an orchestrator version."""
    DRAFT = "draft"
    TESTING = "testing"  # candidate under A/B test
    ACTIVE = "active"
    RETIRED = "retired"


ALLOWED_TRANSITIONS: dict[VersionStatus, tuple[VersionStatus, ...]] = {
    VersionStatus.DRAFT: (VersionStatus.TESTING, VersionStatus.RETIRED),
    VersionStatus.TESTING: (VersionStatus.ACTIVE, VersionStatus.RETIRED),
    VersionStatus.ACTIVE: (VersionStatus.RETIRED,),
    # Rollback re-activates a retired version
    VersionStatus.RETIRED: (VersionStatus.ACTIVE,),
}


@dataclass(frozen=True)
class TaskParsingHeuristics:
    keyword_weights: dict[str, float] = field(default_factory=lambda: {
        "fix": 1.5,
        "bug": 1.5,
        "feature": 1.0,
        "refactor": 1.2,
        "test": 1.0,
        "doc": 0.8,
    })
    confidence_threshold: float = 0.6


@dataclass(frozen=True)
class AgentSelection:
    default_agent: str = "claude"
    task_type_preferences: dict[str, str] = field(default_factory=lambda: {
        "feature": "claude",
        "bug": "claude",
        "refactor": "claude",
        "test": "codex",
    })
    # 0-1, how much past performance weighs in agent selection
    performance_weight: float = 0.7


@dataclass(frozen=True)
class MonitoringSettings:
    stall_threshold_seconds: int = 300
    check_interval_seconds: int = 30
    max_retries: int = 3


@dataclass(frozen=True)
class AutonomySettings:
    auto_apply_improvements: bool = False
    confidence_threshold: float = 0.7
    max_changes_per_cycle: int = 3


SECTION_TYPES = {
    "task_parsing_heuristics": TaskParsingHeuristics,
    "agent_selection": AgentSelection,
    "monitoring": MonitoringSettings,
    "autonomy": AutonomySettings,
}


def _section_to_dict(section) -> dict[str, Any]:
    result = {}
    for f in fields(section):
        value = getattr(section, f.name)
        result[to_camel(f.name)] = dict(value) if isinstance(value, dict) else value
    return result


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Orchestrator configuration snapshot.

    Values are addressed externally by dotted camelCase component paths,
    e.g. ``monitoring.checkIntervalSeconds``. Partial diffs use the same
    camelCase keys grouped by section:
    ``{"monitoring": {"checkIntervalSeconds": 20}}``.
    """
    task_parsing_heuristics: TaskParsingHeuristics = field(default_factory=TaskParsingHeuristics)
    agent_selection: AgentSelection = field(default_factory=AgentSelection)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    autonomy: AutonomySettings = field(default_factory=AutonomySettings)

    def get(self, path: str) -> Any:
        """Look up a value by component path."""
        section_name, _, key = path.partition(".")
        section = getattr(self, to_snake(section_name))
        return getattr(section, to_snake(key))

    def merge(self, diff: dict[str, dict[str, Any]]) -> "OrchestratorConfig":
        """Return a new config with a partial per-section diff applied."""
        updates = {}
        for section_key, values in diff.items():
            attr = to_snake(section_key)
            if attr not in SECTION_TYPES:
                raise KeyError(f"Unknown config section: {section_key}")
            section = getattr(self, attr)
            valid = {f.name for f in fields(section)}
            changes = {}
            for key, value in values.items():
                name = to_snake(key)
                if name not in valid:
                    raise KeyError(f"Unknown config key: {section_key}.{key}")
                changes[name] = value
            updates[attr] = replace(section, **changes)
        return replace(self, **updates)

    def to_dict(self) -> dict:
        return {
            to_camel(name): _section_to_dict(getattr(self, name))
            for name in SECTION_TYPES
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OrchestratorConfig":
        return cls().merge(data)


@dataclass(frozen=True)
class VersionMetrics:
    """Cumulative performance metrics for one version."""
    task_success_rate: float = 0.0
    task_partial_rate: float = 0.0
    task_failure_rate: float = 0.0
    avg_task_duration: float = 0.0  # seconds
    avg_tokens_per_task: float = 0.0
    avg_turns_per_task: float = 0.0
    agent_selection_accuracy: float = 0.0
    agent_switch_rate: float = 0.0
    user_satisfaction_score: Optional[float] = None
    total_tasks_evaluated: int = 0
    evaluation_window_days: int = 7

    def to_dict(self) -> dict:
        return {to_camel(f.name): getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict) -> "VersionMetrics":
        valid = {f.name for f in fields(cls)}
        return cls(**{to_snake(k): v for k, v in data.items() if to_snake(k) in valid})


@dataclass(frozen=True)
class VersionTaskResult:
    """One task outcome folded into a version's metrics."""
    success: bool
    partial: bool
    duration: float
    tokens: int
    turns: int
    agent_selection_correct: bool


@dataclass(frozen=True)
class OrchestratorVersion:
    """
    Immutable snapshot of an orchestrator's configuration.

    State changes return a new instance; the archive decides which
    version is active.
    """
    id: str
    orchestrator_id: str
    version: int
    config: OrchestratorConfig
    status: VersionStatus
    metrics: VersionMetrics = field(default_factory=VersionMetrics)
    parent_version_id: Optional[str] = None
    improvements: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not self.id:
            raise ValueError("OrchestratorVersion.id must be a non-empty string")
        if not self.orchestrator_id:
            raise ValueError("OrchestratorVersion.orchestrator_id must be a non-empty string")
        if self.version < 1:
            raise ValueError(f"OrchestratorVersion.version must be positive, got {self.version}")

    @classmethod
    def create_initial(
        cls,
        orchestrator_id: str,
        config: Optional[OrchestratorConfig] = None,
    ) -> "OrchestratorVersion":
        """Create version 1, active from the start."""
        return cls(
            id=uuid.uuid4().hex,
            orchestrator_id=orchestrator_id,
            version=1,
            config=config or OrchestratorConfig(),
            status=VersionStatus.ACTIVE,
        )

    @classmethod
    def create_from_parent(
        cls,
        parent: "OrchestratorVersion",
        config_diff: Optional[dict[str, dict[str, Any]]] = None,
        improvements: Optional[list[str]] = None,
    ) -> "OrchestratorVersion":
        """Derive a candidate version: parent config merged with the diff, metrics zeroed."""
        return cls(
            id=uuid.uuid4().hex,
            orchestrator_id=parent.orchestrator_id,
            version=parent.version + 1,
            config=parent.config.merge(config_diff or {}),
            status=VersionStatus.TESTING,
            parent_version_id=parent.id,
            improvements=tuple(improvements or ()),
        )

    def _transition(self, target: VersionStatus) -> "OrchestratorVersion":
        allowed = ALLOWED_TRANSITIONS[self.status]
        if target not in allowed:
            raise InvalidStateTransitionError(
                entity="OrchestratorVersion",
                current=self.status.value,
                target=target.value,
                allowed=[s.value for s in allowed],
            )
        return replace(self, status=target, updated_at=datetime.now(timezone.utc))

    def start_testing(self) -> "OrchestratorVersion":
        return self._transition(VersionStatus.TESTING)

    def promote(self) -> "OrchestratorVersion":
        """Promote a tested candidate to active."""
        return self._transition(VersionStatus.ACTIVE)

    def retire(self) -> "OrchestratorVersion":
        if self.status == VersionStatus.RETIRED:
            return self
        return self._transition(VersionStatus.RETIRED)

    def reactivate(self) -> "OrchestratorVersion":
        """Bring a retired version back as active (rollback)."""
        if self.status != VersionStatus.RETIRED:
            raise InvalidStateTransitionError(
                entity="OrchestratorVersion",
                current=self.status.value,
                target=VersionStatus.ACTIVE.value,
                allowed=[],
            )
        return self._transition(VersionStatus.ACTIVE)

    def with_metrics(self, result: VersionTaskResult) -> "OrchestratorVersion":
        """Fold one task result into the metrics with incremental averages."""
        m = self.metrics
        n = m.total_tasks_evaluated

        def avg(current: float, value: float) -> float:
            return (current * n + value) / (n + 1)

        failed = not result.success and not result.partial
        metrics = replace(
            m,
            task_success_rate=avg(m.task_success_rate, 1 if result.success else 0),
            task_partial_rate=avg(m.task_partial_rate, 1 if result.partial else 0),
            task_failure_rate=avg(m.task_failure_rate, 1 if failed else 0),
            avg_task_duration=avg(m.avg_task_duration, result.duration),
            avg_tokens_per_task=avg(m.avg_tokens_per_task, result.tokens),
            avg_turns_per_task=avg(m.avg_turns_per_task, result.turns),
            agent_selection_accuracy=avg(
                m.agent_selection_accuracy, 1 if result.agent_selection_correct else 0
            ),
            total_tasks_evaluated=n + 1,
        )
        return replace(self, metrics=metrics, updated_at=datetime.now(timezone.utc))

    def with_satisfaction(self, score: float) -> "OrchestratorVersion":
        if not 0.0 <= score <= 1.0:
            raise ValueError(f"Satisfaction score must be between 0 and 1, got {score}")
        m = self.metrics
        n = max(1, m.total_tasks_evaluated)
        current = m.user_satisfaction_score
        new_score = score if current is None else (current * (n - 1) + score) / n
        return replace(
            self,
            metrics=replace(m, user_satisfaction_score=new_score),
            updated_at=datetime.now(timezone.utc),
        )

    def performance_score(self) -> float:
        """Weighted combination of metrics used to compare versions."""
        m = self.metrics
        satisfaction = m.user_satisfaction_score if m.user_satisfaction_score is not None else 0.5
        return (
            m.task_success_rate * 0.4
            + m.task_partial_rate * 0.1
            + (1 - m.task_failure_rate) * 0.2
            + m.agent_selection_accuracy * 0.2
            + satisfaction * 0.1
        )

    def has_minimum_data(self, min_tasks: int = 5) -> bool:
        return self.metrics.total_tasks_evaluated >= min_tasks

    def outperforms(self, other: "OrchestratorVersion", min_sample_size: int = 5) -> bool:
        if not (self.has_minimum_data(min_sample_size) and other.has_minimum_data(min_sample_size)):
            return False
        return self.performance_score() > other.performance_score()

    @property
    def is_active(self) -> bool:
        return self.status == VersionStatus.ACTIVE

    @property
    def is_testing(self) -> bool:
        return self.status == VersionStatus.TESTING

    @property
    def is_initial(self) -> bool:
        return self.parent_version_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orchestrator_id": self.orchestrator_id,
            "version": self.version,
            "status": self.status.value,
            "config": self.config.to_dict(),
            "metrics": self.metrics.to_dict(),
            "parent_version_id": self.parent_version_id,
            "improvements": list(self.improvements),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OrchestratorVersion":
        return cls(
            id=data["id"],
            orchestrator_id=data["orchestrator_id"],
            version=data["version"],
            status=VersionStatus(data["status"]),
            config=OrchestratorConfig.from_dict(data.get("config", {})),
            metrics=VersionMetrics.from_dict(data.get("metrics", {})),
            parent_version_id=data.get("parent_version_id"),
            improvements=tuple(data.get("improvements", [])),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
