"""Orchestrator version archive with YAML storage and A/B tests."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol
import hashlib
import logging
import os
import uuid
import yaml

from ..config import config
from ..domain.version import (
    OrchestratorConfig,
    OrchestratorVersion,
    VersionMetrics,
    VersionStatus,
    VersionTaskResult,
)
from ..exceptions import (
    ABTestAlreadyRunningError,
    ABTestNotFoundError,
    NoActiveVersionError,
    VersionNotFoundError,
)

logger = logging.getLogger(__name__)


class Recommendation(Enum):
    PROMOTE = "promote"
    ROLLBACK = "rollback"
    CONTINUE = "continue"


@dataclass(frozen=True)
class ABTest:
    """A running or finished experiment between a candidate and the active version."""
    id: str
    orchestrator_id: str
    treatment_version_id: str
    control_version_id: str
    traffic_split: float  # share of tasks routed to the treatment
    min_sample_size: int
    max_duration_days: float
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.ended_at is None

    @property
    def days_running(self) -> float:
        return (datetime.now(timezone.utc) - self.started_at).total_seconds() / 86400

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orchestrator_id": self.orchestrator_id,
            "treatment_version_id": self.treatment_version_id,
            "control_version_id": self.control_version_id,
            "traffic_split": self.traffic_split,
            "min_sample_size": self.min_sample_size,
            "max_duration_days": self.max_duration_days,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ABTest":
        return cls(
            id=data["id"],
            orchestrator_id=data["orchestrator_id"],
            treatment_version_id=data["treatment_version_id"],
            control_version_id=data["control_version_id"],
            traffic_split=data["traffic_split"],
            min_sample_size=data["min_sample_size"],
            max_duration_days=data["max_duration_days"],
            started_at=datetime.fromisoformat(data["started_at"]),
            ended_at=datetime.fromisoformat(data["ended_at"]) if data.get("ended_at") else None,
        )


@dataclass(frozen=True)
class ABTestResult:
    test_id: str
    test: ABTest
    treatment_metrics: VersionMetrics
    control_metrics: VersionMetrics
    significance_level: float
    recommendation: Recommendation
    reason: str


class VersionArchive(Protocol):
    """Version storage and A/B lifecycle consumed by the improvement loop."""

    async def get_active_version(self, orchestrator_id: str) -> Optional[OrchestratorVersion]:
        ...

    async def create_new_version(
        self,
        orchestrator_id: str,
        config_diff: dict[str, dict[str, Any]],
        improvements: list[str],
    ) -> OrchestratorVersion:
        ...

    async def start_ab_test(
        self,
        candidate_id: str,
        baseline_id: str,
        traffic_split: float = 0.5,
        min_sample_size: int = 10,
        max_duration_days: float = 7,
    ) -> str:
        ...

    async def evaluate_ab_test(self, test_id: str) -> ABTestResult:
        ...

    async def promote_version(self, version_id: str) -> OrchestratorVersion:
        ...

    async def end_ab_test(self, test_id: str) -> None:
        ...

    async def get_version_history(self, orchestrator_id: str) -> list[OrchestratorVersion]:
        ...


class YamlVersionArchive:
    """
    Stores orchestrator versions as YAML files.

    Structure:
    data/versions/{orchestrator_id}/
        v001_<id>.yaml
        v002_<id>.yaml
        active.yaml -> {version_id, version}
    data/versions/_tests/<test_id>.yaml

    A version's config never changes after creation; its file is only
    rewritten when status or metrics change. The active pointer is
    replaced atomically, so readers always see a complete pointer.
    """

    SIGNIFICANT_DIFF = 0.05

    def __init__(self, base_path: Optional[Path] = None):
        self.base_path = base_path or config.paths.versions
        self.tests_path = self.base_path / "_tests"
        self.tests_path.mkdir(parents=True, exist_ok=True)

    # -- file helpers --------------------------------------------------------

    @staticmethod
    def _write_yaml(path: Path, data: dict):
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, allow_unicode=True, default_flow_style=False, sort_keys=False)
        os.replace(tmp_path, path)

    @staticmethod
    def _read_yaml(path: Path) -> dict:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def _orchestrator_path(self, orchestrator_id: str) -> Path:
        return self.base_path / orchestrator_id

    def _version_path(self, version: OrchestratorVersion) -> Path:
        return self._orchestrator_path(version.orchestrator_id) / f"v{version.version:03d}_{version.id}.yaml"

    def _save_version(self, version: OrchestratorVersion):
        self._write_yaml(self._version_path(version), version.to_dict())

    def _set_active(self, version: OrchestratorVersion):
        self._write_yaml(
            self._orchestrator_path(version.orchestrator_id) / "active.yaml",
            {"version_id": version.id, "version": version.version},
        )

    def _save_test(self, test: ABTest):
        self._write_yaml(self.tests_path / f"{test.id}.yaml", test.to_dict())

    def _load_test(self, test_id: str) -> ABTest:
        path = self.tests_path / f"{test_id}.yaml"
        if not path.exists():
            raise ABTestNotFoundError(test_id)
        return ABTest.from_dict(self._read_yaml(path))

    # -- versions ------------------------------------------------------------

    async def initialize_orchestrator(
        self,
        orchestrator_id: str,
        initial_config: Optional[OrchestratorConfig] = None,
    ) -> OrchestratorVersion:
        """Create version 1 for an orchestrator, or return its active version."""
        active = await self.get_active_version(orchestrator_id)
        if active:
            return active

        version = OrchestratorVersion.create_initial(orchestrator_id, initial_config)
        self._save_version(version)
        self._set_active(version)
        logger.info("Initialized orchestrator %s at version 1", orchestrator_id)
        return version

    async def get_version(self, version_id: str) -> Optional[OrchestratorVersion]:
        matches = list(self.base_path.glob(f"*/v*_{version_id}.yaml"))
        if not matches:
            return None
        return OrchestratorVersion.from_dict(self._read_yaml(matches[0]))

    async def _require_version(self, version_id: str) -> OrchestratorVersion:
        version = await self.get_version(version_id)
        if version is None:
            raise VersionNotFoundError(version_id)
        return version

    async def get_active_version(self, orchestrator_id: str) -> Optional[OrchestratorVersion]:
        pointer = self._orchestrator_path(orchestrator_id) / "active.yaml"
        if not pointer.exists():
            return None
        return await self.get_version(self._read_yaml(pointer)["version_id"])

    async def get_version_history(self, orchestrator_id: str) -> list[OrchestratorVersion]:
        """All versions for an orchestrator, newest first."""
        versions = [
            OrchestratorVersion.from_dict(self._read_yaml(path))
            for path in self._orchestrator_path(orchestrator_id).glob("v*.yaml")
        ]
        return sorted(versions, key=lambda v: v.version, reverse=True)

    async def create_new_version(
        self,
        orchestrator_id: str,
        config_diff: dict[str, dict[str, Any]],
        improvements: list[str],
    ) -> OrchestratorVersion:
        """Derive a candidate from the active version. The active version is untouched."""
        active = await self.get_active_version(orchestrator_id)
        if active is None:
            raise NoActiveVersionError(orchestrator_id)

        history = await self.get_version_history(orchestrator_id)
        candidate = OrchestratorVersion.create_from_parent(active, config_diff, improvements)
        # Numbering stays monotonic even when the parent is not the newest version
        latest = history[0].version if history else active.version
        candidate = replace(candidate, version=latest + 1)

        self._save_version(candidate)
        logger.info(
            "Created version %d (%s) for orchestrator %s",
            candidate.version, candidate.id, orchestrator_id,
        )
        return candidate

    async def promote_version(self, version_id: str) -> OrchestratorVersion:
        """Promote a testing version to active, retiring the previous active one."""
        version = await self._require_version(version_id)
        promoted = version.promote()

        current = await self.get_active_version(version.orchestrator_id)
        if current and current.id != promoted.id:
            self._save_version(current.retire())

        self._save_version(promoted)
        self._set_active(promoted)
        logger.info("Promoted version %d of orchestrator %s", promoted.version, promoted.orchestrator_id)
        return promoted

    async def rollback_to_version(self, version_id: str) -> OrchestratorVersion:
        """Make a previous version active again."""
        version = await self._require_version(version_id)
        current = await self.get_active_version(version.orchestrator_id)
        if current and current.id == version.id:
            return current

        if current:
            self._save_version(current.retire())

        if version.status == VersionStatus.TESTING:
            reactivated = version.promote()
        else:
            reactivated = version.retire().reactivate()
        self._save_version(reactivated)
        self._set_active(reactivated)
        logger.info("Rolled back orchestrator %s to version %d", version.orchestrator_id, version.version)
        return reactivated

    async def update_version_metrics(self, version_id: str, result: VersionTaskResult) -> OrchestratorVersion:
        version = await self._require_version(version_id)
        updated = version.with_metrics(result)
        self._save_version(updated)
        return updated

    async def get_best_version(self, orchestrator_id: str, min_sample_size: int = 5) -> Optional[OrchestratorVersion]:
        eligible = [
            v for v in await self.get_version_history(orchestrator_id)
            if v.has_minimum_data(min_sample_size) and not v.is_testing
        ]
        if not eligible:
            return None
        return max(eligible, key=lambda v: v.performance_score())

    # -- A/B tests -----------------------------------------------------------

    async def get_running_test(self, orchestrator_id: str) -> Optional[ABTest]:
        for path in self.tests_path.glob("*.yaml"):
            test = ABTest.from_dict(self._read_yaml(path))
            if test.orchestrator_id == orchestrator_id and test.is_running:
                return test
        return None

    async def start_ab_test(
        self,
        candidate_id: str,
        baseline_id: str,
        traffic_split: float = 0.5,
        min_sample_size: int = 10,
        max_duration_days: float = 7,
    ) -> str:
        """Start a test of a candidate against the baseline; one per orchestrator."""
        if not 0.0 < traffic_split < 1.0:
            raise ValueError(f"traffic_split must be between 0 and 1, got {traffic_split}")

        candidate = await self._require_version(candidate_id)
        await self._require_version(baseline_id)

        running = await self.get_running_test(candidate.orchestrator_id)
        if running:
            raise ABTestAlreadyRunningError(candidate.orchestrator_id, running.id)

        test = ABTest(
            id=uuid.uuid4().hex[:12],
            orchestrator_id=candidate.orchestrator_id,
            treatment_version_id=candidate_id,
            control_version_id=baseline_id,
            traffic_split=traffic_split,
            min_sample_size=min_sample_size,
            max_duration_days=max_duration_days,
        )
        self._save_test(test)
        logger.info(
            "Started A/B test %s: version %d gets %.0f%% of traffic",
            test.id, candidate.version, traffic_split * 100,
        )
        return test.id

    async def get_version_for_task(self, orchestrator_id: str, task_id: str) -> OrchestratorVersion:
        """
        Pick the version that should run a task.

        With a running test, tasks are split between treatment and control
        by a stable hash of the task id, so a retried task keeps its
        version. Without one, the active version is used.
        """
        test = await self.get_running_test(orchestrator_id)
        if test:
            digest = hashlib.sha256(task_id.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") / 2**32
            chosen_id = test.treatment_version_id if bucket < test.traffic_split else test.control_version_id
            version = await self.get_version(chosen_id)
            if version:
                return version

        return await self.initialize_orchestrator(orchestrator_id)

    async def evaluate_ab_test(self, test_id: str) -> ABTestResult:
        test = self._load_test(test_id)
        if not test.is_running:
            raise ABTestNotFoundError(test_id)

        treatment = await self._require_version(test.treatment_version_id)
        control = await self._require_version(test.control_version_id)
        t_metrics, c_metrics = treatment.metrics, control.metrics

        enough_data = (
            t_metrics.total_tasks_evaluated >= test.min_sample_size
            and c_metrics.total_tasks_evaluated >= test.min_sample_size
        )
        ran_long_enough = test.days_running >= test.max_duration_days

        diff = treatment.performance_score() - control.performance_score()
        min_sample = min(t_metrics.total_tasks_evaluated, c_metrics.total_tasks_evaluated)
        significance = min(1.0, min_sample / 20) * min(1.0, abs(diff) * 10)

        recommendation = Recommendation.CONTINUE
        reason = "Insufficient data to make a recommendation"
        if enough_data or ran_long_enough:
            if diff > self.SIGNIFICANT_DIFF:
                recommendation = Recommendation.PROMOTE
                reason = f"Treatment outperforms control by {diff * 100:.1f}%"
            elif diff < -self.SIGNIFICANT_DIFF:
                recommendation = Recommendation.ROLLBACK
                reason = f"Control outperforms treatment by {abs(diff) * 100:.1f}%"
            else:
                reason = "No significant difference detected"

        logger.debug("A/B test %s: diff=%.3f -> %s", test_id, diff, recommendation.value)
        return ABTestResult(
            test_id=test_id,
            test=test,
            treatment_metrics=t_metrics,
            control_metrics=c_metrics,
            significance_level=significance,
            recommendation=recommendation,
            reason=reason,
        )

    async def end_ab_test(self, test_id: str) -> None:
        """End a test. A treatment still under test is retired."""
        test = self._load_test(test_id)
        if not test.is_running:
            return

        treatment = await self.get_version(test.treatment_version_id)
        if treatment and treatment.status == VersionStatus.TESTING:
            self._save_version(treatment.retire())

        self._save_test(replace(test, ended_at=datetime.now(timezone.utc)))
        logger.info("Ended A/B test %s", test_id)
