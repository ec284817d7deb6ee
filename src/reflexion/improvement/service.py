"""
Self-improvement loop for the orchestrator.

One cycle:
1. Analyze recent evaluations and reflections against the active version
2. Propose config changes for the issues found
3. Drop unsafe and low-confidence changes
4. Create a candidate version with the surviving changes
5. Start an A/B test; the candidate becomes active only via evaluate_and_act_on_test

Safety constraints:
- Safety rules and oversight settings are never modified
- Autonomy limits are never raised by the loop itself
- Every step is written to the audit trail
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union
import logging
import uuid

from ..config import config
from ..domain.version import OrchestratorVersion
from ..evaluation.types import (
    Priority,
    Reflection,
    SessionOutcome,
    TranscriptEvaluation,
)
from ..exceptions import NoActiveVersionError
from ..storage.audit import AuditLog
from ..storage.versions import Recommendation, VersionArchive
from .rules import (
    CHANGE_RULES,
    ChangeType,
    Issue,
    IssueType,
    ProposedChange,
    Severity,
    is_safe_change,
)

logger = logging.getLogger(__name__)

# Expected task duration in seconds
BASELINE_DURATION = 600


@dataclass
class RecentPerformance:
    success_rate: float
    avg_duration: float
    task_count: int


@dataclass
class ImprovementAnalysis:
    orchestrator_id: str
    current_version_id: str
    recent_performance: RecentPerformance
    issues: list[Issue]
    confidence: float
    proposed_changes: list[ProposedChange] = field(default_factory=list)
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def has_issue(self, issue_type: IssueType) -> bool:
        return any(i.type == issue_type for i in self.issues)

    def to_dict(self) -> dict:
        return {
            "orchestrator_id": self.orchestrator_id,
            "current_version_id": self.current_version_id,
            "analyzed_at": self.analyzed_at.isoformat(),
            "recent_performance": {
                "success_rate": self.recent_performance.success_rate,
                "avg_duration": self.recent_performance.avg_duration,
                "task_count": self.recent_performance.task_count,
            },
            "issues": [i.to_dict() for i in self.issues],
            "proposed_changes": [c.to_dict() for c in self.proposed_changes],
            "confidence": self.confidence,
        }


@dataclass
class CycleResult:
    cycle_id: str
    orchestrator_id: str
    started_at: datetime
    completed_at: datetime
    analysis: ImprovementAnalysis
    new_version_created: bool
    ab_test_started: bool
    changes_applied: int
    changes_skipped: int
    reason: str
    new_version_id: Optional[str] = None
    ab_test_id: Optional[str] = None


class TestAction(Enum):
    PROMOTED = "promoted"
    ROLLED_BACK = "rolled_back"
    CONTINUED = "continued"


@dataclass
class TestActionResult:
    action: TestAction
    reason: str


class SelfImprovementService:
    """Runs improvement cycles and acts on finished A/B tests."""

    def __init__(self, version_archive: VersionArchive, audit_log: Optional[AuditLog] = None):
        self.archive = version_archive
        self.audit = audit_log or AuditLog()

    async def run_improvement_cycle(
        self,
        orchestrator_id: str,
        recent_evaluations: list[TranscriptEvaluation],
        recent_reflections: list[Reflection],
        project_path: Optional[Union[str, Path]] = None,
    ) -> CycleResult:
        """
        Run one self-improvement cycle.

        The active version is never modified; a cycle only creates a
        candidate version and a test.

        Raises:
            NoActiveVersionError: The orchestrator has no active version
        """
        cycle_id = uuid.uuid4().hex[:12]
        started_at = datetime.now(timezone.utc)

        current = await self.archive.get_active_version(orchestrator_id)
        if current is None:
            raise NoActiveVersionError(orchestrator_id)

        await self.audit.log_event("cycle_started", {
            "cycle_id": cycle_id,
            "orchestrator_id": orchestrator_id,
            "version_id": current.id,
            "evaluations": len(recent_evaluations),
            "reflections": len(recent_reflections),
            "project_path": str(project_path) if project_path else None,
        })

        analysis = self.analyze_performance(orchestrator_id, current, recent_evaluations, recent_reflections)
        await self.audit.log_event("analysis_completed", {
            "cycle_id": cycle_id,
            "orchestrator_id": orchestrator_id,
            "issues": [i.to_dict() for i in analysis.issues],
            "confidence": analysis.confidence,
        })

        def result(**kwargs) -> CycleResult:
            return CycleResult(
                cycle_id=cycle_id,
                orchestrator_id=orchestrator_id,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
                analysis=analysis,
                **kwargs,
            )

        if not analysis.issues:
            logger.info("No issues found for orchestrator %s", orchestrator_id)
            await self.audit.log_event("no_issues", {"cycle_id": cycle_id, "orchestrator_id": orchestrator_id})
            return result(
                new_version_created=False,
                ab_test_started=False,
                changes_applied=0,
                changes_skipped=0,
                reason="No significant issues identified",
            )

        proposed = self.generate_changes(current, analysis.issues, recent_reflections)
        analysis.proposed_changes = proposed

        threshold = config.thresholds.improvement_confidence
        safe_changes = [c for c in proposed if c.confidence >= threshold and is_safe_change(c)]
        skipped = len(proposed) - len(safe_changes)

        await self.audit.log_event("changes_filtered", {
            "cycle_id": cycle_id,
            "orchestrator_id": orchestrator_id,
            "proposed": len(proposed),
            "accepted": [c.to_dict() for c in safe_changes],
            "skipped": skipped,
        })

        if not safe_changes:
            logger.info(
                "All %d proposed changes for orchestrator %s were filtered out",
                len(proposed), orchestrator_id,
            )
            return result(
                new_version_created=False,
                ab_test_started=False,
                changes_applied=0,
                changes_skipped=len(proposed),
                reason="No safe changes with sufficient confidence",
            )

        config_diff = self.build_config_diff(safe_changes)
        improvements = [c.rationale for c in safe_changes]

        candidate = await self.archive.create_new_version(orchestrator_id, config_diff, improvements)
        await self.audit.log_event("version_created", {
            "cycle_id": cycle_id,
            "orchestrator_id": orchestrator_id,
            "version_id": candidate.id,
            "version": candidate.version,
            "parent_version_id": current.id,
            "config_diff": config_diff,
            "improvements": improvements,
        })

        ab = config.ab_test
        test_id = await self.archive.start_ab_test(
            candidate.id,
            current.id,
            traffic_split=ab.traffic_split,
            min_sample_size=ab.min_sample_size,
            max_duration_days=ab.max_duration_days,
        )
        await self.audit.log_event("ab_test_started", {
            "cycle_id": cycle_id,
            "orchestrator_id": orchestrator_id,
            "test_id": test_id,
            "treatment_version_id": candidate.id,
            "control_version_id": current.id,
            "traffic_split": ab.traffic_split,
        })

        logger.info(
            "Created version %d for orchestrator %s with %d improvements (test %s)",
            candidate.version, orchestrator_id, len(safe_changes), test_id,
        )
        return result(
            new_version_created=True,
            ab_test_started=True,
            changes_applied=len(safe_changes),
            changes_skipped=skipped,
            reason=f"Created version {candidate.version} with {len(safe_changes)} improvements",
            new_version_id=candidate.id,
            ab_test_id=test_id,
        )

    def analyze_performance(
        self,
        orchestrator_id: str,
        current: OrchestratorVersion,
        evaluations: list[TranscriptEvaluation],
        reflections: list[Reflection],
    ) -> ImprovementAnalysis:
        """Detect issues in recent performance. Every check runs independently."""
        issues: list[Issue] = []
        total = max(1, len(evaluations))

        successes = sum(1 for e in evaluations if e.outcome == SessionOutcome.SUCCESS)
        success_rate = successes / total
        avg_duration = sum(e.metrics.duration_seconds for e in evaluations) / total

        if success_rate < 0.7:
            issues.append(Issue(
                type=IssueType.LOW_SUCCESS_RATE,
                severity=Severity.HIGH if success_rate < 0.5 else Severity.MEDIUM,
                description=f"Success rate is {success_rate * 100:.1f}%, below 70% threshold",
                evidence=tuple(
                    "; ".join(e.what_failed)
                    for e in evaluations if e.outcome != SessionOutcome.SUCCESS
                )[:3],
            ))

        if avg_duration > BASELINE_DURATION * 1.5:
            issues.append(Issue(
                type=IssueType.HIGH_DURATION,
                severity=Severity.HIGH if avg_duration > BASELINE_DURATION * 2 else Severity.MEDIUM,
                description=f"Average task duration is {round(avg_duration / 60)} minutes, above 15 minute threshold",
                evidence=tuple(
                    f"Session {e.session_id}: {round(e.metrics.duration_seconds / 60)}min"
                    for e in evaluations if e.metrics.duration_seconds > BASELINE_DURATION
                )[:3],
            ))

        metrics = current.metrics
        if metrics.agent_selection_accuracy < 0.7 and metrics.total_tasks_evaluated >= 5:
            issues.append(Issue(
                type=IssueType.POOR_AGENT_SELECTION,
                severity=Severity.MEDIUM,
                description=f"Agent selection accuracy is {metrics.agent_selection_accuracy * 100:.1f}%",
                evidence=("Review task type to agent mappings",),
            ))

        with_errors = [e for e in evaluations if e.errors_encountered]
        if len(with_errors) > len(evaluations) * 0.5:
            issues.append(Issue(
                type=IssueType.PARSING_ERRORS,
                severity=Severity.MEDIUM,
                description=f"{len(with_errors)}/{len(evaluations)} tasks had errors",
                evidence=tuple(
                    err.message
                    for e in with_errors[:3]
                    for err in e.errors_encountered[:2]
                ),
            ))

        high_priority = [r for r in reflections if r.priority == Priority.HIGH]
        if high_priority:
            issues.append(Issue(
                type=IssueType.STALL_FREQUENCY,
                severity=Severity.MEDIUM,
                description=f"{len(high_priority)} high-priority issues from reflections",
                evidence=tuple(
                    text for r in high_priority[:3] for text in r.reflections[:2]
                ),
            ))

        analysis = ImprovementAnalysis(
            orchestrator_id=orchestrator_id,
            current_version_id=current.id,
            recent_performance=RecentPerformance(success_rate, avg_duration, len(evaluations)),
            issues=issues,
            confidence=min(1.0, len(evaluations) / 20),
        )
        logger.debug(
            "Analysis for %s: success=%.2f duration=%.0fs issues=%s",
            orchestrator_id, success_rate, avg_duration, [i.type.value for i in issues],
        )
        return analysis

    def generate_changes(
        self,
        current: OrchestratorVersion,
        issues: list[Issue],
        reflections: list[Reflection],
    ) -> list[ProposedChange]:
        """Map issues to config changes and confident reflection actions to heuristic changes."""
        changes = []
        for issue in issues:
            change = CHANGE_RULES[issue.type].change_for(current.config)
            if change:
                changes.append(change)

        min_confidence = config.thresholds.reflection_action_confidence
        for reflection in reflections:
            for action in reflection.suggested_actions:
                if action.confidence >= min_confidence:
                    changes.append(ProposedChange(
                        type=ChangeType.HEURISTIC,
                        component=action.type.value,
                        current_value=None,
                        proposed_value=action.implementation,
                        rationale=action.description,
                        expected_impact=action.confidence * 0.2,
                        confidence=action.confidence,
                    ))

        return changes

    def is_safe_change(self, change: ProposedChange) -> bool:
        return is_safe_change(change)

    @staticmethod
    def build_config_diff(changes: list[ProposedChange]) -> dict[str, dict[str, Any]]:
        """Group config changes by section into a partial config diff."""
        diff: dict[str, dict[str, Any]] = {}
        for change in changes:
            if change.section is None:
                continue
            diff.setdefault(change.section, {})[change.key] = change.proposed_value
        return diff

    async def evaluate_and_act_on_test(self, test_id: str) -> TestActionResult:
        """Promote, roll back or keep running an A/B test based on its evaluation."""
        evaluation = await self.archive.evaluate_ab_test(test_id)
        test = evaluation.test

        if evaluation.recommendation == Recommendation.PROMOTE:
            await self.archive.promote_version(test.treatment_version_id)
            await self.archive.end_ab_test(test_id)
            action = TestAction.PROMOTED
        elif evaluation.recommendation == Recommendation.ROLLBACK:
            await self.archive.end_ab_test(test_id)
            action = TestAction.ROLLED_BACK
        else:
            action = TestAction.CONTINUED

        await self.audit.log_event("test_evaluated", {
            "orchestrator_id": test.orchestrator_id,
            "test_id": test_id,
            "treatment_version_id": test.treatment_version_id,
            "action": action.value,
            "reason": evaluation.reason,
            "significance": evaluation.significance_level,
        })
        if action != TestAction.CONTINUED:
            logger.info("A/B test %s %s: %s", test_id, action.value, evaluation.reason)

        return TestActionResult(action=action, reason=evaluation.reason)

    async def get_improvement_history(self, orchestrator_id: str) -> dict:
        """Versions newest first, with the active version number (0 if none)."""
        versions = await self.archive.get_version_history(orchestrator_id)
        active = await self.archive.get_active_version(orchestrator_id)

        return {
            "versions": [
                {
                    "id": v.id,
                    "version": v.version,
                    "status": v.status.value,
                    "improvements": list(v.improvements),
                    "metrics": v.metrics.to_dict(),
                    "created_at": v.created_at.isoformat(),
                }
                for v in versions
            ],
            "total_versions": len(versions),
            "active_version": active.version if active else 0,
        }
