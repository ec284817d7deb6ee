import sys
from datetime import datetime, timezone
from io import StringIO
from pathlib import Path

# Ensure src is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest
from rich.console import Console

from reflexion.evaluation.types import ActionSource, ActionType, SuggestedAction
from reflexion.improvement.applicator import (
    ActionPreview,
    AppliedImprovement,
    ImprovementResult,
    SkippedImprovement,
)
from reflexion.improvement.preview import ImprovementPreview
from reflexion.improvement.rules import ChangeType, Issue, IssueType, ProposedChange, Severity
from reflexion.improvement.service import CycleResult, ImprovementAnalysis, RecentPerformance
from reflexion.storage.audit import AuditLog


def _console() -> Console:
    return Console(file=StringIO(), width=160)


def _action(title: str, confidence: float = 0.7) -> SuggestedAction:
    return SuggestedAction(
        type=ActionType.ADD_GOTCHA,
        title=title,
        description=f"{title} description",
        implementation="Add to gotchas",
        confidence=confidence,
        source=ActionSource.ERROR_ANALYSIS,
    )


@pytest.mark.asyncio
async def test_events_newest_first_with_filters(tmp_path):
    audit = AuditLog(base_path=tmp_path)
    await audit.log_event("cycle_started", {"orchestrator_id": "orch-1", "cycle_id": "a"})
    await audit.log_event("no_issues", {"orchestrator_id": "orch-1", "cycle_id": "a"})
    await audit.log_event("cycle_started", {"orchestrator_id": "orch-2", "cycle_id": "b"})

    events = await audit.get_events()
    assert [e["cycle_id"] for e in events] == ["b", "a", "a"]
    assert all("timestamp" in e for e in events)

    started = await audit.get_events(event_type="cycle_started")
    assert [e["orchestrator_id"] for e in started] == ["orch-2", "orch-1"]

    orch1 = await audit.get_events(orchestrator_id="orch-1")
    assert [e["type"] for e in orch1] == ["no_issues", "cycle_started"]

    assert len(await audit.get_events(limit=1)) == 1


@pytest.mark.asyncio
async def test_empty_log(tmp_path):
    assert await AuditLog(base_path=tmp_path).get_events() == []


@pytest.mark.asyncio
async def test_truncated_line_is_skipped(tmp_path):
    (tmp_path / "2000-01-01.jsonl").write_text(
        '{"type": "cycle_started", "cycle_id": "old"}\n'
        '{"type": "version_cre\n',
        encoding="utf-8",
    )
    audit = AuditLog(base_path=tmp_path)
    await audit.log_event("no_issues", {"cycle_id": "new"})

    events = await audit.get_events()

    assert [e["cycle_id"] for e in events] == ["new", "old"]


def test_preview_renders_actions():
    console = _console()

    ImprovementPreview(console).show_actions([
        ActionPreview(action=_action("Type error patterns"), would_apply=True, reason="Confidence 0.70 meets threshold"),
    ])

    output = console.file.getvalue()
    assert "Type error patterns" in output
    assert "1 would apply" in output


def test_preview_renders_apply_result():
    console = _console()
    result = ImprovementResult(
        session_id="sess-1",
        applied=[
            AppliedImprovement(action=_action("Ok"), success=True, result="Added gotcha: Ok"),
            AppliedImprovement(action=_action("Broken"), success=False, result="Failed: Is a directory"),
        ],
        skipped=[SkippedImprovement(action=_action("Weak", 0.4), reason="Confidence 0.40 below threshold 0.6")],
        summary="Applied 1/2 improvements, skipped 1",
    )

    ImprovementPreview(console).show_result(result)

    output = console.file.getvalue()
    assert "Added gotcha: Ok" in output
    assert "Failed: Is a directory" in output
    assert "Weak: Confidence 0.40 below threshold 0.6" in output
    assert "Applied 1/2 improvements, skipped 1" in output


def test_preview_renders_cycle():
    console = _console()
    now = datetime.now(timezone.utc)
    analysis = ImprovementAnalysis(
        orchestrator_id="orch-1",
        current_version_id="v1",
        recent_performance=RecentPerformance(success_rate=0.4, avg_duration=300, task_count=10),
        issues=[Issue(
            type=IssueType.LOW_SUCCESS_RATE,
            severity=Severity.HIGH,
            description="Success rate is 40.0%, below 70% threshold",
        )],
        confidence=0.5,
        proposed_changes=[ProposedChange(
            type=ChangeType.CONFIG,
            component="monitoring.checkIntervalSeconds",
            current_value=30,
            proposed_value=20,
            rationale="Reduce monitoring interval to catch issues earlier",
            expected_impact=0.1,
            confidence=0.7,
        )],
    )
    cycle = CycleResult(
        cycle_id="c1",
        orchestrator_id="orch-1",
        started_at=now,
        completed_at=now,
        analysis=analysis,
        new_version_created=True,
        ab_test_started=True,
        changes_applied=1,
        changes_skipped=0,
        reason="Created version 2 with 1 improvements",
        new_version_id="v2",
        ab_test_id="test-42",
    )

    ImprovementPreview(console).show_cycle(cycle)

    output = console.file.getvalue()
    assert "40.0% over 10 tasks" in output
    assert "Created version 2 with 1 improvements" in output
    assert "test-42" in output
    assert "low_success_rate" in output
    assert "monitoring.checkIntervalSeconds" in output
