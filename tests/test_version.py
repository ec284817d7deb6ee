import sys
from pathlib import Path

# Ensure src is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from reflexion.domain.version import (
    OrchestratorConfig,
    OrchestratorVersion,
    VersionStatus,
    VersionTaskResult,
)
from reflexion.exceptions import InvalidStateTransitionError


def _result(success=True, partial=False, correct=True) -> VersionTaskResult:
    return VersionTaskResult(
        success=success,
        partial=partial,
        duration=120,
        tokens=1000,
        turns=10,
        agent_selection_correct=correct,
    )


def test_config_get_by_component_path():
    config = OrchestratorConfig()

    assert config.get("monitoring.checkIntervalSeconds") == 30
    assert config.get("agentSelection.performanceWeight") == 0.7
    assert config.get("taskParsingHeuristics.confidenceThreshold") == 0.6


def test_config_merge_is_copy_on_write():
    config = OrchestratorConfig()
    merged = config.merge({"monitoring": {"checkIntervalSeconds": 20}})

    assert merged.monitoring.check_interval_seconds == 20
    assert merged.monitoring.stall_threshold_seconds == 300
    assert config.monitoring.check_interval_seconds == 30


def test_config_merge_rejects_unknown_keys():
    with pytest.raises(KeyError):
        OrchestratorConfig().merge({"safety": {"enabled": False}})
    with pytest.raises(KeyError):
        OrchestratorConfig().merge({"monitoring": {"pollSeconds": 5}})


def test_config_dict_uses_camel_case():
    data = OrchestratorConfig().to_dict()

    assert data["monitoring"]["checkIntervalSeconds"] == 30
    assert data["autonomy"]["autoApplyImprovements"] is False
    assert OrchestratorConfig.from_dict(data) == OrchestratorConfig()


def test_create_from_parent():
    parent = OrchestratorVersion.create_initial("orch-1")
    child = OrchestratorVersion.create_from_parent(
        parent, {"monitoring": {"maxRetries": 4}}, ["Increase max retries"]
    )

    assert child.version == 2
    assert child.status == VersionStatus.TESTING
    assert child.parent_version_id == parent.id
    assert child.config.monitoring.max_retries == 4
    assert child.metrics.total_tasks_evaluated == 0
    assert child.improvements == ("Increase max retries",)
    assert parent.config.monitoring.max_retries == 3


def test_status_transitions():
    parent = OrchestratorVersion.create_initial("orch-1")
    child = OrchestratorVersion.create_from_parent(parent)

    assert child.promote().is_active
    assert parent.retire().status == VersionStatus.RETIRED
    assert parent.retire().retire().status == VersionStatus.RETIRED
    assert parent.retire().reactivate().is_active

    with pytest.raises(InvalidStateTransitionError):
        parent.reactivate()
    with pytest.raises(InvalidStateTransitionError):
        parent.promote()


def test_metrics_incremental_average():
    version = OrchestratorVersion.create_initial("orch-1")
    version = version.with_metrics(_result(success=True))
    version = version.with_metrics(_result(success=False, partial=True, correct=False))

    m = version.metrics
    assert m.total_tasks_evaluated == 2
    assert m.task_success_rate == pytest.approx(0.5)
    assert m.task_partial_rate == pytest.approx(0.5)
    assert m.task_failure_rate == pytest.approx(0.0)
    assert m.agent_selection_accuracy == pytest.approx(0.5)


def test_performance_score_and_outperforms():
    good = OrchestratorVersion.create_initial("orch-1")
    bad = OrchestratorVersion.create_initial("orch-1")
    for _ in range(5):
        good = good.with_metrics(_result(success=True))
        bad = bad.with_metrics(_result(success=False, correct=False))

    assert good.performance_score() == pytest.approx(0.4 + 0.2 + 0.2 + 0.05)
    assert bad.performance_score() == pytest.approx(0.05)
    assert good.outperforms(bad)
    assert not OrchestratorVersion.create_initial("orch-1").outperforms(bad)


def test_version_dict_round_trip():
    version = OrchestratorVersion.create_initial("orch-1").with_metrics(_result())
    restored = OrchestratorVersion.from_dict(version.to_dict())

    assert restored == version
