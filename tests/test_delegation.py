import sys
from pathlib import Path

# Ensure src is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from reflexion.domain.delegation import Delegation, DelegationResult, DelegationStatus
from reflexion.exceptions import InvalidStateTransitionError


def test_delegation_lifecycle():
    delegation = Delegation.create(task_id="task-1", session_id="sess-1", agent_provider="claude")
    delegation = delegation.inject_context("CLAUDE.md contents")
    delegation = delegation.start_running()
    delegation = delegation.start_monitoring()
    delegation = delegation.complete(DelegationResult(success=True, summary="ok", exit_code=0), "/tmp/t.jsonl")

    assert delegation.status == DelegationStatus.COMPLETED
    assert delegation.is_finished
    assert delegation.is_successful
    assert delegation.transcript_path == "/tmp/t.jsonl"


def test_failed_delegation_is_not_successful():
    delegation = Delegation.create(task_id="task-1", session_id="sess-1", agent_provider="codex")
    delegation = delegation.fail("spawn failed")

    assert delegation.is_finished
    assert not delegation.is_successful
    assert delegation.error == "spawn failed"


def test_cannot_run_before_context():
    delegation = Delegation.create(task_id="task-1", session_id="sess-1", agent_provider="claude")

    with pytest.raises(InvalidStateTransitionError):
        delegation.start_running()


def test_execution_logs_keep_order():
    delegation = Delegation.create(task_id="task-1", session_id="sess-1", agent_provider="claude")
    delegation = delegation.add_log("info", "spawned")
    delegation = delegation.add_log("warn", "slow output", seconds=45)

    assert [e.message for e in delegation.execution_logs] == ["spawned", "slow output"]
    assert delegation.execution_logs[1].metadata == {"seconds": 45}
