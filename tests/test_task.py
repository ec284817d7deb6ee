import sys
from pathlib import Path

# Ensure src is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from reflexion.domain.task import Task, TaskError, TaskResult, TaskStatus, TaskType
from reflexion.exceptions import InvalidStateTransitionError


def _task(**kwargs) -> Task:
    return Task.create(orchestrator_id="orch-1", user_id="user-1", description="Add login page", **kwargs)


def test_task_creation():
    task = _task(task_type=TaskType.BUG)

    assert task.status == TaskStatus.QUEUED
    assert task.type == TaskType.BUG
    assert task.result is None and task.error is None
    assert not task.is_terminal


def test_full_lifecycle_to_completed():
    task = _task()
    task = task.start_planning()
    task = task.start_execution(agent="claude", context="repo notes")
    task = task.attach_delegation("deleg-1")
    task = task.start_monitoring()
    task = task.complete(TaskResult(summary="done", files_modified=["app.py"]))

    assert task.status == TaskStatus.COMPLETED
    assert task.assigned_agent == "claude"
    assert task.delegation_id == "deleg-1"
    assert task.result.summary == "done"
    assert task.error is None
    assert task.completed_at is not None


def test_transitions_return_new_instances():
    task = _task()
    planning = task.start_planning()

    assert task.status == TaskStatus.QUEUED
    assert planning.status == TaskStatus.PLANNING
    assert planning.id == task.id


def test_fail_sets_error_only():
    task = _task().start_planning().fail(TaskError(code="PARSE", message="ambiguous"))

    assert task.status == TaskStatus.FAILED
    assert task.error.code == "PARSE"
    assert task.result is None


def test_terminal_states_are_immutable():
    task = _task().cancel()

    with pytest.raises(InvalidStateTransitionError):
        task.start_planning()
    with pytest.raises(InvalidStateTransitionError):
        task.link_issue("GH-12")


def test_cannot_skip_planning():
    with pytest.raises(InvalidStateTransitionError) as exc:
        _task().start_execution(agent="claude", context="")

    assert exc.value.current == "queued"
    assert exc.value.target == "executing"
    assert "planning" in exc.value.allowed


def test_delegation_requires_execution():
    with pytest.raises(InvalidStateTransitionError):
        _task().attach_delegation("deleg-1")


def test_result_and_error_are_mutually_exclusive():
    task = _task()
    with pytest.raises(ValueError):
        Task(
            id=task.id,
            orchestrator_id="orch-1",
            user_id="user-1",
            description="x",
            type=TaskType.FEATURE,
            status=TaskStatus.COMPLETED,
            result=TaskResult(summary="ok"),
            error=TaskError(code="E", message="bad"),
        )


def test_result_requires_terminal_status():
    with pytest.raises(ValueError):
        Task(
            id="t1",
            orchestrator_id="orch-1",
            user_id="user-1",
            description="x",
            type=TaskType.FEATURE,
            status=TaskStatus.EXECUTING,
            result=TaskResult(summary="early"),
        )


def test_confidence_bounds():
    with pytest.raises(ValueError):
        _task(confidence=1.5)


def test_to_dict_and_back():
    task = _task(folder_id="folder-1").start_planning()
    restored = Task.from_dict(task.to_dict())

    assert restored == task
