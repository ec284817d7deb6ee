import sys
from datetime import timedelta
from pathlib import Path

# Ensure src is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from reflexion.exceptions import RecordingNotFoundError
from reflexion.memory.embeddings import HashingEmbeddingProvider
from reflexion.memory.recorder import EpisodeRecorder
from reflexion.memory.store import EpisodeStore
from reflexion.memory.types import EpisodeOutcome, EpisodeReflection, PivotTrigger


@pytest.fixture
def recorder(tmp_path):
    store = EpisodeStore(base_dir=tmp_path, embedder=HashingEmbeddingProvider())
    return EpisodeRecorder(store=store)


@pytest.mark.asyncio
async def test_record_full_episode(recorder):
    rid = recorder.start_recording("task-1", folder_id="proj-1")
    recorder.set_context(rid, "Fix flaky reconnect test", project_path="/work/app", agent_provider="claude")
    recorder.record_action(rid, "read test file", tool="read_file")
    recorder.record_action(rid, "run tests", success=False, tool="shell", output="1 failed")
    recorder.record_observation(rid, "Timeout is hardcoded to 100ms")
    recorder.record_decision(rid, "How to fix", ["raise timeout", "mock clock"], "mock clock", "deterministic")
    recorder.record_pivot(rid, "raise timeout", "mock clock", "still flaky", PivotTrigger.ERROR)

    episode = await recorder.finish_recording(
        rid,
        EpisodeOutcome.SUCCESS,
        "Test is stable",
        EpisodeReflection(key_insights=("Mock the clock in timing tests",)),
        tags=["tests"],
    )

    assert episode.folder_id == "proj-1"
    assert episode.context.agent_provider == "claude"
    assert episode.outcome.tool_call_count == 2
    assert episode.outcome.error_count == 1
    assert len(episode.trajectory.decisions) == 1
    assert episode.trajectory.pivots[0].triggered_by == PivotTrigger.ERROR
    assert not recorder.is_recording(rid)

    stored = await recorder.store.get(episode.id)
    assert stored.trajectory.observations == ("Timeout is hardcoded to 100ms",)


@pytest.mark.asyncio
async def test_finished_recording_rejects_more_steps(recorder):
    rid = recorder.start_recording("task-1")
    await recorder.finish_recording(rid, EpisodeOutcome.FAILURE, "gave up", EpisodeReflection())

    with pytest.raises(RecordingNotFoundError):
        recorder.record_action(rid, "too late")


def test_unknown_recording(recorder):
    with pytest.raises(RecordingNotFoundError):
        recorder.record_observation("nope", "hello")


def test_cancel_and_cleanup(recorder):
    cancelled = recorder.start_recording("task-1")
    active = recorder.start_recording("task-2")
    recorder.cancel_recording(cancelled)

    assert not recorder.is_recording(cancelled)
    assert [s.id for s in recorder.active_sessions()] == [active]


@pytest.mark.asyncio
async def test_cleanup_inactive(recorder):
    rid = recorder.start_recording("task-1")
    await recorder.finish_recording(rid, EpisodeOutcome.SUCCESS, "ok", EpisodeReflection())

    assert recorder.cleanup_inactive(older_than=timedelta(0)) == 1
    assert rid not in recorder.sessions


@pytest.mark.asyncio
async def test_quick_episode_and_feedback(recorder):
    episode = await recorder.record_quick_episode(
        "task-9",
        "Write deploy docs",
        EpisodeOutcome.PARTIAL,
        "Docs drafted",
        EpisodeReflection(what_worked=("Reused README structure",)),
    )

    updated = await recorder.add_user_feedback(episode.id, 4, "good start")

    assert updated.reflection.user_rating == 4
    assert (await recorder.store.get(episode.id)).reflection.user_feedback == "good start"
    assert await recorder.add_user_feedback("missing", 3) is None
