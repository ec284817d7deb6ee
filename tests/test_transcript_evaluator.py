import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Ensure src is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from reflexion.evaluation.evaluator import (
    TranscriptEvaluator,
    classify_outcome,
    completion_score,
    efficiency_score,
    error_score,
    overall_score,
)
from reflexion.evaluation.types import (
    ErrorRecord,
    ErrorType,
    EvaluationContext,
    SessionOutcome,
    ToolCall,
    TranscriptChunk,
)


def _chunks(*texts: str) -> list[TranscriptChunk]:
    return [TranscriptChunk(content=t) for t in texts]


TRANSCRIPTS = {
    "empty": [],
    "clean": _chunks(
        "Reading src/app.ts",
        "Successfully created the login form",
        "All tests passed. Done.",
    ),
    "type_error_fixed": _chunks(
        "Running tsc",
        "src/app.ts(3,5): error TS2322: Type 'string' is not assignable to type 'number'.",
        "Fixing the type annotation",
        "Compiling again",
        "Build succeeded, all tests passed. Done.",
    ),
    "broken": _chunks(
        "SyntaxError: Unexpected token '}'",
        "error TS2304: Cannot find name 'user'.",
        "ReferenceError: session is not defined",
        "Failed to start the dev server",
    ),
}


@pytest.mark.parametrize("name", sorted(TRANSCRIPTS))
def test_overall_is_weighted_sum_and_scores_in_range(name):
    evaluation = TranscriptEvaluator().evaluate(f"sess-{name}", TRANSCRIPTS[name])

    scores = (
        evaluation.task_completion_score,
        evaluation.efficiency_score,
        evaluation.error_score,
        evaluation.overall_score,
    )
    assert all(0.0 <= s <= 1.0 for s in scores)
    assert evaluation.overall_score == pytest.approx(
        0.5 * evaluation.task_completion_score
        + 0.3 * evaluation.efficiency_score
        + 0.2 * evaluation.error_score
    )


def test_empty_transcript_degrades_without_raising():
    evaluation = TranscriptEvaluator().evaluate("sess-empty", [])

    assert evaluation.metrics.total_turns == 0
    assert evaluation.error_score == 1.0
    assert evaluation.task_completion_score == pytest.approx(0.5)
    assert evaluation.outcome == SessionOutcome.PARTIAL


def test_resolved_error_records_turn_distance():
    evaluation = TranscriptEvaluator().evaluate("sess-1", TRANSCRIPTS["type_error_fixed"])

    assert len(evaluation.errors_encountered) == 1
    error = evaluation.errors_encountered[0]
    assert error.type == ErrorType.TYPE
    assert error.resolved is True
    assert error.turns_to_resolve == 3
    assert "TS2322" in error.message


def test_unresolved_errors_mean_failure():
    evaluation = TranscriptEvaluator().evaluate("sess-2", TRANSCRIPTS["broken"])

    assert len(evaluation.unresolved_errors) == 3
    assert {e.type for e in evaluation.errors_encountered} == {
        ErrorType.SYNTAX, ErrorType.TYPE, ErrorType.RUNTIME,
    }
    assert evaluation.outcome == SessionOutcome.FAILURE
    assert "Failed to start the dev server" in evaluation.what_failed


def test_interrupt_in_tail():
    transcript = _chunks("Working on the parser", "User cancelled the session")
    evaluation = TranscriptEvaluator().evaluate("sess-3", transcript)

    assert evaluation.outcome == SessionOutcome.INTERRUPTED


def test_metrics_extraction():
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    transcript = [
        TranscriptChunk(content="[tool: read_file] app.py", tool_calls=(ToolCall(name="read_file"),)),
        TranscriptChunk(content="Let me try a different approach"),
        TranscriptChunk(content="abcd" * 10),
    ]
    context = EvaluationContext(task_id="task-1", start_time=start, end_time=start + timedelta(minutes=5))

    evaluation = TranscriptEvaluator().evaluate("sess-4", transcript, context)

    total_chars = sum(len(c.content) for c in transcript)
    assert evaluation.metrics.total_turns == 3
    assert evaluation.metrics.total_tokens_estimate == -(-total_chars // 4)
    assert evaluation.metrics.duration_seconds == 300
    assert evaluation.metrics.tool_call_count == 2
    assert evaluation.metrics.retry_count == 1
    assert evaluation.task_id == "task-1"


def test_outcome_mining_deduplicates():
    transcript = _chunks(
        "Successfully created the login form",
        "Successfully created the login form",
        "Could not reach the registry",
    )
    evaluation = TranscriptEvaluator().evaluate("sess-5", transcript)

    assert evaluation.what_worked.count("Successfully created the login form") == 1
    assert "Could not reach the registry" in evaluation.what_failed


def test_inefficiency_detection():
    transcript = _chunks("Hmm, that didn't work", "Going back to the original design")
    transcript += _chunks(*["step"] * 100)

    evaluation = TranscriptEvaluator().evaluate("sess-6", transcript)

    assert "An approach didn't work" in evaluation.inefficiencies
    assert "Had to backtrack" in evaluation.inefficiencies
    assert "Long session (102 turns)" in evaluation.inefficiencies


def test_three_type_errors_two_resolved_scores_partial():
    errors = [
        ErrorRecord(type=ErrorType.TYPE, message="error TS2322", resolved=True, turns_to_resolve=2),
        ErrorRecord(type=ErrorType.TYPE, message="error TS2345", resolved=True, turns_to_resolve=2),
        ErrorRecord(type=ErrorType.TYPE, message="error TS2304"),
    ]

    completion = completion_score(has_completion_keyword=True, unresolved_errors=1, failure_near_end=False)
    efficiency = efficiency_score(total_turns=30, retry_count=0, inefficiency_count=0)
    errors_handled = error_score(errors)
    overall = overall_score(completion, efficiency, errors_handled)

    assert completion == pytest.approx(0.7)
    assert efficiency == pytest.approx(1.0)
    assert errors_handled == pytest.approx(0.7333, abs=1e-3)
    assert overall == pytest.approx(0.797, abs=1e-3)
    assert classify_outcome(completion, 1, interrupted=False) == SessionOutcome.PARTIAL


def test_completion_boundary_is_partial():
    assert classify_outcome(0.7, 0, interrupted=False) == SessionOutcome.PARTIAL
    assert classify_outcome(0.8, 0, interrupted=False) == SessionOutcome.SUCCESS
    assert classify_outcome(0.8, 3, interrupted=False) == SessionOutcome.FAILURE
    assert classify_outcome(0.2, 0, interrupted=False) == SessionOutcome.FAILURE


def test_error_score_resolution_speed_bonus():
    slow = [ErrorRecord(type=ErrorType.TEST, message="FAIL", resolved=True, turns_to_resolve=4)]
    slower = [ErrorRecord(type=ErrorType.TEST, message="FAIL", resolved=True, turns_to_resolve=8)]

    assert error_score([]) == 1.0
    assert error_score(slow) == pytest.approx(0.9)
    assert error_score(slower) == pytest.approx(0.8)


def test_efficiency_penalties():
    assert efficiency_score(120, 0, 0) == pytest.approx(0.7)
    assert efficiency_score(10, 4, 2) == pytest.approx(0.6)
    assert efficiency_score(200, 20, 5) == 0.0
