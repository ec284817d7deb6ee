import sys
from pathlib import Path

# Ensure src is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from reflexion.evaluation.reflection import ReflectionGenerator
from reflexion.evaluation.types import (
    ActionType,
    ErrorRecord,
    ErrorType,
    EvaluationMetrics,
    Priority,
    SessionOutcome,
    TranscriptEvaluation,
)


def _evaluation(
    outcome=SessionOutcome.SUCCESS,
    overall=0.9,
    efficiency=0.9,
    error=1.0,
    turns=10,
    errors=(),
    what_worked=(),
    what_failed=(),
    inefficiencies=(),
) -> TranscriptEvaluation:
    return TranscriptEvaluation(
        session_id="sess-1",
        task_completion_score=0.8,
        efficiency_score=efficiency,
        error_score=error,
        overall_score=overall,
        outcome=outcome,
        metrics=EvaluationMetrics(total_turns=turns),
        what_worked=tuple(what_worked),
        what_failed=tuple(what_failed),
        inefficiencies=tuple(inefficiencies),
        errors_encountered=tuple(errors),
    )


def test_clean_success_is_low_priority():
    reflection = ReflectionGenerator().generate(_evaluation())

    assert reflection.priority == Priority.LOW
    assert reflection.suggested_actions == ()
    assert reflection.confidence == pytest.approx(0.5)
    assert reflection.reflections[0].startswith("Task completed successfully")


def test_failure_is_high_priority():
    reflection = ReflectionGenerator().generate(
        _evaluation(outcome=SessionOutcome.FAILURE, overall=0.3)
    )

    assert reflection.priority == Priority.HIGH
    assert reflection.suggested_actions[0].title == "Failure case documentation"


def test_partial_is_medium_priority():
    reflection = ReflectionGenerator().generate(
        _evaluation(outcome=SessionOutcome.PARTIAL, overall=0.75)
    )

    assert reflection.priority == Priority.MEDIUM


def test_unresolved_type_error_suggests_gotcha():
    errors = [
        ErrorRecord(type=ErrorType.TYPE, message="error TS2322: Type 'string'", resolved=True, turns_to_resolve=2),
        ErrorRecord(type=ErrorType.TYPE, message="error TS2304: Cannot find name"),
    ]
    reflection = ReflectionGenerator().generate(_evaluation(errors=errors))

    assert any("2 TypeScript type errors" in r for r in reflection.reflections)
    gotchas = [a for a in reflection.suggested_actions if a.type == ActionType.ADD_GOTCHA]
    assert gotchas and gotchas[0].title == "Type error patterns"


def test_inefficiencies_map_to_remediations():
    reflection = ReflectionGenerator().generate(_evaluation(inefficiencies=[
        "Searched for something that wasn't found",
        "High tool call count (64)",
        "Had to backtrack",
    ]))

    titles = {a.title for a in reflection.suggested_actions}
    assert titles == {"Document file locations", "Specialized search tool", "Planning pattern"}


def test_actions_capped_unique_and_sorted():
    failures = [f"Failed to step {i}" for i in range(8)]
    reflection = ReflectionGenerator().generate(_evaluation(
        outcome=SessionOutcome.FAILURE,
        overall=0.2,
        what_worked=["tests passed", "tests passing"],
        what_failed=failures + failures,
        inefficiencies=["Searched for something that wasn't found", "Had to backtrack"],
    ))

    actions = reflection.suggested_actions
    assert len(actions) <= 5
    assert len({a.key for a in actions}) == len(actions)
    confidences = [a.confidence for a in actions]
    assert confidences == sorted(confidences, reverse=True)


def test_reflections_deduplicated_case_insensitively():
    reflection = ReflectionGenerator().generate(_evaluation(inefficiencies=[
        "Had to retry an approach",
        "An approach didn't work",
    ]))

    retry_notes = [r for r in reflection.reflections if r.startswith("Multiple attempts")]
    assert len(retry_notes) == 1


def test_confidence_blends_with_actions():
    reflection = ReflectionGenerator().generate(_evaluation(
        outcome=SessionOutcome.FAILURE,
        overall=0.3,
        turns=30,
    ))

    # base 0.5 + 0.1 for turns, averaged with the single 0.8 action
    assert reflection.confidence == pytest.approx((0.6 + 0.8) / 2)


def test_low_scores_are_flagged():
    reflection = ReflectionGenerator().generate(_evaluation(efficiency=0.3, error=0.4))

    assert any(r.startswith("Efficiency was low (0.30)") for r in reflection.reflections)
    assert any(r.startswith("Error handling could be improved (0.40)") for r in reflection.reflections)
