"""Verbal reflections and suggested actions from transcript evaluations."""

from dataclasses import dataclass, field
from typing import Optional
import logging

from .types import (
    ActionSource,
    ActionType,
    ErrorRecord,
    ErrorType,
    Priority,
    Reflection,
    SessionOutcome,
    SuggestedAction,
    TranscriptEvaluation,
)

logger = logging.getLogger(__name__)


@dataclass
class _Findings:
    """Accumulates reflections and actions across dimensions."""
    reflections: list[str] = field(default_factory=list)
    actions: list[SuggestedAction] = field(default_factory=list)

    def reflect(self, text: str) -> None:
        self.reflections.append(text)

    def suggest(
        self,
        action_type: ActionType,
        title: str,
        description: str,
        implementation: str,
        confidence: float,
        source: ActionSource,
    ) -> None:
        self.actions.append(SuggestedAction(
            type=action_type,
            title=title,
            description=description,
            implementation=implementation,
            confidence=confidence,
            source=source,
        ))


# Inefficiency substring -> (reflection, action or None)
INEFFICIENCY_RULES: tuple[tuple[tuple[str, ...], str, Optional[tuple]], ...] = (
    (
        ("Searched for something",),
        "Time was spent searching for files or configurations that weren't found. "
        "Add common locations to project documentation.",
        (
            ActionType.ADD_TO_CLAUDEMD,
            "Document file locations",
            "Add common file and config locations to CLAUDE.md",
            'Add to CLAUDE.md: "## Key Files\\n- Config: path/to/config\\n- Tests: path/to/tests"',
            0.8,
        ),
    ),
    (
        ("retry", "didn't work"),
        "Multiple attempts were needed. Document successful patterns to avoid trial-and-error.",
        None,
    ),
    (
        ("High tool call count",),
        "High number of tool calls suggests complex exploration. Consider creating specialized tools.",
        (
            ActionType.CREATE_TOOL,
            "Specialized search tool",
            "Create tool for common search patterns",
            "MCP tool for project-specific file search",
            0.5,
        ),
    ),
    (
        ("Long session",),
        "Long session duration. Consider breaking complex tasks into smaller subtasks.",
        None,
    ),
    (
        ("backtrack",),
        "Had to backtrack during implementation. Plan more thoroughly before starting.",
        (
            ActionType.ADD_PATTERN,
            "Planning pattern",
            "Add planning step before implementation",
            "Before implementing, list affected files and expected changes",
            0.7,
        ),
    ),
)


class ReflectionGenerator:
    """
    Turns a TranscriptEvaluation into verbal learnings.

    Each dimension (errors, inefficiencies, successes, failures and the
    overall outcome) contributes reflections and suggested actions
    independently. Actions are then ranked by confidence, deduplicated
    on (type, title) and capped at MAX_ACTIONS.
    """

    MAX_ACTIONS = 5
    SLOW_RESOLUTION_TURNS = 5

    def generate(self, evaluation: TranscriptEvaluation) -> Reflection:
        findings = _Findings()

        self._reflect_on_errors(evaluation.errors_encountered, findings)
        self._reflect_on_inefficiencies(evaluation.inefficiencies, findings)
        self._reflect_on_success(evaluation.what_worked, findings)
        self._reflect_on_failures(evaluation.what_failed, findings)
        self._reflect_on_outcome(evaluation, findings)

        reflection = Reflection(
            session_id=evaluation.session_id,
            task_id=evaluation.task_id,
            reflections=tuple(self._deduplicate_reflections(findings.reflections)),
            suggested_actions=tuple(self._prioritize_actions(findings.actions)),
            priority=self._calculate_priority(evaluation),
            confidence=self._calculate_confidence(evaluation, findings.actions),
        )
        logger.debug(
            "Generated %d reflections and %d actions for session %s (priority=%s)",
            len(reflection.reflections),
            len(reflection.suggested_actions),
            evaluation.session_id,
            reflection.priority.value,
        )
        return reflection

    def _reflect_on_errors(self, errors, findings: _Findings) -> None:
        if not errors:
            return

        by_type: dict[ErrorType, list[ErrorRecord]] = {}
        for error in errors:
            by_type.setdefault(error.type, []).append(error)

        for error_type, typed in by_type.items():
            resolved = sum(1 for e in typed if e.resolved)
            unresolved = len(typed) - resolved

            if error_type == ErrorType.TYPE:
                findings.reflect(
                    f"Encountered {len(typed)} TypeScript type errors. "
                    f"{resolved} were resolved, {unresolved} remain."
                )
                if unresolved > 0:
                    findings.suggest(
                        ActionType.ADD_GOTCHA,
                        "Type error patterns",
                        f"Document common type error patterns to avoid: {typed[0].message[:100]}",
                        'Add to gotchas: "Check type compatibility before assignments"',
                        0.7,
                        ActionSource.ERROR_ANALYSIS,
                    )
            elif error_type == ErrorType.TEST:
                findings.reflect(
                    f"{len(typed)} test failures occurred. "
                    "Consider running tests earlier in the development cycle."
                )
                findings.suggest(
                    ActionType.ADD_TO_CLAUDEMD,
                    "Run tests early",
                    "Add reminder to run tests after each significant change",
                    'Add to CLAUDE.md: "Run tests after each file modification to catch issues early"',
                    0.8,
                    ActionSource.ERROR_ANALYSIS,
                )
            elif error_type == ErrorType.RUNTIME:
                findings.reflect("Runtime errors suggest the code wasn't properly tested before execution.")

        if any((e.turns_to_resolve or 0) > self.SLOW_RESOLUTION_TURNS for e in errors):
            findings.reflect(
                "Some errors took more than 5 turns to resolve. "
                "Consider creating tools or skills for common error patterns."
            )
            findings.suggest(
                ActionType.CREATE_SKILL,
                "Error resolution skill",
                "Create a skill for handling common error types",
                "Skill: /fix-error - Analyze and fix common error patterns",
                0.6,
                ActionSource.ERROR_ANALYSIS,
            )

    def _reflect_on_inefficiencies(self, inefficiencies, findings: _Findings) -> None:
        for inefficiency in inefficiencies:
            for needles, text, action in INEFFICIENCY_RULES:
                if not any(needle in inefficiency for needle in needles):
                    continue
                findings.reflect(text)
                if action:
                    findings.suggest(*action, ActionSource.INEFFICIENCY)

    def _reflect_on_success(self, what_worked, findings: _Findings) -> None:
        if not what_worked:
            return

        findings.reflect(f"Successful actions: {', '.join(what_worked[:3])}")
        for success in what_worked:
            lowered = success.lower()
            if "test" in lowered:
                findings.suggest(
                    ActionType.ADD_PATTERN,
                    "Testing success pattern",
                    "Document successful testing approach",
                    "Pattern: Run tests incrementally after each change",
                    0.7,
                    ActionSource.SUCCESS_PATTERN,
                )
            if "fix" in lowered:
                findings.suggest(
                    ActionType.CREATE_SKILL,
                    "Fix skill",
                    f"Create skill from successful fix: {success}",
                    "Skill to reproduce this fix pattern",
                    0.5,
                    ActionSource.SUCCESS_PATTERN,
                )

    def _reflect_on_failures(self, what_failed, findings: _Findings) -> None:
        if not what_failed:
            return

        findings.reflect(f"Failures encountered: {', '.join(what_failed[:3])}")
        for failure in what_failed:
            findings.suggest(
                ActionType.ADD_GOTCHA,
                f"Gotcha: {failure[:50]}",
                f"Add gotcha to prevent: {failure}",
                f"Gotcha: Watch out for this pattern - {failure}",
                0.6,
                ActionSource.FAILURE_PATTERN,
            )

    def _reflect_on_outcome(self, evaluation: TranscriptEvaluation, findings: _Findings) -> None:
        outcome = evaluation.outcome
        if outcome == SessionOutcome.SUCCESS:
            findings.reflect(f"Task completed successfully with {evaluation.overall_score:.2f} overall score.")
        elif outcome == SessionOutcome.PARTIAL:
            findings.reflect("Task partially completed. Some objectives achieved but gaps remain.")
            findings.suggest(
                ActionType.ADD_PATTERN,
                "Completion verification",
                "Add explicit completion verification step",
                "Before finishing, verify all objectives are met",
                0.7,
                ActionSource.FAILURE_PATTERN,
            )
        elif outcome == SessionOutcome.FAILURE:
            findings.reflect("Task failed. Review approach and consider alternative strategies.")
            findings.suggest(
                ActionType.ADD_GOTCHA,
                "Failure case documentation",
                "Document what caused the failure for future reference",
                "Document failure pattern and mitigation",
                0.8,
                ActionSource.FAILURE_PATTERN,
            )
        elif outcome == SessionOutcome.INTERRUPTED:
            findings.reflect("Task was interrupted. Consider checkpointing or breaking into smaller tasks.")

        if evaluation.efficiency_score < 0.5:
            findings.reflect(
                f"Efficiency was low ({evaluation.efficiency_score:.2f}). "
                "Look for ways to streamline the workflow."
            )
        if evaluation.error_score < 0.5:
            findings.reflect(
                f"Error handling could be improved ({evaluation.error_score:.2f}). "
                "Consider adding validation steps."
            )

    @staticmethod
    def _calculate_priority(evaluation: TranscriptEvaluation) -> Priority:
        if evaluation.outcome == SessionOutcome.FAILURE or evaluation.overall_score < 0.4:
            return Priority.HIGH
        if evaluation.outcome == SessionOutcome.PARTIAL or evaluation.overall_score < 0.7:
            return Priority.MEDIUM
        return Priority.LOW

    @staticmethod
    def _calculate_confidence(evaluation: TranscriptEvaluation, actions: list[SuggestedAction]) -> float:
        confidence = 0.5
        if evaluation.metrics.total_turns > 20:
            confidence += 0.1
        if evaluation.errors_encountered:
            confidence += 0.1
        if evaluation.what_worked:
            confidence += 0.1
        if evaluation.what_failed:
            confidence += 0.1

        if actions:
            avg_action = sum(a.confidence for a in actions) / len(actions)
            confidence = (confidence + avg_action) / 2

        return max(0.0, min(1.0, confidence))

    @staticmethod
    def _deduplicate_reflections(reflections: list[str]) -> list[str]:
        seen = set()
        unique = []
        for text in reflections:
            normalized = text.lower().strip()
            if normalized in seen:
                continue
            seen.add(normalized)
            unique.append(text)
        return unique

    def _prioritize_actions(self, actions: list[SuggestedAction]) -> list[SuggestedAction]:
        # sorted() is stable, so equal confidences keep generation order
        ranked = sorted(actions, key=lambda a: a.confidence, reverse=True)
        seen = set()
        unique = []
        for action in ranked:
            if action.key in seen:
                continue
            seen.add(action.key)
            unique.append(action)
        return unique[:self.MAX_ACTIONS]
