"""Offline scoring of finished session transcripts."""

from datetime import datetime
from typing import Optional, Sequence
import logging
import math
import re

from .types import (
    ErrorRecord,
    ErrorType,
    EvaluationContext,
    EvaluationMetrics,
    SessionOutcome,
    TranscriptChunk,
    TranscriptEvaluation,
)

logger = logging.getLogger(__name__)


def _clip(value: float) -> float:
    return max(0.0, min(1.0, value))


def completion_score(has_completion_keyword: bool, unresolved_errors: int, failure_near_end: bool) -> float:
    score = 0.5
    if has_completion_keyword:
        score += 0.3
    score -= 0.1 * unresolved_errors
    if failure_near_end:
        score -= 0.2
    return _clip(score)


def efficiency_score(total_turns: int, retry_count: int, inefficiency_count: int) -> float:
    score = 1.0
    if total_turns > 50:
        score -= 0.1
    if total_turns > 100:
        score -= 0.2
    score -= 0.05 * retry_count
    score -= 0.1 * inefficiency_count
    return _clip(score)


def error_score(errors: Sequence[ErrorRecord]) -> float:
    """
    Score how well errors were handled.

    No errors at all scores 1.0. Otherwise 80% of the score is the
    resolved fraction and up to 0.2 is a bonus for fast resolution,
    averaged over the errors that carry a turn count.
    """
    if not errors:
        return 1.0

    resolved = sum(1 for e in errors if e.resolved)
    score = resolved / len(errors) * 0.8

    timed = [e.turns_to_resolve for e in errors if e.turns_to_resolve]
    avg_turns = sum(timed) / max(1, len(timed))
    if avg_turns < 3:
        score += 0.2
    elif avg_turns < 5:
        score += 0.1
    return _clip(score)


def overall_score(completion: float, efficiency: float, error: float) -> float:
    return completion * 0.5 + efficiency * 0.3 + error * 0.2


def classify_outcome(completion: float, unresolved_errors: int, interrupted: bool) -> SessionOutcome:
    # completion of exactly 0.7 is partial, not success
    if interrupted:
        return SessionOutcome.INTERRUPTED
    if unresolved_errors > 2 or completion < 0.3:
        return SessionOutcome.FAILURE
    if completion > 0.7 and unresolved_errors == 0:
        return SessionOutcome.SUCCESS
    return SessionOutcome.PARTIAL


class TranscriptEvaluator:
    """
    Scores a completed session transcript.

    Evaluation never raises on sparse input: an empty transcript or a
    missing timing context only lowers the scores.
    """

    ERROR_PATTERNS = (
        (re.compile(r"error\s*(?:ts|TS)\d+:", re.IGNORECASE), ErrorType.TYPE),
        (re.compile(r"SyntaxError:", re.IGNORECASE), ErrorType.SYNTAX),
        (re.compile(r"TypeError:|ReferenceError:|RangeError:", re.IGNORECASE), ErrorType.RUNTIME),
        (re.compile(r"FAIL\s+.*\.test\.", re.IGNORECASE), ErrorType.TEST),
        (re.compile(r"error\s+.*eslint", re.IGNORECASE), ErrorType.LINT),
        (re.compile(r"command not found|No such file", re.IGNORECASE), ErrorType.OTHER),
    )

    SUCCESS_INDICATORS = (
        re.compile(r"✓|✔|passed|success|complete|done|finished", re.IGNORECASE),
        re.compile(r"all tests passed", re.IGNORECASE),
        re.compile(r"build succeeded", re.IGNORECASE),
        re.compile(r"no errors", re.IGNORECASE),
        re.compile(r"commit.*created|pushed", re.IGNORECASE),
    )

    # Matched against the lowercased tail of the transcript
    FAILURE_INDICATORS = (
        re.compile(r"failed|error|cannot|unable", re.IGNORECASE),
        re.compile(r"FAIL\s"),
        re.compile(r"fatal:", re.IGNORECASE),
        re.compile(r"panic:", re.IGNORECASE),
        re.compile(r"abort", re.IGNORECASE),
    )

    INEFFICIENCY_PATTERNS = (
        (re.compile(r"searching for.*not found", re.IGNORECASE), "Searched for something that wasn't found"),
        (re.compile(r"let me try.*again", re.IGNORECASE), "Had to retry an approach"),
        (re.compile(r"that didn't work", re.IGNORECASE), "An approach didn't work"),
        (re.compile(r"sorry.*mistake", re.IGNORECASE), "Made a mistake"),
        (re.compile(r"going back to", re.IGNORECASE), "Had to backtrack"),
    )

    SUCCESS_PATTERNS = (
        (re.compile(r"successfully\s+(\w+(?:\s+\w+){0,3})", re.IGNORECASE), "Successfully"),
        (re.compile(r"created\s+(file|component|function|test|module)\s*:?\s*([^\n]+)", re.IGNORECASE), "Created"),
        (re.compile(r"fixed\s+(?:the\s+)?(\w+(?:\s+\w+){0,3})", re.IGNORECASE), "Fixed"),
        (re.compile(r"tests?\s+pass(?:ed|ing)", re.IGNORECASE), ""),
        (re.compile(r"build\s+succeeded", re.IGNORECASE), ""),
    )

    FAILURE_PATTERNS = (
        (re.compile(r"failed to\s+(\w+(?:\s+\w+){0,3})", re.IGNORECASE), "Failed to"),
        (re.compile(r"could not\s+(\w+(?:\s+\w+){0,3})", re.IGNORECASE), "Could not"),
        (re.compile(r"error\s+(?:in|with|while)\s+([^\n]+)", re.IGNORECASE), "Error with"),
        (re.compile(r"tests?\s+fail(?:ed|ing)", re.IGNORECASE), ""),
    )

    TOOL_MARKER = re.compile(r"\[tool:|<tool>|Using tool:", re.IGNORECASE)
    RETRY_MARKER = re.compile(r"retry|trying again|let me try|attempt", re.IGNORECASE)

    COMPLETION_KEYWORDS = ("complete", "done", "finished", "success")
    INTERRUPT_KEYWORDS = ("interrupt", "cancel", "abort", "stop")

    MAX_OUTCOME_ITEMS = 10
    MAX_TOOL_CALLS = 50
    MAX_TURNS = 100

    def evaluate(
        self,
        session_id: str,
        transcript: Sequence[TranscriptChunk],
        context: Optional[EvaluationContext] = None,
    ) -> TranscriptEvaluation:
        """Evaluate a session transcript."""
        context = context or EvaluationContext()

        metrics = self._extract_metrics(transcript, context.start_time, context.end_time)
        errors = self._detect_errors(transcript)
        what_worked, what_failed = self._analyze_outcomes(transcript)
        inefficiencies = self._detect_inefficiencies(transcript)

        unresolved = sum(1 for e in errors if not e.resolved)
        tail = self._tail_text(transcript, 10)

        completion = completion_score(
            has_completion_keyword=any(k in tail for k in self.COMPLETION_KEYWORDS),
            unresolved_errors=unresolved,
            failure_near_end=any(p.search(tail) for p in self.FAILURE_INDICATORS),
        )
        efficiency = efficiency_score(metrics.total_turns, metrics.retry_count, len(inefficiencies))
        errors_handled = error_score(errors)
        overall = overall_score(completion, efficiency, errors_handled)

        interrupted = any(k in self._tail_text(transcript, 5) for k in self.INTERRUPT_KEYWORDS)
        outcome = classify_outcome(completion, unresolved, interrupted)

        logger.debug(
            "Evaluated session %s: completion=%.2f efficiency=%.2f error=%.2f overall=%.2f outcome=%s",
            session_id, completion, efficiency, errors_handled, overall, outcome.value,
        )

        return TranscriptEvaluation(
            session_id=session_id,
            task_id=context.task_id,
            task_completion_score=completion,
            efficiency_score=efficiency,
            error_score=errors_handled,
            overall_score=overall,
            outcome=outcome,
            metrics=metrics,
            what_worked=tuple(what_worked),
            what_failed=tuple(what_failed),
            inefficiencies=tuple(inefficiencies),
            errors_encountered=tuple(errors),
        )

    @staticmethod
    def _tail_text(transcript: Sequence[TranscriptChunk], count: int) -> str:
        return "\n".join(c.content for c in transcript[-count:]).lower()

    @staticmethod
    def _full_text(transcript: Sequence[TranscriptChunk]) -> str:
        return "\n".join(c.content for c in transcript)

    def _extract_metrics(
        self,
        transcript: Sequence[TranscriptChunk],
        start_time: Optional[datetime],
        end_time: Optional[datetime],
    ) -> EvaluationMetrics:
        total_chars = sum(len(c.content) for c in transcript)

        duration = 0
        if start_time and end_time:
            duration = round((end_time - start_time).total_seconds())

        tool_calls = 0
        error_count = 0
        retry_count = 0
        for chunk in transcript:
            tool_calls += len(chunk.tool_calls)
            tool_calls += len(self.TOOL_MARKER.findall(chunk.content))
            # one count per error family present in the chunk
            error_count += sum(1 for pattern, _ in self.ERROR_PATTERNS if pattern.search(chunk.content))
            retry_count += len(self.RETRY_MARKER.findall(chunk.content))

        return EvaluationMetrics(
            total_turns=len(transcript),
            total_tokens_estimate=math.ceil(total_chars / 4),
            duration_seconds=duration,
            tool_call_count=tool_calls,
            error_count=error_count,
            retry_count=retry_count,
        )

    def _detect_errors(self, transcript: Sequence[TranscriptChunk]) -> list[ErrorRecord]:
        # key -> [type, message, first_index, last_index], insertion ordered
        occurrences: dict[str, list] = {}

        for i, chunk in enumerate(transcript):
            for pattern, error_type in self.ERROR_PATTERNS:
                for match in pattern.finditer(chunk.content):
                    message = self._extract_error_message(chunk.content, match.start())
                    key = f"{error_type.value}:{message[:50]}"
                    if key in occurrences:
                        occurrences[key][3] = i
                    else:
                        occurrences[key] = [error_type, message, i, i]

        errors = []
        for error_type, message, first_index, last_index in occurrences.values():
            resolved_at = self._find_resolution(transcript, last_index + 1)
            if resolved_at is None:
                errors.append(ErrorRecord(type=error_type, message=message))
            else:
                errors.append(ErrorRecord(
                    type=error_type,
                    message=message,
                    resolved=True,
                    turns_to_resolve=resolved_at - first_index,
                ))
        return errors

    def _find_resolution(self, transcript: Sequence[TranscriptChunk], start: int) -> Optional[int]:
        for i in range(start, len(transcript)):
            content = transcript[i].content
            if any(p.search(content) for p in self.SUCCESS_INDICATORS):
                return i
        return None

    @staticmethod
    def _extract_error_message(content: str, index: int) -> str:
        line_start = content.rfind("\n", 0, index) + 1
        line_end = content.find("\n", index)
        line = content[line_start:] if line_end == -1 else content[line_start:line_end]
        return line.strip()[:200]

    def _analyze_outcomes(self, transcript: Sequence[TranscriptChunk]) -> tuple[list[str], list[str]]:
        full_text = self._full_text(transcript)
        what_worked = self._mine(full_text, self.SUCCESS_PATTERNS)
        what_failed = self._mine(full_text, self.FAILURE_PATTERNS)
        return what_worked, what_failed

    def _mine(self, text: str, patterns) -> list[str]:
        found = []
        for pattern, prefix in patterns:
            for match in pattern.finditer(text):
                detail = (match.group(1) if match.re.groups else None) or match.group(0)
                found.append(f"{prefix} {detail.strip()}" if prefix else detail.strip())
        return list(dict.fromkeys(found))[:self.MAX_OUTCOME_ITEMS]

    def _detect_inefficiencies(self, transcript: Sequence[TranscriptChunk]) -> list[str]:
        full_text = self._full_text(transcript)
        found = [description for pattern, description in self.INEFFICIENCY_PATTERNS if pattern.search(full_text)]

        structured_calls = sum(len(c.tool_calls) for c in transcript)
        if structured_calls > self.MAX_TOOL_CALLS:
            found.append(f"High tool call count ({structured_calls})")

        if len(transcript) > self.MAX_TURNS:
            found.append(f"Long session ({len(transcript)} turns)")

        return list(dict.fromkeys(found))
