"""Transcript evaluation and reflection generation."""

from .types import (
    ActionSource,
    ActionType,
    ErrorRecord,
    ErrorType,
    EvaluationContext,
    EvaluationMetrics,
    Priority,
    Reflection,
    SessionOutcome,
    SuggestedAction,
    ToolCall,
    TranscriptChunk,
    TranscriptEvaluation,
)
from .evaluator import TranscriptEvaluator
from .reflection import ReflectionGenerator

__all__ = [
    "ActionSource",
    "ActionType",
    "ErrorRecord",
    "ErrorType",
    "EvaluationContext",
    "EvaluationMetrics",
    "Priority",
    "Reflection",
    "SessionOutcome",
    "SuggestedAction",
    "ToolCall",
    "TranscriptChunk",
    "TranscriptEvaluation",
    "TranscriptEvaluator",
    "ReflectionGenerator",
]
