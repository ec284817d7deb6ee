"""Improvement application and the orchestrator self-improvement loop."""

from .rules import (
    CHANGE_RULES,
    ChangeType,
    Issue,
    IssueType,
    ProposedChange,
    Severity,
    is_safe_change,
)
from .applicator import (
    ActionPreview,
    AppliedImprovement,
    ImprovementApplicator,
    ImprovementResult,
    SkippedImprovement,
)
from .service import (
    CycleResult,
    ImprovementAnalysis,
    SelfImprovementService,
    TestAction,
    TestActionResult,
)
from .preview import ImprovementPreview

__all__ = [
    "CHANGE_RULES",
    "ChangeType",
    "Issue",
    "IssueType",
    "ProposedChange",
    "Severity",
    "is_safe_change",
    "ActionPreview",
    "AppliedImprovement",
    "ImprovementApplicator",
    "ImprovementResult",
    "SkippedImprovement",
    "CycleResult",
    "ImprovementAnalysis",
    "SelfImprovementService",
    "TestAction",
    "TestActionResult",
    "ImprovementPreview",
]
