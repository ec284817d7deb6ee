"""Issue types and the config change each one proposes."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from ..domain.version import OrchestratorConfig


class IssueType(Enum):
    LOW_SUCCESS_RATE = "low_success_rate"
    HIGH_DURATION = "high_duration"
    POOR_AGENT_SELECTION = "poor_agent_selection"
    PARSING_ERRORS = "parsing_errors"
    STALL_FREQUENCY = "stall_frequency"


class Severity(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ChangeType(Enum):
    CONFIG = "config"
    PROMPT = "prompt"
    HEURISTIC = "heuristic"
    TOOL = "tool"


@dataclass(frozen=True)
class Issue:
    type: IssueType
    severity: Severity
    description: str
    evidence: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "evidence": list(self.evidence),
        }


@dataclass(frozen=True)
class ProposedChange:
    """
    A candidate modification to the orchestrator.

    Config changes address a value by component path
    (``monitoring.checkIntervalSeconds``); heuristic changes carry the
    reflection action type as their component.
    """
    type: ChangeType
    component: str
    current_value: Any
    proposed_value: Any
    rationale: str
    expected_impact: float  # 0-1
    confidence: float

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"ProposedChange.confidence must be in [0, 1], got {self.confidence}")

    @property
    def section(self) -> Optional[str]:
        """Config section a config change targets, e.g. ``monitoring``."""
        if self.type != ChangeType.CONFIG or self.component.count(".") != 1:
            return None
        return self.component.split(".")[0]

    @property
    def key(self) -> Optional[str]:
        if self.section is None:
            return None
        return self.component.split(".")[1]

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "component": self.component,
            "current_value": self.current_value,
            "proposed_value": self.proposed_value,
            "rationale": self.rationale,
            "expected_impact": self.expected_impact,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ChangeRule:
    """
    How one issue type moves one config value.

    ``applies`` guards against proposing a change that would not move the
    value (already at or past the bound).
    """
    component: str
    applies: Callable[[Any], bool]
    propose: Callable[[Any], Any]
    rationale: str
    expected_impact: float
    confidence: float

    def change_for(self, config: OrchestratorConfig) -> Optional[ProposedChange]:
        current = config.get(self.component)
        if not self.applies(current):
            return None
        return ProposedChange(
            type=ChangeType.CONFIG,
            component=self.component,
            current_value=current,
            proposed_value=self.propose(current),
            rationale=self.rationale,
            expected_impact=self.expected_impact,
            confidence=self.confidence,
        )


CHANGE_RULES: dict[IssueType, ChangeRule] = {
    IssueType.LOW_SUCCESS_RATE: ChangeRule(
        component="monitoring.checkIntervalSeconds",
        applies=lambda v: v > 20,
        propose=lambda v: max(15, v - 10),
        rationale="Reduce monitoring interval to catch issues earlier",
        expected_impact=0.1,
        confidence=0.7,
    ),
    IssueType.HIGH_DURATION: ChangeRule(
        component="monitoring.stallThresholdSeconds",
        applies=lambda v: v > 180,
        propose=lambda v: max(120, v - 60),
        rationale="Reduce stall threshold to intervene earlier",
        expected_impact=0.15,
        confidence=0.6,
    ),
    IssueType.POOR_AGENT_SELECTION: ChangeRule(
        component="agentSelection.performanceWeight",
        applies=lambda v: v < 0.9,
        propose=lambda v: round(min(0.95, v + 0.1), 2),
        rationale="Increase weight of performance history in agent selection",
        expected_impact=0.2,
        confidence=0.65,
    ),
    IssueType.PARSING_ERRORS: ChangeRule(
        component="taskParsingHeuristics.confidenceThreshold",
        applies=lambda v: v < 0.8,
        propose=lambda v: round(min(0.85, v + 0.1), 2),
        rationale="Increase parsing confidence threshold to reduce ambiguous tasks",
        expected_impact=0.1,
        confidence=0.55,
    ),
    IssueType.STALL_FREQUENCY: ChangeRule(
        component="monitoring.maxRetries",
        applies=lambda v: v < 5,
        propose=lambda v: v + 1,
        rationale="Increase max retries to handle transient issues",
        expected_impact=0.1,
        confidence=0.6,
    ),
}

# Components a cycle may never modify, matched as substrings of the path
PROTECTED_COMPONENTS = ("autonomy.autoApplyImprovements", "safety", "oversight")

# Lowest values a change may set
MIN_VALUES = {
    "monitoring.checkIntervalSeconds": 10,
    "monitoring.stallThresholdSeconds": 60,
}


def is_safe_change(change: ProposedChange) -> bool:
    """
    Check a proposed change against the safety rules.

    Protected components are rejected regardless of confidence. Monitoring
    interval and stall threshold have hard floors.
    """
    if any(protected in change.component for protected in PROTECTED_COMPONENTS):
        return False

    floor = MIN_VALUES.get(change.component)
    if floor is not None and isinstance(change.proposed_value, (int, float)):
        if change.proposed_value < floor:
            return False

    return True
