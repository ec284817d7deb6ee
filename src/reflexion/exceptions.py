"""Custom exceptions for the reflexion core."""

from dataclasses import dataclass, field
from typing import Optional


class ReflexionError(Exception):
    """Base error for the reflexion core."""
    pass


@dataclass
class NoActiveVersionError(ReflexionError):
    """
    Raised when an orchestrator has no active version.

    This is a precondition failure: an improvement cycle cannot run
    without a baseline, and callers must not retry it blindly.
    """
    orchestrator_id: str

    def __str__(self):
        return f"No active version for orchestrator: {self.orchestrator_id}"


@dataclass
class VersionNotFoundError(ReflexionError):
    """Raised when a version id is unknown to the archive."""
    version_id: str

    def __str__(self):
        return f"Version not found: {self.version_id}"


@dataclass
class ABTestNotFoundError(ReflexionError):
    """Raised when an A/B test id is unknown or already ended."""
    test_id: str

    def __str__(self):
        return f"Test not found: {self.test_id}"


@dataclass
class ABTestAlreadyRunningError(ReflexionError):
    """Raised when an orchestrator already has a candidate under test."""
    orchestrator_id: str
    test_id: str

    def __str__(self):
        return f"Orchestrator {self.orchestrator_id} already has a running test: {self.test_id}"


@dataclass
class InvalidStateTransitionError(ReflexionError):
    """Raised when an entity is asked to move to a status it cannot reach."""
    entity: str
    current: str
    target: str
    allowed: list[str] = field(default_factory=list)

    def __str__(self):
        allowed = ", ".join(self.allowed) or "none"
        return (
            f"{self.entity} cannot transition from '{self.current}' to "
            f"'{self.target}' (allowed: {allowed})"
        )


class EpisodeStoreError(ReflexionError):
    """Error raised by the episode store."""
    pass


@dataclass
class RecordingNotFoundError(ReflexionError):
    """Raised when an episode recording session is unknown or inactive."""
    recording_id: str
    reason: Optional[str] = None

    def __str__(self):
        return f"Recording session {self.recording_id} not found or inactive"
