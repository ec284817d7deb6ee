"""Storage layer for orchestrator versions and the audit trail."""

from .audit import AuditLog
from .versions import (
    ABTest,
    ABTestResult,
    Recommendation,
    VersionArchive,
    YamlVersionArchive,
)

__all__ = [
    "AuditLog",
    "ABTest",
    "ABTestResult",
    "Recommendation",
    "VersionArchive",
    "YamlVersionArchive",
]
