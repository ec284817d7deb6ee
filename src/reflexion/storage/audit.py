"""Audit trail of improvement-cycle events in JSONL format."""

from pathlib import Path
from datetime import datetime, timezone
from typing import Optional
import json
import logging
import aiofiles

from ..config import config

logger = logging.getLogger(__name__)


class AuditLog:
    """
    Append-only log of improvement events, one JSONL file per day.

    Structure:
    data/audit/2026-10-17.jsonl
    """

    def __init__(self, base_path: Optional[Path] = None):
        self.base_path = base_path or config.paths.audit
        self.base_path.mkdir(parents=True, exist_ok=True)

    async def log_event(self, event_type: str, data: dict):
        """Log an improvement-related event."""
        now = datetime.now(timezone.utc)
        entry = {
            "timestamp": now.isoformat(),
            "type": event_type,
            **data,
        }

        path = self.base_path / f"{now.date().isoformat()}.jsonl"
        async with aiofiles.open(path, "a", encoding="utf-8") as f:
            await f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")

    async def get_events(
        self,
        limit: int = 100,
        event_type: Optional[str] = None,
        orchestrator_id: Optional[str] = None,
    ) -> list[dict]:
        """
        Get logged events, newest first.

        Args:
            limit: Maximum number of entries to return
            event_type: Only entries of this type
            orchestrator_id: Only entries for this orchestrator

        Returns:
            List of log entries
        """
        events = []
        for file_path in sorted(self.base_path.glob("*.jsonl"), reverse=True):
            async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
                lines = await f.readlines()

            for line in reversed(lines):
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning("Skipping malformed audit entry in %s: %s", file_path.name, e)
                    continue

                if event_type and entry.get("type") != event_type:
                    continue
                if orchestrator_id and entry.get("orchestrator_id") != orchestrator_id:
                    continue

                events.append(entry)
                if len(events) >= limit:
                    return events

        return events
