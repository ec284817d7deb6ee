"""Applies reflection actions to a project's persisted instructions."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union
import asyncio
import json
import logging
import re
import uuid
import aiofiles

from ..config import config
from ..evaluation.types import ActionType, Reflection, SuggestedAction

logger = logging.getLogger(__name__)

INSTRUCTIONS_FILE = "CLAUDE.md"
DEFAULT_INSTRUCTIONS = "# CLAUDE.md\n\n"


@dataclass
class AppliedImprovement:
    action: SuggestedAction
    success: bool
    result: str
    action_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    applied_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SkippedImprovement:
    action: SuggestedAction
    reason: str


@dataclass
class ImprovementResult:
    session_id: str
    applied: list[AppliedImprovement]
    skipped: list[SkippedImprovement]
    summary: str

    @property
    def success_count(self) -> int:
        return sum(1 for a in self.applied if a.success)


@dataclass
class ActionPreview:
    action: SuggestedAction
    would_apply: bool
    reason: str


def slugify(title: str, max_length: int = 30) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower())[:max_length]


def insert_into_section(content: str, header: str, entry: str, at_section_end: bool = False) -> str:
    """
    Insert an entry into a markdown section, creating the section if missing.

    Entries go right after the heading line, or before the next ``## ``
    heading when ``at_section_end`` is set. The heading must occupy a whole
    line, so ``## Notes`` does not match ``### Notes on caching``.
    """
    match = re.search(rf"^{re.escape(header)}[ \t]*$", content, re.MULTILINE)
    if match is None:
        return f"{content}\n\n{header}\n\n{entry}\n"

    start = match.start()
    if at_section_end:
        next_section = content.find("\n## ", start + len(header))
        insert_at = len(content) if next_section == -1 else next_section
        return content[:insert_at] + "\n" + entry + "\n" + content[insert_at:]

    end_of_line = content.find("\n", start)
    if end_of_line == -1:
        # Heading is the last line of the file
        return content + "\n\n" + entry + "\n"
    return content[:end_of_line + 1] + "\n" + entry + content[end_of_line + 1:]


class ImprovementApplicator:
    """
    Writes suggested actions into a project's CLAUDE.md and .claude/ directory.

    Improvements apply between sessions: they shape the next session's
    instructions, never the current one. Writes for one project are
    serialised so concurrent batches cannot lose each other's edits.
    """

    def __init__(self):
        self._locks: dict[Path, asyncio.Lock] = {}
        self._writers = {
            ActionType.ADD_TO_CLAUDEMD: self._add_note,
            ActionType.ADD_GOTCHA: self._add_gotcha,
            ActionType.UPDATE_CONVENTION: self._update_convention,
            ActionType.ADD_PATTERN: self._add_pattern,
            ActionType.CREATE_SKILL: self._create_skill,
            ActionType.CREATE_TOOL: self._create_tool,
        }

    def _lock_for(self, project_path: Path) -> asyncio.Lock:
        key = project_path.resolve()
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def apply_improvements(
        self,
        reflection: Reflection,
        project_path: Union[str, Path],
        auto_apply: bool = False,
        confidence_threshold: Optional[float] = None,
        dry_run: bool = False,
    ) -> ImprovementResult:
        """
        Apply a reflection's suggested actions to a project.

        Args:
            reflection: Reflection carrying the suggested actions
            project_path: Root of the project whose instructions are updated
            auto_apply: Write actions without a preview step
            confidence_threshold: Minimum action confidence (config default 0.6)
            dry_run: Compute every change but write nothing

        Returns:
            ImprovementResult with per-action outcomes and a summary line
        """
        threshold = (
            config.thresholds.applicator_confidence
            if confidence_threshold is None else confidence_threshold
        )
        project_path = Path(project_path)
        applied: list[AppliedImprovement] = []
        skipped: list[SkippedImprovement] = []

        async with self._lock_for(project_path):
            for action in reflection.suggested_actions:
                if action.confidence < threshold:
                    skipped.append(SkippedImprovement(
                        action, f"Confidence {action.confidence:.2f} below threshold {threshold}"
                    ))
                    continue

                if not auto_apply and not dry_run:
                    skipped.append(SkippedImprovement(action, "Auto-apply disabled"))
                    continue

                try:
                    result = await self._apply_action(action, project_path, dry_run)
                    applied.append(AppliedImprovement(action=action, success=True, result=result))
                except (OSError, ValueError) as e:
                    logger.warning("Failed to apply '%s' to %s: %s", action.title, project_path, e)
                    applied.append(AppliedImprovement(action=action, success=False, result=str(e)))

        success_count = sum(1 for a in applied if a.success)
        summary = f"Applied {success_count}/{len(applied)} improvements, skipped {len(skipped)}"
        logger.info("%s (%s)%s", summary, project_path, " [dry run]" if dry_run else "")

        return ImprovementResult(
            session_id=reflection.session_id,
            applied=applied,
            skipped=skipped,
            summary=summary,
        )

    def preview_improvements(
        self,
        reflection: Reflection,
        confidence_threshold: Optional[float] = None,
    ) -> list[ActionPreview]:
        """Report which actions would pass the confidence gate."""
        threshold = (
            config.thresholds.applicator_confidence
            if confidence_threshold is None else confidence_threshold
        )
        previews = []
        for action in reflection.suggested_actions:
            meets = action.confidence >= threshold
            reason = (
                f"Confidence {action.confidence:.2f} meets threshold"
                if meets else
                f"Confidence {action.confidence:.2f} below threshold {threshold}"
            )
            previews.append(ActionPreview(action, meets, reason))
        return previews

    async def _apply_action(self, action: SuggestedAction, project_path: Path, dry_run: bool) -> str:
        writer = self._writers.get(action.type)
        if writer is None:
            raise ValueError(f"Unknown action type: {action.type}")
        return await writer(action, project_path, dry_run)

    # -- instructions file ---------------------------------------------------

    async def _update_instructions(
        self,
        project_path: Path,
        header: str,
        entry: str,
        dry_run: bool,
        at_section_end: bool = False,
    ):
        path = project_path / INSTRUCTIONS_FILE
        if path.exists():
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
        else:
            content = DEFAULT_INSTRUCTIONS

        updated = insert_into_section(content, header, entry, at_section_end)
        if not dry_run:
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(updated)

    async def _add_note(self, action: SuggestedAction, project_path: Path, dry_run: bool) -> str:
        await self._update_instructions(
            project_path, "## Notes", f"- **{action.title}**: {action.description}",
            dry_run, at_section_end=True,
        )
        return f"Added to {INSTRUCTIONS_FILE}: {action.title}"

    async def _add_gotcha(self, action: SuggestedAction, project_path: Path, dry_run: bool) -> str:
        await self._update_instructions(
            project_path, "## Gotchas", f"- **{action.title}**: {action.description}", dry_run,
        )
        return f"Added gotcha: {action.title}"

    async def _update_convention(self, action: SuggestedAction, project_path: Path, dry_run: bool) -> str:
        await self._update_instructions(
            project_path, "## Conventions", f"- {action.title}: {action.description}", dry_run,
        )
        return f"Added convention: {action.title}"

    async def _add_pattern(self, action: SuggestedAction, project_path: Path, dry_run: bool) -> str:
        entry = f"### {action.title}\n{action.description}\n\n```\n{action.implementation}\n```\n"
        await self._update_instructions(project_path, "## Patterns", entry, dry_run)
        return f"Added pattern: {action.title}"

    # -- .claude/ artifacts --------------------------------------------------

    async def _create_skill(self, action: SuggestedAction, project_path: Path, dry_run: bool) -> str:
        skills_dir = project_path / ".claude" / "skills"
        skill_path = skills_dir / f"{slugify(action.title)}.md"

        content = (
            f"# {action.title}\n\n"
            f"## Description\n{action.description}\n\n"
            f"## Triggers\n- {action.title.lower()}\n\n"
            f"## Steps\n1. {action.implementation}\n\n"
            f"## Source\nGenerated from reflection analysis.\n"
            f"Confidence: {action.confidence:.2f}\n"
            f"Source type: {action.source.value}\n"
        )

        if not dry_run:
            skills_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(skill_path, "w", encoding="utf-8") as f:
                await f.write(content)

        return f"Created skill: {skill_path}"

    async def _create_tool(self, action: SuggestedAction, project_path: Path, dry_run: bool) -> str:
        tools_dir = project_path / ".claude" / "tools"
        tool_name = slugify(action.title)
        tool_path = tools_dir / f"{tool_name}.json"

        tool_def = {
            "name": tool_name,
            "description": action.description,
            "inputSchema": {"type": "object", "properties": {}, "required": []},
            "implementation": {
                "type": "stub",
                "note": "Auto-generated from reflection. Implement before use.",
            },
            "metadata": {
                "source": action.source.value,
                "confidence": action.confidence,
                "generatedAt": datetime.now(timezone.utc).isoformat(),
            },
        }

        if not dry_run:
            tools_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tool_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(tool_def, indent=2))

        return f"Created tool stub: {tool_path}"
