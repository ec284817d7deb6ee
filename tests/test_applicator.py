import sys
import json
from pathlib import Path

# Ensure src is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from reflexion.evaluation.types import (
    ActionSource,
    ActionType,
    Priority,
    Reflection,
    SuggestedAction,
)
from reflexion.improvement.applicator import ImprovementApplicator, insert_into_section


def _action(action_type: ActionType, title: str, confidence: float = 0.8) -> SuggestedAction:
    return SuggestedAction(
        type=action_type,
        title=title,
        description=f"{title} description",
        implementation=f"{title} implementation",
        confidence=confidence,
        source=ActionSource.ERROR_ANALYSIS,
    )


def _reflection(*actions: SuggestedAction) -> Reflection:
    return Reflection(
        session_id="sess-1",
        reflections=("something happened",),
        suggested_actions=tuple(actions),
        priority=Priority.MEDIUM,
        confidence=0.7,
    )


def test_insert_after_heading():
    content = "# CLAUDE.md\n\n## Gotchas\n\n- **Old**: entry\n"
    updated = insert_into_section(content, "## Gotchas", "- **New**: entry")

    assert updated == "# CLAUDE.md\n\n## Gotchas\n\n- **New**: entry\n- **Old**: entry\n"


def test_insert_at_section_end():
    content = "# CLAUDE.md\n\n## Notes\n- first\n\n## Gotchas\n- g\n"
    updated = insert_into_section(content, "## Notes", "- second", at_section_end=True)

    notes = updated.split("## Gotchas")[0]
    assert notes.index("- first") < notes.index("- second")
    assert "## Gotchas\n- g\n" in updated


def test_insert_creates_missing_section():
    updated = insert_into_section("# CLAUDE.md\n\n", "## Conventions", "- Use snake_case: always")

    assert updated == "# CLAUDE.md\n\n\n\n## Conventions\n\n- Use snake_case: always\n"


def test_insert_ignores_deeper_heading_with_same_prefix():
    content = "# CLAUDE.md\n\n## Patterns\n\n### Notes on caching\nUse redis.\n"
    updated = insert_into_section(content, "## Notes", "- **Run tests early**: desc", at_section_end=True)

    assert updated.startswith(content)
    assert updated.endswith("\n## Notes\n\n- **Run tests early**: desc\n")


@pytest.mark.asyncio
async def test_apply_writes_sections(tmp_path):
    reflection = _reflection(
        _action(ActionType.ADD_GOTCHA, "Type errors"),
        _action(ActionType.UPDATE_CONVENTION, "Naming"),
        _action(ActionType.ADD_PATTERN, "Plan first"),
        _action(ActionType.ADD_TO_CLAUDEMD, "Run tests early"),
    )

    result = await ImprovementApplicator().apply_improvements(reflection, tmp_path, auto_apply=True)

    content = (tmp_path / "CLAUDE.md").read_text(encoding="utf-8")
    assert content.startswith("# CLAUDE.md")
    assert "## Gotchas\n\n- **Type errors**: Type errors description" in content
    assert "## Conventions\n\n- Naming: Naming description" in content
    assert "### Plan first\nPlan first description\n\n```\nPlan first implementation\n```" in content
    assert "## Notes\n\n- **Run tests early**: Run tests early description" in content
    assert result.summary == "Applied 4/4 improvements, skipped 0"


@pytest.mark.asyncio
async def test_apply_creates_skill_and_tool(tmp_path):
    reflection = _reflection(
        _action(ActionType.CREATE_SKILL, "Error resolution skill"),
        _action(ActionType.CREATE_TOOL, "Specialized search tool"),
    )

    result = await ImprovementApplicator().apply_improvements(reflection, tmp_path, auto_apply=True)

    skill = tmp_path / ".claude" / "skills" / "error-resolution-skill.md"
    tool = tmp_path / ".claude" / "tools" / "specialized-search-tool.json"
    assert skill.read_text(encoding="utf-8").startswith("# Error resolution skill")
    assert json.loads(tool.read_text(encoding="utf-8"))["implementation"]["type"] == "stub"
    assert all(a.success for a in result.applied)


@pytest.mark.asyncio
async def test_skip_reasons(tmp_path):
    reflection = _reflection(
        _action(ActionType.ADD_GOTCHA, "Weak", confidence=0.5),
        _action(ActionType.ADD_GOTCHA, "Strong", confidence=0.9),
    )

    result = await ImprovementApplicator().apply_improvements(reflection, tmp_path)

    reasons = [s.reason for s in result.skipped]
    assert reasons == ["Confidence 0.50 below threshold 0.6", "Auto-apply disabled"]
    assert result.applied == []
    assert result.summary == "Applied 0/0 improvements, skipped 2"
    assert not (tmp_path / "CLAUDE.md").exists()


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(tmp_path):
    reflection = _reflection(
        _action(ActionType.ADD_GOTCHA, "Gotcha"),
        _action(ActionType.CREATE_SKILL, "Skill"),
    )

    result = await ImprovementApplicator().apply_improvements(reflection, tmp_path, dry_run=True)

    assert result.success_count == 2
    assert not (tmp_path / "CLAUDE.md").exists()
    assert not (tmp_path / ".claude").exists()


@pytest.mark.asyncio
async def test_failed_write_does_not_abort_batch(tmp_path):
    # A directory where the instructions file should be makes the write fail
    (tmp_path / "CLAUDE.md").mkdir()
    reflection = _reflection(
        _action(ActionType.ADD_GOTCHA, "Broken"),
        _action(ActionType.CREATE_SKILL, "Still works"),
    )

    result = await ImprovementApplicator().apply_improvements(reflection, tmp_path, auto_apply=True)

    assert [a.success for a in result.applied] == [False, True]
    assert result.summary == "Applied 1/2 improvements, skipped 0"


def test_preview(tmp_path):
    reflection = _reflection(
        _action(ActionType.ADD_GOTCHA, "Low", confidence=0.4),
        _action(ActionType.ADD_GOTCHA, "High", confidence=0.9),
    )

    previews = ImprovementApplicator().preview_improvements(reflection)

    assert [p.would_apply for p in previews] == [False, True]
    assert previews[1].reason == "Confidence 0.90 meets threshold"
