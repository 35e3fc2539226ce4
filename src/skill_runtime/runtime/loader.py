"""
Skill Loader - Load skill definitions from YAML files.

Supports:
- Single skill file (stale-deals.yaml)
- Skill directory (skills/*.yaml, skills/*.yml)
- Inline dict definitions
"""
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from skill_runtime.observability import get_logger
from skill_runtime.runtime.contracts import SkillDefinition
from skill_runtime.runtime.errors import SkillLoadError

logger = get_logger(__name__)

SKILL_FILE_PATTERNS = ("*.yaml", "*.yml")


def load_skill_from_file(path: Path) -> SkillDefinition:
    """
    Load a single skill from a YAML file.

    Args:
        path: Path to YAML file

    Returns:
        SkillDefinition

    Raises:
        SkillLoadError: If file not found or invalid
    """
    if not path.exists():
        raise SkillLoadError(f"Skill file not found: {path}", path=str(path))

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise SkillLoadError(f"Invalid YAML in {path}: {e}", path=str(path)) from e

    return _parse_skill(data, source=str(path))


def load_skill_from_dict(data: dict[str, Any]) -> SkillDefinition:
    """
    Load a skill from a dictionary.

    Args:
        data: Skill definition dict

    Returns:
        SkillDefinition
    """
    return _parse_skill(data, source="dict")


def load_skills_from_dir(skills_dir: Path) -> dict[str, SkillDefinition]:
    """
    Load all skills from a directory.

    Files that fail to load are logged and skipped.

    Args:
        skills_dir: Directory containing *.yaml / *.yml files

    Returns:
        Dict mapping skill ID to definition
    """
    if not skills_dir.exists():
        return {}

    skills = {}
    for pattern in SKILL_FILE_PATTERNS:
        for skill_file in sorted(skills_dir.glob(pattern)):
            try:
                skill = load_skill_from_file(skill_file)
            except SkillLoadError as e:
                logger.error("skill_load_failed", extra={"path": str(skill_file), "error": e.message})
                continue
            skills[skill.id] = skill

    return skills


def _parse_skill(data: Any, source: str) -> SkillDefinition:
    """Parse skill data into a SkillDefinition."""
    if not isinstance(data, dict):
        raise SkillLoadError(
            f"Skill must be a mapping, got {type(data).__name__} (source: {source})",
            path=source,
        )

    if "id" not in data:
        raise SkillLoadError(f"Skill missing 'id' field (source: {source})", path=source)
    if "steps" not in data:
        raise SkillLoadError(
            f"Skill '{data['id']}' missing 'steps' field (source: {source})",
            skill_id=data["id"],
            path=source,
        )

    try:
        return SkillDefinition.model_validate(data)
    except ValidationError as e:
        raise SkillLoadError(
            f"Invalid skill '{data['id']}' (source: {source}): {e}",
            skill_id=data["id"],
            path=source,
        ) from e
