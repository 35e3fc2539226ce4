"""Skill definition registry."""
import threading
from pathlib import Path

from skill_runtime.config import Settings, get_settings
from skill_runtime.observability import get_logger
from skill_runtime.runtime.compute import ComputeRegistry
from skill_runtime.runtime.contracts import SkillDefinition
from skill_runtime.runtime.errors import SkillDefinitionError
from skill_runtime.runtime.loader import load_skills_from_dir
from skill_runtime.runtime.tools import ToolRegistry
from skill_runtime.runtime.validation import validate_skill_definition

logger = get_logger(__name__)


class SkillRegistry:
    """
    Registry for skill definitions.

    Definitions are validated on registration; re-registering an ID
    replaces the previous definition (hot reload).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        tool_registry: ToolRegistry | None = None,
        compute_registry: ComputeRegistry | None = None,
    ):
        """Initialize skill registry."""
        self.settings = settings
        self.tool_registry = tool_registry
        self.compute_registry = compute_registry
        self._skills: dict[str, SkillDefinition] = {}
        self._lock = threading.Lock()

    def register(self, skill: SkillDefinition) -> None:
        """
        Register a skill.

        Args:
            skill: Skill definition to register

        Raises:
            SkillDefinitionError: If the definition is invalid
        """
        validate_skill_definition(
            skill,
            settings=self.settings or get_settings(),
            tool_registry=self.tool_registry,
            compute_registry=self.compute_registry,
        )
        with self._lock:
            replaced = skill.id in self._skills
            self._skills[skill.id] = skill
        logger.info(
            "skill_registered",
            extra={"skill_id": skill.id, "version": skill.version, "replaced": replaced},
        )

    def load_dir(self, skills_dir: Path) -> list[str]:
        """
        Load and register every skill in a directory.

        Invalid definitions are logged and skipped.

        Returns:
            IDs of registered skills
        """
        registered = []
        for skill_id, skill in load_skills_from_dir(skills_dir).items():
            try:
                self.register(skill)
            except SkillDefinitionError as e:
                logger.error(
                    "skill_registration_failed",
                    extra={"skill_id": skill_id, "error": e.message},
                )
                continue
            registered.append(skill_id)
        return registered

    def get(self, skill_id: str) -> SkillDefinition | None:
        """
        Get a skill by ID.

        Args:
            skill_id: Skill ID

        Returns:
            SkillDefinition or None if not found
        """
        with self._lock:
            return self._skills.get(skill_id)

    def __contains__(self, skill_id: object) -> bool:
        with self._lock:
            return skill_id in self._skills

    def list_skills(self) -> list[SkillDefinition]:
        """
        List all registered skills.

        Returns:
            Definitions sorted by ID
        """
        with self._lock:
            return [self._skills[k] for k in sorted(self._skills)]

