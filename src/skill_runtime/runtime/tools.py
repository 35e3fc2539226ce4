"""Tool base class and registry."""
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict

from skill_runtime.observability import get_logger
from skill_runtime.runtime.contracts import ToolSpec

logger = get_logger(__name__)


class ToolParams(BaseModel):
    """Base model for tool parameters. Unknown parameters are rejected."""

    model_config = ConfigDict(extra="forbid")


class Tool(ABC):
    """
    Base class for tools a reasoning step may call.

    Tools never receive the tenant as a parameter: the dispatcher passes it
    separately from the model-supplied ``params``.
    """

    name: str
    description: str

    @abstractmethod
    def params_model(self) -> type[ToolParams]:
        """
        Return Pydantic model for parameter validation.

        Returns:
            ToolParams subclass
        """
        pass

    @abstractmethod
    def execute(self, params: ToolParams, tenant_id: str) -> Any:
        """
        Run the tool for one tenant.

        Args:
            params: Validated parameters
            tenant_id: Tenant the calling run is scoped to

        Returns:
            JSON-serializable result
        """
        pass

    def spec(self) -> ToolSpec:
        """Describe the tool for a model."""
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters=self.params_model().model_json_schema(),
        )


class ToolRegistryFrozenError(RuntimeError):
    """Raised when registering a tool after the registry was frozen."""

    pass


class ToolRegistry:
    """Catalog of tools. Populated at startup, read-only once frozen."""

    def __init__(self):
        """Initialize tool registry."""
        self._tools: dict[str, Tool] = {}
        self._frozen = False

    def register(self, tool: Tool) -> None:
        """
        Register a tool.

        Args:
            tool: Tool instance to register

        Raises:
            ToolRegistryFrozenError: If the registry is frozen
            ValueError: If a tool with the same name is registered
        """
        if self._frozen:
            raise ToolRegistryFrozenError(f"Tool registry is frozen; cannot add {tool.name}")
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        logger.info("tool_registered", extra={"tool_name": tool.name})

    def freeze(self) -> None:
        """Make the registry read-only."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        """Whether the registry is read-only."""
        return self._frozen

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def specs(self, names: list[str]) -> list[ToolSpec]:
        """
        Specs for the named tools, skipping unknown names.

        Args:
            names: Tool names

        Returns:
            Tool specs in the given order
        """
        return [self._tools[n].spec() for n in names if n in self._tools]

    def list_tools(self) -> list[str]:
        """
        List all registered tools.

        Returns:
            Sorted tool names
        """
        return sorted(self._tools)


# Global registry instance
_tool_registry: ToolRegistry | None = None


def get_tool_registry() -> ToolRegistry:
    """Get or create the global tool registry."""
    global _tool_registry
    if _tool_registry is None:
        _tool_registry = ToolRegistry()
    return _tool_registry


def reset_tool_registry() -> None:
    """Reset the global tool registry (useful for testing)."""
    global _tool_registry
    _tool_registry = None
