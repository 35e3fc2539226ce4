"""Registry of deterministic compute functions."""
from typing import Any, Callable

from skill_runtime.observability import get_logger
from skill_runtime.runtime.contracts import ExecutionContext

logger = get_logger(__name__)

# fn(inputs, args, context) -> output
ComputeFunction = Callable[[dict[str, Any], dict[str, Any], ExecutionContext], Any]


class ComputeRegistry:
    """Maps compute function names to pure aggregation functions."""

    def __init__(self):
        """Initialize compute registry."""
        self._functions: dict[str, ComputeFunction] = {}

    def register(self, name: str, fn: ComputeFunction) -> None:
        """
        Register a compute function.

        Args:
            name: Name compute steps refer to
            fn: Function taking (inputs, args, context)
        """
        self._functions[name] = fn
        logger.info("compute_function_registered", extra={"function": name})

    def function(self, name: str) -> Callable[[ComputeFunction], ComputeFunction]:
        """Decorator form of ``register``."""

        def decorator(fn: ComputeFunction) -> ComputeFunction:
            self.register(name, fn)
            return fn

        return decorator

    def get(self, name: str) -> ComputeFunction | None:
        """Get a compute function by name."""
        return self._functions.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def list_functions(self) -> list[str]:
        """List registered function names."""
        return sorted(self._functions)


_compute_registry: ComputeRegistry | None = None


def get_compute_registry() -> ComputeRegistry:
    """Get or create the global compute registry."""
    global _compute_registry
    if _compute_registry is None:
        _compute_registry = ComputeRegistry()
    return _compute_registry


def reset_compute_registry() -> None:
    """Reset the global compute registry (useful for testing)."""
    global _compute_registry
    _compute_registry = None
