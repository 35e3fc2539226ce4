"""Runtime error taxonomy.

Every error carries an ``error_type`` tag, a ``recoverable`` flag and a
``details`` dict. The step executor converts them into ``StepErrorDetail``
records; only definition errors raised during validation escape to callers.
"""
from typing import Any


class SkillRuntimeError(Exception):
    """Base exception for skill runtime errors."""

    error_type = "runtime_error"
    recoverable = True

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


# Definition errors: detected before any step runs, never retried.


class SkillDefinitionError(SkillRuntimeError):
    """Raised when a skill definition violates a registration rule."""

    error_type = "definition_error"
    recoverable = False

    def __init__(self, message: str, skill_id: str | None = None, **details: Any):
        super().__init__(message, skill_id=skill_id, **details)
        self.skill_id = skill_id


class StepOrderError(SkillDefinitionError):
    """Raised when a step references its own or a later step's output."""

    error_type = "step_order_error"


class SkillLoadError(SkillDefinitionError):
    """Raised when a skill definition file cannot be loaded."""

    error_type = "skill_load_error"


class MissingInputError(SkillDefinitionError):
    """Raised when a declared input key resolves to nothing."""

    error_type = "missing_input"


class UnknownComputeFunctionError(SkillDefinitionError):
    """Raised when a compute step names an unregistered function."""

    error_type = "unknown_compute_function"


# Resource-governance errors: fatal to the step.


class TokenCeilingExceededError(SkillRuntimeError):
    """Raised when a step's estimated input exceeds the hard token ceiling."""

    error_type = "token_ceiling_exceeded"


class OutputSizeExceededError(SkillRuntimeError):
    """Raised when a compute output carries an oversized array."""

    error_type = "output_size_exceeded"


class FanOutError(SkillRuntimeError):
    """Raised when a raw compute array is passed straight into a reason step."""

    error_type = "raw_fan_out"


# Collaborator errors: recoverable by default.


class ProviderError(SkillRuntimeError):
    """Raised when a classification or reasoning provider call fails."""

    error_type = "provider_error"


class ToolError(SkillRuntimeError):
    """Raised when a tool call fails, times out or gets invalid parameters."""

    error_type = "tool_error"


class StepTimeoutError(SkillRuntimeError):
    """Raised when a step exceeds its timeout."""

    error_type = "step_timeout"


# Security errors: fatal to the step, logged on the security logger.


class UnknownToolError(SkillRuntimeError):
    """Raised when a reasoning step requests a tool that is not registered."""

    error_type = "unknown_tool"
    recoverable = False


class TenantIsolationError(SkillRuntimeError):
    """Raised when tool parameters try to address another tenant."""

    error_type = "tenant_isolation_violation"
    recoverable = False


class RunStateError(SkillRuntimeError):
    """Raised when a run record is mutated after reaching a terminal state."""

    error_type = "run_state_error"
    recoverable = False


# Service lookups.


class SkillNotFoundError(SkillRuntimeError):
    """Raised when a run is requested for an unregistered skill."""

    error_type = "skill_not_found"
    recoverable = False


class RunNotFoundError(SkillRuntimeError):
    """Raised when a run ID is unknown."""

    error_type = "run_not_found"
    recoverable = False
