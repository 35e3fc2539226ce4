"""Runtime package."""
from skill_runtime.runtime.budget import BudgetDecision, estimate_tokens, TokenBudgetGovernor
from skill_runtime.runtime.compute import ComputeRegistry, get_compute_registry
from skill_runtime.runtime.contracts import (
    ExecutionContext,
    OutputFormat,
    RetryPolicy,
    RunRecord,
    RunStatus,
    SkillDefinition,
    StepDefinition,
    StepKind,
    StepResult,
    StepStatus,
    TriggerType,
)
from skill_runtime.runtime.errors import (
    SkillDefinitionError,
    SkillRuntimeError,
    StepOrderError,
)
from skill_runtime.runtime.tools import get_tool_registry, Tool, ToolParams, ToolRegistry
from skill_runtime.runtime.validation import validate_skill_definition

__all__ = [
    "BudgetDecision",
    "ComputeRegistry",
    "estimate_tokens",
    "ExecutionContext",
    "get_compute_registry",
    "get_tool_registry",
    "OutputFormat",
    "RetryPolicy",
    "RunRecord",
    "RunStatus",
    "SkillDefinition",
    "SkillDefinitionError",
    "SkillRuntimeError",
    "StepDefinition",
    "StepKind",
    "StepOrderError",
    "StepResult",
    "StepStatus",
    "TokenBudgetGovernor",
    "Tool",
    "ToolParams",
    "ToolRegistry",
    "TriggerType",
    "validate_skill_definition",
]
