"""Runtime contracts and data models."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from skill_runtime.runtime.errors import RunStateError


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class StepKind(str, Enum):
    """Execution tier of a step."""

    COMPUTE = "compute"  # Deterministic aggregation, no external calls
    CLASSIFY = "classify"  # Cheap bulk classification
    REASON = "reason"  # Expensive reasoning with tool access


class StepStatus(str, Enum):
    """Terminal status of one step."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Run lifecycle status."""

    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether the run can no longer change."""
        return self is not RunStatus.RUNNING


class TriggerType(str, Enum):
    """What started a run."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EVENT = "event"


class OutputFormat(str, Enum):
    """Declared delivery format of a skill's final output."""

    SLACK = "slack"
    MARKDOWN = "markdown"
    JSON = "json"
    STRUCTURED = "structured"


class RetryPolicy(BaseModel):
    """Bounded exponential backoff for collaborator calls."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: int = Field(default=3, ge=1, le=10, description="Total attempts")
    base_delay_s: float = Field(default=0.5, ge=0, description="First backoff delay")
    backoff_factor: float = Field(default=2.0, ge=1, description="Delay multiplier")
    max_delay_s: float = Field(default=8.0, ge=0, description="Upper bound per delay")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.base_delay_s * self.backoff_factor ** (attempt - 1), self.max_delay_s)


class StepDefinition(BaseModel):
    """
    One entry in a skill's pipeline.

    Steps are tagged by ``kind``; kind-specific fields are ignored by the
    other tiers. Registration rules live in ``validation.py`` so that a
    hot-reloaded definition can be built first and rejected afterwards.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(..., min_length=1, max_length=64, description="Unique step ID")
    kind: StepKind = Field(..., description="Execution tier")
    name: str | None = Field(default=None, description="Human-readable step name")
    description: str | None = Field(default=None, description="What the step does")
    inputs: list[str] = Field(
        default_factory=list,
        description="Input keys: prior output keys or workspace context keys, dotted paths allowed",
    )
    output_key: str | None = Field(
        default=None,
        description="Key the output is stored under (defaults to id)",
    )
    critical: bool = Field(
        default=True,
        description="Whether a failure of this step fails the run",
    )
    timeout_s: float | None = Field(default=None, gt=0, description="Step timeout")
    retry: RetryPolicy | None = Field(
        default=None,
        description="Retry policy for provider calls (classify/reason)",
    )

    # compute
    function: str | None = Field(
        default=None,
        description="Compute function name (defaults to id)",
    )
    args: dict[str, Any] = Field(
        default_factory=dict,
        description="Static arguments for the compute function",
    )
    max_output_items: int | None = Field(
        default=None,
        ge=0,
        description="Declared bound on any array in the compute output",
    )

    # classify
    item_ceiling: int | None = Field(
        default=None,
        ge=1,
        description="Maximum items passed to the classifier",
    )
    output_schema: dict[str, Any] | None = Field(
        default=None,
        description="JSON schema of one classification",
    )

    # classify / reason
    prompt: str | None = Field(
        default=None,
        description="Prompt template with {{key}} placeholders",
    )

    # reason
    tools: list[str] | None = Field(
        default=None,
        description="Tool names the step may call",
    )
    max_tool_calls: int | None = Field(
        default=None,
        ge=0,
        description="Tool-call ceiling (defaults to settings)",
    )
    max_tokens: int | None = Field(
        default=None,
        ge=1,
        description="Maximum tokens for the model response",
    )

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Step ID must be a slug."""
        if not v.replace("-", "").replace("_", "").isalnum():
            raise ValueError(f"Invalid step id: {v}")
        return v

    @property
    def result_key(self) -> str:
        """Key under which the step output is published."""
        return self.output_key or self.id

    @property
    def compute_function(self) -> str:
        """Registered compute function this step calls."""
        return self.function or self.id

    def input_roots(self) -> list[str]:
        """First path segment of every declared input key."""
        return [key.split(".", 1)[0] for key in self.inputs]

    def __str__(self) -> str:
        """String representation."""
        return f"{self.kind.value}:{self.id}"


class SkillSchedule(BaseModel):
    """Default schedule; consumed by the external job scheduler."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    cron: str | None = Field(default=None, description="Cron expression")
    trigger: str | None = Field(
        default=None,
        description="Trigger: 'post_sync', 'on_demand', 'webhook'",
    )


class SkillDefinition(BaseModel):
    """Declarative analysis pipeline."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(..., min_length=1, description="Unique skill ID")
    name: str | None = Field(default=None, description="Display name")
    version: str = Field(default="1.0.0", description="Skill version (semver)")
    description: str | None = Field(default=None, description="What the skill does")
    steps: list[StepDefinition] = Field(
        default_factory=list,
        description="Ordered pipeline steps",
    )
    output_format: OutputFormat = Field(
        default=OutputFormat.STRUCTURED,
        description="Delivery format of the final output",
    )
    schedule: SkillSchedule | None = Field(default=None, description="Default schedule")
    time_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Analysis windows, overridable per run",
    )

    def tool_names(self) -> set[str]:
        """Every tool referenced by a reason step."""
        names: set[str] = set()
        for step in self.steps:
            names.update(step.tools or [])
        return names

    def __str__(self) -> str:
        """String representation."""
        return f"{self.id}@{self.version}"


class ExecutionContext(BaseModel):
    """Out-of-band identity of the running step, never shown to a model."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(..., description="Run ID")
    skill_id: str = Field(..., description="Skill ID")
    tenant_id: str = Field(..., description="Tenant the run is scoped to")
    step_id: str | None = Field(default=None, description="Current step ID")
    workspace: dict[str, Any] = Field(
        default_factory=dict,
        description="Workspace context (business context, time config, params)",
    )

    def for_step(self, step_id: str) -> "ExecutionContext":
        """Create a copy bound to one step."""
        return self.model_copy(update={"step_id": step_id})


class ToolSpec(BaseModel):
    """What a model sees of a tool."""

    name: str = Field(..., description="Tool name")
    description: str = Field(..., description="When to use the tool")
    parameters: dict[str, Any] = Field(..., description="JSON schema of the parameters")


class ToolInvocationSummary(BaseModel):
    """Persisted summary of one tool call."""

    tool_name: str
    ok: bool
    error: str | None = None
    error_type: str | None = None
    duration_ms: int = 0
    result_bytes: int = 0


class ToolInvocation(BaseModel):
    """One tool call made inside a reason step. Never persisted on its own."""

    tool_name: str
    params: dict[str, Any] = Field(default_factory=dict)
    tenant_id: str
    result: Any = None
    error: str | None = None
    error_type: str | None = None
    duration_ms: int = 0
    result_bytes: int = 0

    @property
    def ok(self) -> bool:
        """Whether the tool produced a result."""
        return self.error is None

    def summary(self) -> ToolInvocationSummary:
        """Summarize for the parent step result."""
        return ToolInvocationSummary(
            tool_name=self.tool_name,
            ok=self.ok,
            error=self.error,
            error_type=self.error_type,
            duration_ms=self.duration_ms,
            result_bytes=self.result_bytes,
        )


class StepErrorDetail(BaseModel):
    """Structured error surfaced verbatim to skill authors."""

    type: str = Field(..., description="Error type tag")
    message: str = Field(..., description="Error message")
    recoverable: bool = Field(..., description="Whether the run may continue")
    details: dict[str, Any] = Field(default_factory=dict)


class StepResult(BaseModel):
    """Outcome of one step in one run."""

    step_id: str
    kind: StepKind
    status: StepStatus
    output: Any = None
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    error: StepErrorDetail | None = None
    warnings: list[str] = Field(default_factory=list)
    tool_calls_requested: int = 0
    tool_calls_executed: int = 0
    tool_invocations: list[ToolInvocationSummary] = Field(default_factory=list)
    attempts: int = 0
    cost_usd_estimate: float = 0.0
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the step succeeded."""
        return self.status == StepStatus.SUCCEEDED


class TokenUsage(BaseModel):
    """
    Aggregate token usage of a run, split by tier.

    ``compute`` holds the estimated size of compute outputs; ``input``,
    ``output`` and ``total`` count model tokens only.
    """

    compute: int = 0
    classify: int = 0
    reason: int = 0
    input: int = 0
    output: int = 0
    total: int = 0

    def add(self, kind: StepKind, input_tokens: int, output_tokens: int) -> None:
        """Add one step's usage."""
        used = input_tokens + output_tokens
        setattr(self, kind.value, getattr(self, kind.value) + used)
        if kind == StepKind.COMPUTE:
            return
        self.input += input_tokens
        self.output += output_tokens
        self.total += used


class RunRecord(BaseModel):
    """
    One execution of a skill for a tenant.

    Created ``running`` at admission, mutated only by the orchestrator
    appending step results, terminal exactly once.
    """

    run_id: str
    skill_id: str
    skill_version: str = "1.0.0"
    tenant_id: str
    trigger_type: TriggerType = TriggerType.MANUAL
    params: dict[str, Any] = Field(default_factory=dict)
    status: RunStatus = RunStatus.RUNNING
    steps: dict[str, StepResult] = Field(default_factory=dict)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    cost_usd_estimate: float = 0.0
    over_budget: bool = False
    output: Any = None
    output_format: OutputFormat = OutputFormat.STRUCTURED
    error: str | None = None
    failed_step: str | None = None
    duration_ms: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    def append_step_result(self, result: StepResult) -> None:
        """
        Record a step result.

        Raises:
            RunStateError: If the run is already terminal
        """
        if self.status.is_terminal:
            raise RunStateError(
                f"Run {self.run_id} is {self.status.value}; cannot append {result.step_id}",
                run_id=self.run_id,
            )
        self.steps[result.step_id] = result
        self.token_usage.add(result.kind, result.input_tokens, result.output_tokens)
        self.cost_usd_estimate += result.cost_usd_estimate

    def finalize(
        self,
        status: RunStatus,
        output: Any = None,
        error: str | None = None,
        failed_step: str | None = None,
    ) -> None:
        """
        Move the run to a terminal state.

        Raises:
            RunStateError: If the status is not terminal or the run already is
        """
        if not status.is_terminal:
            raise RunStateError(f"{status.value} is not a terminal status", run_id=self.run_id)
        if self.status.is_terminal:
            raise RunStateError(
                f"Run {self.run_id} already finalized as {self.status.value}",
                run_id=self.run_id,
            )
        self.status = status
        self.output = output
        self.error = error
        self.failed_step = failed_step
        self.completed_at = utcnow()
        self.duration_ms = int((self.completed_at - self.started_at).total_seconds() * 1000)

    def failed_steps(self) -> list[StepResult]:
        """Get all failed steps."""
        return [s for s in self.steps.values() if s.status == StepStatus.FAILED]
