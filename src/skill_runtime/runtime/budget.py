"""Token budget governor, scoped to a single run."""
import json
import math
from typing import Any

from pydantic import BaseModel, Field

from skill_runtime.config import Settings
from skill_runtime.observability import get_logger
from skill_runtime.runtime.contracts import StepKind

logger = get_logger(__name__)


def serialize(value: Any) -> str:
    """Serialize a structured value the way it is sent to a model."""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str, ensure_ascii=False, separators=(",", ":"))


def estimate_tokens(value: Any, chars_per_token: int = 4) -> int:
    """
    Estimate tokens from serialized size.

    Args:
        value: String or JSON-serializable value
        chars_per_token: Serialized bytes per token

    Returns:
        Estimated token count (rounded up)
    """
    return math.ceil(len(serialize(value).encode("utf-8")) / chars_per_token)


def payload_recommendations(payload: str) -> list[str]:
    """Suggest how to shrink an oversized model payload."""
    recommendations = []
    if "source_data" in payload:
        recommendations.append(
            "source_data detected in input. Strip raw CRM JSON and send only computed summaries."
        )
    if "transcript" in payload:
        recommendations.append(
            "Transcript detected in input. Pre-summarize in a compute step before the model call."
        )
    if payload.count("{") > 50:
        recommendations.append(
            "Heavy JSON structure in input. Aggregate to flat summaries in a compute step."
        )
    return recommendations


class BudgetDecision(BaseModel):
    """Outcome of a pre-step budget check."""

    allowed: bool = Field(..., description="Whether the step may execute")
    step_id: str = Field(..., description="Step checked")
    estimated_tokens: int = Field(..., description="Estimated input tokens")
    ceiling: int = Field(..., description="Hard ceiling applied")
    warn: bool = Field(default=False, description="Whether the warn threshold was crossed")
    largest_input: str | None = Field(default=None, description="Largest contributing input key")
    largest_input_tokens: int = Field(default=0)
    recommendations: list[str] = Field(default_factory=list)
    reason: str | None = Field(default=None, description="Rejection or warning message")


class TokenBudgetGovernor:
    """
    Tracks estimated token cost per step and per run.

    Ceilings:
    - per-step warn threshold: logged, never blocks
    - per-step hard ceiling: step rejected before execution
    - run soft target: logged once and flags the run over budget
    - run hard ceiling (optional): fails the run once exceeded

    One instance per run; nothing is shared between runs.
    """

    def __init__(
        self,
        warn_tokens: int = 8000,
        hard_ceiling_tokens: int = 20000,
        run_soft_target_tokens: int = 12000,
        run_hard_ceiling_tokens: int | None = None,
        chars_per_token: int = 4,
        log_extra: dict[str, Any] | None = None,
    ):
        self.warn_tokens = warn_tokens
        self.hard_ceiling_tokens = hard_ceiling_tokens
        self.run_soft_target_tokens = run_soft_target_tokens
        self.run_hard_ceiling_tokens = run_hard_ceiling_tokens
        self.chars_per_token = chars_per_token
        self._extra = log_extra or {}
        self._input_tokens = 0
        self._output_tokens = 0
        self._over_budget = False

    @classmethod
    def from_settings(cls, settings: Settings, **log_extra: Any) -> "TokenBudgetGovernor":
        """Build a governor from settings."""
        return cls(
            warn_tokens=settings.step_input_warn_tokens,
            hard_ceiling_tokens=settings.step_input_hard_ceiling_tokens,
            run_soft_target_tokens=settings.run_soft_target_tokens,
            run_hard_ceiling_tokens=settings.run_hard_ceiling_tokens,
            chars_per_token=settings.chars_per_token,
            log_extra=log_extra,
        )

    def estimate(self, value: Any) -> int:
        """Estimate tokens with this governor's ratio."""
        return estimate_tokens(value, self.chars_per_token)

    def check_before_step(
        self,
        step_id: str,
        step_kind: StepKind,
        estimated_input_tokens: int,
        breakdown: dict[str, int] | None = None,
        payload: str | None = None,
    ) -> BudgetDecision:
        """
        Approve or reject a step before it executes.

        Args:
            step_id: Step being checked
            step_kind: Step tier; compute steps feed no model and are always allowed
            estimated_input_tokens: Estimated model input size
            breakdown: Estimated tokens per input key
            payload: Rendered input, scanned for remediation hints

        Returns:
            BudgetDecision
        """
        largest_input, largest_tokens = None, 0
        if breakdown:
            largest_input, largest_tokens = max(breakdown.items(), key=lambda kv: kv[1])

        decision = BudgetDecision(
            allowed=True,
            step_id=step_id,
            estimated_tokens=estimated_input_tokens,
            ceiling=self.hard_ceiling_tokens,
            largest_input=largest_input,
            largest_input_tokens=largest_tokens,
        )
        if step_kind == StepKind.COMPUTE:
            return decision

        extra = {
            **self._extra,
            "step_id": step_id,
            "step_kind": step_kind.value,
            "estimated_tokens": estimated_input_tokens,
            "largest_input": largest_input,
        }

        if estimated_input_tokens > self.hard_ceiling_tokens:
            decision.allowed = False
            decision.recommendations = payload_recommendations(payload or "")
            source = f" (largest input: '{largest_input}', ~{largest_tokens} tokens)" if largest_input else ""
            decision.reason = (
                f"{step_kind.value} step '{step_id}' input is ~{estimated_input_tokens} tokens, "
                f"over the {self.hard_ceiling_tokens} token ceiling{source}. "
                "Add compute aggregation to reduce data volume."
            )
            logger.error("token_ceiling_exceeded", extra=extra)
        elif estimated_input_tokens > self.warn_tokens:
            decision.warn = True
            decision.reason = (
                f"{step_kind.value} step '{step_id}' input is ~{estimated_input_tokens} tokens "
                f"(target < {self.warn_tokens}). Consider more compute aggregation."
            )
            logger.warning("token_warn_threshold_exceeded", extra=extra)

        return decision

    def record_after_step(
        self,
        step_kind: StepKind,
        input_tokens: int,
        output_tokens: int = 0,
    ) -> None:
        """
        Add a finished step's usage to the run total.

        Args:
            step_kind: Step tier
            input_tokens: Tokens sent
            output_tokens: Tokens received
        """
        if step_kind == StepKind.COMPUTE:
            return
        self._input_tokens += input_tokens
        self._output_tokens += output_tokens

        if not self._over_budget and self.total_tokens > self.run_soft_target_tokens:
            self._over_budget = True
            logger.warning(
                "run_soft_target_exceeded",
                extra={
                    **self._extra,
                    "total_tokens": self.total_tokens,
                    "soft_target": self.run_soft_target_tokens,
                },
            )

    @property
    def total_tokens(self) -> int:
        """Model tokens used by the run so far."""
        return self._input_tokens + self._output_tokens

    @property
    def over_budget(self) -> bool:
        """Whether the run passed its soft target."""
        return self._over_budget

    @property
    def hard_ceiling_exceeded(self) -> bool:
        """Whether the run passed its optional hard ceiling."""
        return (
            self.run_hard_ceiling_tokens is not None
            and self.total_tokens > self.run_hard_ceiling_tokens
        )
