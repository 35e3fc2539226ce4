"""Collaborator interfaces for the classification and reasoning tiers."""
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from skill_runtime.runtime.budget import serialize
from skill_runtime.runtime.contracts import ToolSpec


class LLMUsage(BaseModel):
    """Token usage reported by a provider."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    model: str | None = None


class ToolCallRequest(BaseModel):
    """A tool call requested by a reasoning model."""

    id: str = Field(..., description="Provider-assigned call ID")
    name: str = Field(..., description="Requested tool name")
    params: dict[str, Any] = Field(default_factory=dict, description="Model-supplied parameters")


class ToolExchange(BaseModel):
    """A requested tool call and what was fed back for it."""

    call: ToolCallRequest
    result: Any = None
    error: str | None = None


class ReasoningResponse(BaseModel):
    """One reasoning turn: a final answer, tool call requests, or both."""

    answer: str | None = Field(default=None, description="Text answer")
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)
    usage: LLMUsage = Field(default_factory=LLMUsage)


class ClassificationResult(BaseModel):
    """Classifier output, one entry per item."""

    classifications: list[Any] = Field(default_factory=list)
    usage: LLMUsage = Field(default_factory=LLMUsage)


class ClassificationProvider(ABC):
    """Cheap bulk classifier."""

    @abstractmethod
    def classify(
        self,
        items: list[Any],
        schema: dict[str, Any] | None,
        instructions: str | None = None,
    ) -> ClassificationResult:
        """
        Classify a bounded list of items.

        Args:
            items: Items to classify (never more than the step's ceiling)
            schema: JSON schema of one classification
            instructions: Rendered step prompt

        Returns:
            ClassificationResult

        Raises:
            ProviderError: If the call fails
        """
        pass


class ReasoningProvider(ABC):
    """Expensive reasoning model with tool access."""

    @abstractmethod
    def reason(
        self,
        context: str,
        available_tools: list[ToolSpec],
        exchanges: list[ToolExchange],
        instruction: str | None = None,
        max_tokens: int | None = None,
    ) -> ReasoningResponse:
        """
        Run one reasoning turn.

        Args:
            context: Rendered step context
            available_tools: Tools the model may request (empty: answer only)
            exchanges: Tool calls made so far in this step, with results
            instruction: Extra instruction appended to the conversation
            max_tokens: Response token limit

        Returns:
            ReasoningResponse

        Raises:
            ProviderError: If the call fails
        """
        pass


def format_exchange_transcript(exchanges: list[ToolExchange]) -> str:
    """Render tool exchanges as plain text for a tool-less model call."""
    lines = ["Tool calls made so far:"]
    for exchange in exchanges:
        outcome = f"ERROR: {exchange.error}" if exchange.error else serialize(exchange.result)
        lines.append(f"- {exchange.call.name}({serialize(exchange.call.params)}) -> {outcome}")
    return "\n".join(lines)
