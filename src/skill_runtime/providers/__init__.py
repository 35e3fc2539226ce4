"""Classification and reasoning providers."""
from skill_runtime.providers.anthropic import AnthropicReasoningProvider
from skill_runtime.providers.base import (
    ClassificationProvider,
    ClassificationResult,
    LLMUsage,
    ReasoningProvider,
    ReasoningResponse,
    ToolCallRequest,
    ToolExchange,
)
from skill_runtime.providers.fireworks import FireworksClassificationProvider

__all__ = [
    "AnthropicReasoningProvider",
    "ClassificationProvider",
    "ClassificationResult",
    "FireworksClassificationProvider",
    "LLMUsage",
    "ReasoningProvider",
    "ReasoningResponse",
    "ToolCallRequest",
    "ToolExchange",
]
