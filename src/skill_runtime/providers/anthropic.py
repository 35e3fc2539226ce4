"""Reasoning provider backed by the Anthropic Messages API."""
from typing import Any

import httpx

from skill_runtime.config import Settings, get_settings
from skill_runtime.observability import get_logger
from skill_runtime.providers.base import (
    LLMUsage,
    ReasoningProvider,
    ReasoningResponse,
    ToolCallRequest,
    ToolExchange,
    format_exchange_transcript,
)
from skill_runtime.runtime.budget import serialize
from skill_runtime.runtime.contracts import ToolSpec
from skill_runtime.runtime.errors import ProviderError

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a revenue operations analyst. Base every statement on the data "
    "provided or returned by tools. Be specific: name deals, owners and amounts. "
    "If the data is insufficient to answer, say so."
)


class AnthropicReasoningProvider(ReasoningProvider):
    """
    Calls ``/v1/messages`` with tool definitions.

    One HTTP attempt per call; the step executor owns retries.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        temperature: float = 0.7,
        transport: httpx.BaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.model = model or self.settings.anthropic_default_model
        self.system_prompt = system_prompt
        self.temperature = temperature
        self._transport = transport

    def reason(
        self,
        context: str,
        available_tools: list[ToolSpec],
        exchanges: list[ToolExchange],
        instruction: str | None = None,
        max_tokens: int | None = None,
    ) -> ReasoningResponse:
        """Run one reasoning turn."""
        request_body = {
            "model": self.model,
            "max_tokens": min(max_tokens or self.settings.llm_max_tokens_cap,
                              self.settings.llm_max_tokens_cap),
            "system": self.system_prompt,
            "temperature": self.temperature,
            "messages": self._build_messages(context, available_tools, exchanges, instruction),
        }
        if available_tools:
            request_body["tools"] = [
                {
                    "name": spec.name,
                    "description": spec.description,
                    "input_schema": spec.parameters,
                }
                for spec in available_tools
            ]

        response_data = self._post(request_body)
        return self._parse_response(response_data)

    def _build_messages(
        self,
        context: str,
        available_tools: list[ToolSpec],
        exchanges: list[ToolExchange],
        instruction: str | None,
    ) -> list[dict[str, Any]]:
        if not available_tools:
            # Tool blocks require tool definitions; replay them as text instead.
            content = context
            if exchanges:
                content += "\n\n" + format_exchange_transcript(exchanges)
            if instruction:
                content += "\n\n" + instruction
            return [{"role": "user", "content": content}]

        messages: list[dict[str, Any]] = [{"role": "user", "content": context}]
        for exchange in exchanges:
            messages.append(
                {
                    "role": "assistant",
                    "content": [
                        {
                            "type": "tool_use",
                            "id": exchange.call.id,
                            "name": exchange.call.name,
                            "input": exchange.call.params,
                        }
                    ],
                }
            )
            block: dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": exchange.call.id,
                "content": exchange.error if exchange.error else serialize(exchange.result),
            }
            if exchange.error:
                block["is_error"] = True
            messages.append({"role": "user", "content": [block]})
        if instruction:
            messages.append({"role": "user", "content": instruction})
        return messages

    def _post(self, request_body: dict[str, Any]) -> dict[str, Any]:
        if self.settings.anthropic_api_key is None:
            raise ProviderError("Anthropic API key is not configured", provider="anthropic")

        headers = {
            "x-api-key": self.settings.anthropic_api_key.get_secret_value(),
            "anthropic-version": self.settings.anthropic_version,
            "content-type": "application/json",
        }
        timeout = httpx.Timeout(
            connect=5.0,
            read=self.settings.llm_request_timeout_s,
            write=5.0,
            pool=5.0,
        )
        url = f"{self.settings.anthropic_base_url}/v1/messages"

        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                response = client.post(url, json=request_body, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"Anthropic returned {e.response.status_code}",
                provider="anthropic",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise ProviderError(f"Anthropic request timeout: {e}", provider="anthropic") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Anthropic HTTP error: {e}", provider="anthropic") from e

    def _parse_response(self, response_data: dict[str, Any]) -> ReasoningResponse:
        text_parts = []
        tool_calls = []
        for block in response_data.get("content", []):
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCallRequest(
                        id=block.get("id", ""),
                        name=block.get("name", ""),
                        params=block.get("input") or {},
                    )
                )

        usage_data = response_data.get("usage", {})
        usage = LLMUsage(
            input_tokens=usage_data.get("input_tokens"),
            output_tokens=usage_data.get("output_tokens"),
            model=response_data.get("model", self.model),
        )
        logger.info(
            "reasoning_call_completed",
            extra={
                "model": usage.model,
                "stop_reason": response_data.get("stop_reason"),
                "tool_calls": len(tool_calls),
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
            },
        )
        return ReasoningResponse(
            answer="".join(text_parts) or None,
            tool_calls=tool_calls,
            usage=usage,
        )
