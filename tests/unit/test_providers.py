"""Tests for the Anthropic and Fireworks providers."""
import json

import httpx
import pytest

from skill_runtime.config import Settings
from skill_runtime.providers.anthropic import AnthropicReasoningProvider
from skill_runtime.providers.base import ToolCallRequest, ToolExchange
from skill_runtime.providers.fireworks import (
    FireworksClassificationProvider,
    parse_json_content,
    unwrap_classifications,
)
from skill_runtime.runtime.contracts import ToolSpec
from skill_runtime.runtime.errors import ProviderError

LOOKUP_SPEC = ToolSpec(
    name="lookup_deal",
    description="Look up one deal by ID",
    parameters={"type": "object", "properties": {"deal_id": {"type": "string"}}},
)


def recording_transport(payload, status_code=200):
    """MockTransport returning ``payload`` and keeping every request."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler), requests


class TestAnthropicReasoningProvider:
    """Test the reasoning provider."""

    def test_text_answer(self, sample_anthropic_response):
        transport, requests = recording_transport(sample_anthropic_response)
        provider = AnthropicReasoningProvider(transport=transport)

        response = provider.reason("Digest please", [LOOKUP_SPEC], [])

        assert response.answer == "Three deals need attention this week."
        assert response.tool_calls == []
        assert response.usage.input_tokens == 15
        assert response.usage.output_tokens == 25

        request = requests[0]
        assert str(request.url) == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "test-key"
        assert request.headers["anthropic-version"] == "2023-06-01"
        body = json.loads(request.content)
        assert body["tools"][0]["name"] == "lookup_deal"
        assert "input_schema" in body["tools"][0]
        assert body["messages"] == [{"role": "user", "content": "Digest please"}]

    def test_tool_use_parsed(self):
        transport, _ = recording_transport(
            {
                "content": [
                    {"type": "text", "text": "Checking."},
                    {
                        "type": "tool_use",
                        "id": "toolu_1",
                        "name": "lookup_deal",
                        "input": {"deal_id": "deal-001"},
                    },
                ],
                "model": "claude-sonnet-4-5",
                "stop_reason": "tool_use",
                "usage": {"input_tokens": 40, "output_tokens": 12},
            }
        )
        provider = AnthropicReasoningProvider(transport=transport)

        response = provider.reason("Digest please", [LOOKUP_SPEC], [])

        assert response.tool_calls == [
            ToolCallRequest(id="toolu_1", name="lookup_deal", params={"deal_id": "deal-001"})
        ]

    def test_exchanges_become_tool_blocks(self, sample_anthropic_response):
        transport, requests = recording_transport(sample_anthropic_response)
        provider = AnthropicReasoningProvider(transport=transport)
        exchanges = [
            ToolExchange(
                call=ToolCallRequest(id="toolu_1", name="lookup_deal", params={"deal_id": "d1"}),
                result={"stage": "negotiation"},
            ),
            ToolExchange(
                call=ToolCallRequest(id="toolu_2", name="lookup_deal", params={"deal_id": "d2"}),
                error="Tool lookup_deal timed out after 30.0s",
            ),
        ]

        provider.reason("Digest please", [LOOKUP_SPEC], exchanges)

        messages = json.loads(requests[0].content)["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "user", "assistant", "user"]
        assert messages[1]["content"][0]["type"] == "tool_use"
        assert messages[2]["content"][0]["content"] == '{"stage":"negotiation"}'
        assert messages[4]["content"][0]["is_error"] is True

    def test_final_call_without_tools(self, sample_anthropic_response):
        transport, requests = recording_transport(sample_anthropic_response)
        provider = AnthropicReasoningProvider(transport=transport)
        exchanges = [
            ToolExchange(
                call=ToolCallRequest(id="toolu_1", name="lookup_deal", params={"deal_id": "d1"}),
                result={"stage": "negotiation"},
            )
        ]

        provider.reason("Digest please", [], exchanges, instruction="Answer now.")

        body = json.loads(requests[0].content)
        assert "tools" not in body
        content = body["messages"][0]["content"]
        assert "Tool calls made so far:" in content
        assert content.endswith("Answer now.")

    def test_max_tokens_capped(self, sample_anthropic_response):
        transport, requests = recording_transport(sample_anthropic_response)
        provider = AnthropicReasoningProvider(transport=transport)

        provider.reason("Digest please", [], [], max_tokens=100000)

        assert json.loads(requests[0].content)["max_tokens"] == 4096

    def test_http_error(self):
        transport, _ = recording_transport({"error": "overloaded"}, status_code=529)
        provider = AnthropicReasoningProvider(transport=transport)

        with pytest.raises(ProviderError) as exc_info:
            provider.reason("Digest please", [], [])

        assert exc_info.value.details["status_code"] == 529
        assert exc_info.value.recoverable

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("SKILL_RUNTIME_ANTHROPIC_API_KEY", raising=False)
        provider = AnthropicReasoningProvider(settings=Settings())

        with pytest.raises(ProviderError, match="not configured"):
            provider.reason("Digest please", [], [])


def chat_completion(content, prompt_tokens=50, completion_tokens=20):
    return {
        "model": "accounts/fireworks/models/deepseek-v3p1",
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


RISK_SCHEMA = {
    "type": "object",
    "properties": {"id": {"type": "string"}, "risk": {"type": "string"}},
    "required": ["id", "risk"],
}


class TestFireworksClassificationProvider:
    """Test the classification provider."""

    def test_classify(self):
        content = json.dumps({"results": [{"id": "d1", "risk": "high"}, {"id": "d2", "risk": "low"}]})
        transport, requests = recording_transport(chat_completion(content))
        provider = FireworksClassificationProvider(transport=transport)

        result = provider.classify([{"id": "d1"}, {"id": "d2"}], RISK_SCHEMA, "Rate deal risk")

        assert [c["risk"] for c in result.classifications] == ["high", "low"]
        assert result.usage.input_tokens == 50
        assert result.usage.output_tokens == 20

        request = requests[0]
        assert str(request.url) == "https://api.fireworks.ai/inference/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        assert body["response_format"] == {"type": "json_object"}
        assert body["messages"][1]["content"].startswith("Rate deal risk")

    def test_invalid_json(self):
        transport, _ = recording_transport(chat_completion("not json"))
        provider = FireworksClassificationProvider(transport=transport)

        with pytest.raises(ProviderError, match="invalid JSON"):
            provider.classify([{"id": "d1"}], RISK_SCHEMA)

    def test_no_choices(self):
        transport, _ = recording_transport({"choices": []})
        provider = FireworksClassificationProvider(transport=transport)

        with pytest.raises(ProviderError, match="no choices"):
            provider.classify([{"id": "d1"}], RISK_SCHEMA)


class TestUnwrapClassifications:
    """Test recovering arrays from JSON-mode objects."""

    def test_fenced_content(self):
        assert parse_json_content('```json\n[{"id": "d1"}]\n```') == [{"id": "d1"}]

    def test_plain_array(self):
        assert unwrap_classifications([{"id": "d1"}], RISK_SCHEMA) == [{"id": "d1"}]

    def test_prefers_schema_match(self):
        parsed = {
            "notes": [{"text": "a"}, {"text": "b"}, {"text": "c"}],
            "items": [{"id": "d1", "risk": "high"}],
        }

        assert unwrap_classifications(parsed, RISK_SCHEMA) == [{"id": "d1", "risk": "high"}]

    def test_longest_array_without_schema(self):
        parsed = {"a": [1], "b": [1, 2, 3]}

        assert unwrap_classifications(parsed, None) == [1, 2, 3]

    def test_single_object(self):
        parsed = {"id": "d1", "risk": "high"}

        assert unwrap_classifications(parsed, RISK_SCHEMA) == [parsed]

    def test_unrecoverable(self):
        with pytest.raises(ProviderError):
            unwrap_classifications({"message": "sorry"}, RISK_SCHEMA)
