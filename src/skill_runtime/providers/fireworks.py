"""Classification provider backed by the Fireworks OpenAI-compatible API."""
import json
from typing import Any

import httpx

from skill_runtime.config import Settings, get_settings
from skill_runtime.observability import get_logger
from skill_runtime.providers.base import ClassificationProvider, ClassificationResult, LLMUsage
from skill_runtime.runtime.budget import serialize
from skill_runtime.runtime.errors import ProviderError

logger = get_logger(__name__)

CLASSIFY_SYSTEM_PROMPT = (
    "You classify records for a revenue operations team. Return only JSON: "
    "an array with exactly one classification per input item, in input order."
)


def parse_json_content(content: str) -> Any:
    """Parse model output, tolerating a fenced code block around the JSON."""
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return json.loads(text)


def unwrap_classifications(parsed: Any, schema: dict[str, Any] | None) -> list[Any]:
    """
    Coerce a parsed model response into a list of classifications.

    JSON mode forces an object at the top level, so models wrap the array
    under an arbitrary key. The array whose first element carries the most
    required schema fields wins; failing that, the longest array. An object
    that itself matches at least half of the required fields is treated as
    a single classification.

    Args:
        parsed: Decoded JSON
        schema: JSON schema of one classification

    Returns:
        List of classifications

    Raises:
        ProviderError: If no array can be recovered
    """
    if isinstance(parsed, list):
        return parsed
    if not isinstance(parsed, dict):
        raise ProviderError(
            f"Classifier returned {type(parsed).__name__}, expected an array",
            provider="fireworks",
        )

    required = list((schema or {}).get("required") or [])
    arrays = [(k, v) for k, v in parsed.items() if isinstance(v, list) and v]

    best_key, best_score = None, -1
    if required:
        for key, values in arrays:
            sample = values[0]
            if isinstance(sample, dict):
                score = sum(1 for f in required if f in sample)
                if score > best_score:
                    best_key, best_score = key, score
    if best_key is None and arrays:
        best_key = max(arrays, key=lambda kv: len(kv[1]))[0]

    if best_key is not None:
        logger.info("classification_unwrapped", extra={"unwrap_key": best_key})
        return parsed[best_key]

    if required and sum(1 for f in required if f in parsed) >= (len(required) + 1) // 2:
        return [parsed]

    raise ProviderError(
        f"Classifier returned an object without an array (keys: {', '.join(list(parsed)[:5])})",
        provider="fireworks",
    )


class FireworksClassificationProvider(ClassificationProvider):
    """Calls ``/chat/completions`` in JSON mode at low temperature."""

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
        temperature: float = 0.1,
        transport: httpx.BaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.model = model or self.settings.fireworks_default_model
        self.temperature = temperature
        self._transport = transport

    def classify(
        self,
        items: list[Any],
        schema: dict[str, Any] | None,
        instructions: str | None = None,
    ) -> ClassificationResult:
        """Classify a bounded list of items."""
        system = CLASSIFY_SYSTEM_PROMPT
        if schema:
            system += f"\n\nEach classification must match this JSON schema:\n{serialize(schema)}"

        user = serialize(items)
        if instructions:
            user = f"{instructions}\n\nItems:\n{user}"

        request_body = {
            "model": self.model,
            "max_tokens": self.settings.llm_max_tokens_cap,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }

        response_data = self._post(request_body)

        choices = response_data.get("choices") or []
        if not choices:
            raise ProviderError("Classifier returned no choices", provider="fireworks")
        content = (choices[0].get("message") or {}).get("content") or ""
        try:
            parsed = parse_json_content(content)
        except json.JSONDecodeError as e:
            raise ProviderError(
                f"Classifier returned invalid JSON: {e}",
                provider="fireworks",
                content_chars=len(content),
            ) from e

        usage_data = response_data.get("usage", {})
        return ClassificationResult(
            classifications=unwrap_classifications(parsed, schema),
            usage=LLMUsage(
                input_tokens=usage_data.get("prompt_tokens"),
                output_tokens=usage_data.get("completion_tokens"),
                model=response_data.get("model", self.model),
            ),
        )

    def _post(self, request_body: dict[str, Any]) -> dict[str, Any]:
        if self.settings.fireworks_api_key is None:
            raise ProviderError("Fireworks API key is not configured", provider="fireworks")

        headers = {
            "Authorization": f"Bearer {self.settings.fireworks_api_key.get_secret_value()}",
            "content-type": "application/json",
        }
        timeout = httpx.Timeout(
            connect=5.0,
            read=self.settings.llm_request_timeout_s,
            write=5.0,
            pool=5.0,
        )
        url = f"{self.settings.fireworks_base_url}/chat/completions"

        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                response = client.post(url, json=request_body, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"Fireworks returned {e.response.status_code}",
                provider="fireworks",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise ProviderError(f"Fireworks request timeout: {e}", provider="fireworks") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Fireworks HTTP error: {e}", provider="fireworks") from e
