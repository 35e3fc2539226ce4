"""Pytest configuration and fixtures."""
import os

import pytest

# Set test environment variables
os.environ["SKILL_RUNTIME_ENV"] = "test"
os.environ["SKILL_RUNTIME_ANTHROPIC_API_KEY"] = "test-key"
os.environ["SKILL_RUNTIME_FIREWORKS_API_KEY"] = "test-key"
os.environ["SKILL_RUNTIME_REDIS_URL"] = "redis://localhost:6379/1"  # Test DB

from skill_runtime.config import reset_settings, Settings  # noqa: E402
from skill_runtime.providers.base import (  # noqa: E402
    ClassificationProvider,
    ClassificationResult,
    LLMUsage,
    ReasoningProvider,
    ReasoningResponse,
    ToolCallRequest,
)
from skill_runtime.runtime.compute import ComputeRegistry, reset_compute_registry  # noqa: E402
from skill_runtime.runtime.contracts import ExecutionContext  # noqa: E402
from skill_runtime.runtime.errors import ProviderError  # noqa: E402
from skill_runtime.runtime.orchestrator import RunOrchestrator  # noqa: E402
from skill_runtime.runtime.recorder import RunRecorder  # noqa: E402
from skill_runtime.runtime.tools import (  # noqa: E402
    reset_tool_registry,
    Tool,
    ToolParams,
    ToolRegistry,
)
from skill_runtime.storage.run_store import InMemoryRunStore  # noqa: E402


class FakeClassifier(ClassificationProvider):
    """Labels every item; optionally fails the first N calls."""

    def __init__(self, label: str = "at_risk", fail_times: int = 0):
        self.label = label
        self.fail_times = fail_times
        self.calls: list[list] = []

    def classify(self, items, schema, instructions=None):
        self.calls.append(list(items))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ProviderError("classifier unavailable", provider="fake")
        return ClassificationResult(
            classifications=[
                {"id": item.get("id") if isinstance(item, dict) else i, "label": self.label}
                for i, item in enumerate(items)
            ],
            usage=LLMUsage(input_tokens=120, output_tokens=60, model="fake-classifier"),
        )


class ScriptedReasoner(ReasoningProvider):
    """Replays scripted responses; answers ``final_answer`` once the script ends."""

    def __init__(self, responses=None, final_answer: str = "Final analysis"):
        self.responses = list(responses or [])
        self.final_answer = final_answer
        self.calls: list[dict] = []

    def reason(self, context, available_tools, exchanges, instruction=None, max_tokens=None):
        self.calls.append(
            {
                "context": context,
                "tools": [spec.name for spec in available_tools],
                "exchanges": list(exchanges),
                "instruction": instruction,
            }
        )
        if instruction is None and self.responses:
            return self.responses.pop(0)
        return ReasoningResponse(
            answer=self.final_answer,
            usage=LLMUsage(input_tokens=300, output_tokens=90, model="fake-reasoner"),
        )


class DealLookupParams(ToolParams):
    """Parameters for the deal lookup tool."""

    deal_id: str


class DealLookupTool(Tool):
    """Returns one deal for the calling tenant."""

    name = "lookup_deal"
    description = "Look up one deal by ID"

    def __init__(self):
        self.calls: list[tuple[str, str]] = []

    def params_model(self):
        return DealLookupParams

    def execute(self, params, tenant_id):
        self.calls.append((params.deal_id, tenant_id))
        return {"deal_id": params.deal_id, "tenant_id": tenant_id, "stage": "negotiation"}


def tool_call(name: str = "lookup_deal", call_id: str = "call-1", **params) -> ReasoningResponse:
    """A reasoning response requesting one tool call."""
    return ReasoningResponse(
        tool_calls=[ToolCallRequest(id=call_id, name=name, params=params)],
        usage=LLMUsage(input_tokens=250, output_tokens=40, model="fake-reasoner"),
    )


def stale_summary(inputs, args, context):
    """Aggregate stale deals into a summary plus the top-N by amount."""
    stale_days = args.get("stale_days", 14)
    stale = [d for d in inputs["deals"] if d["days_since_activity"] >= stale_days]
    stale.sort(key=lambda d: d["amount"], reverse=True)
    return {
        "summary": {
            "stale_count": len(stale),
            "stale_value": sum(d["amount"] for d in stale),
        },
        "top": [
            {"id": d["id"], "amount": d["amount"], "owner": d["owner"]}
            for d in stale[: args.get("top_n", 20)]
        ],
    }


def raw_deals(inputs, args, context):
    """Pass deals through unaggregated."""
    return {"deals": inputs["deals"]}


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset global singletons between tests."""
    reset_settings()
    reset_tool_registry()
    reset_compute_registry()
    yield
    reset_settings()
    reset_tool_registry()
    reset_compute_registry()


@pytest.fixture
def settings():
    """Settings with instant retries."""
    return Settings(retry_base_delay_s=0.0)


@pytest.fixture
def execution_context():
    """Create a test execution context."""
    return ExecutionContext(
        run_id="run-test-123",
        skill_id="pipeline-hygiene",
        tenant_id="tenant-a",
        step_id="synthesize",
    )


@pytest.fixture
def deals():
    """300 stale deals for one tenant."""
    return [
        {
            "id": f"deal-{i:03d}",
            "name": f"Deal {i}",
            "amount": 1000 + i * 10,
            "owner": f"rep-{i % 7}",
            "days_since_activity": 30 + i % 60,
            "source_data": {"notes": "x" * 40},
        }
        for i in range(300)
    ]


@pytest.fixture
def deal_tool():
    """Deal lookup tool instance."""
    return DealLookupTool()


@pytest.fixture
def tool_registry(deal_tool):
    """Frozen tool registry holding the deal lookup tool."""
    registry = ToolRegistry()
    registry.register(deal_tool)
    registry.freeze()
    return registry


@pytest.fixture
def compute_registry():
    """Compute registry with test aggregation functions."""
    registry = ComputeRegistry()
    registry.register("stale-summary", stale_summary)
    registry.register("raw-deals", raw_deals)
    return registry


@pytest.fixture
def classifier():
    """Fake classification provider."""
    return FakeClassifier()


@pytest.fixture
def reasoner():
    """Scripted reasoning provider answering immediately."""
    return ScriptedReasoner()


@pytest.fixture
def run_store():
    """In-memory run store."""
    return InMemoryRunStore()


@pytest.fixture
def make_orchestrator(settings, run_store, classifier, reasoner, tool_registry, compute_registry, deals):
    """Factory for orchestrators over the shared fakes."""

    def factory(**overrides):
        kwargs = {
            "recorder": RunRecorder(run_store),
            "classifier": classifier,
            "reasoner": reasoner,
            "tool_registry": tool_registry,
            "compute_registry": compute_registry,
            "context_loader": lambda tenant_id: {"deals": deals, "company": "Acme"},
            "settings": settings,
            "sleep": lambda seconds: None,
        }
        kwargs.update(overrides)
        return RunOrchestrator(**kwargs)

    return factory


@pytest.fixture
def sample_anthropic_response():
    """Sample Anthropic API response."""
    return {
        "id": "msg_test123",
        "type": "message",
        "role": "assistant",
        "content": [
            {
                "type": "text",
                "text": "Three deals need attention this week.",
            }
        ],
        "model": "claude-sonnet-4-5",
        "stop_reason": "end_turn",
        "usage": {
            "input_tokens": 15,
            "output_tokens": 25,
        },
    }
