"""Tests for the step executor."""
import time

import pytest

from conftest import FakeClassifier, ScriptedReasoner, tool_call
from skill_runtime.config import Settings
from skill_runtime.runtime.budget import TokenBudgetGovernor
from skill_runtime.runtime.contracts import (
    ExecutionContext,
    RetryPolicy,
    StepDefinition,
    StepKind,
    StepStatus,
)
from skill_runtime.runtime.executor import FINAL_ANSWER_INSTRUCTION, StepExecutor


@pytest.fixture
def context():
    return ExecutionContext(run_id="run-1", skill_id="pipeline-hygiene", tenant_id="tenant-a")


@pytest.fixture
def make_executor(context, settings, classifier, reasoner, tool_registry, compute_registry):
    def factory(**overrides):
        run_settings = overrides.pop("settings", settings)
        kwargs = {
            "classifier": classifier,
            "reasoner": reasoner,
            "tool_registry": tool_registry,
            "compute_registry": compute_registry,
            "settings": run_settings,
            "sleep": lambda seconds: None,
        }
        kwargs.update(overrides)
        return StepExecutor(context, TokenBudgetGovernor.from_settings(run_settings), **kwargs)

    return factory


class TestComputeStep:
    """Test compute steps."""

    def test_aggregates_deals(self, make_executor, deals):
        executor = make_executor()
        step = StepDefinition(
            id="stale-summary",
            kind=StepKind.COMPUTE,
            inputs=["deals"],
            args={"top_n": 5},
            max_output_items=20,
        )

        result = executor.execute_step(step, {}, {"deals": deals})

        assert result.status == StepStatus.SUCCEEDED
        assert result.output["summary"]["stale_count"] == 300
        assert len(result.output["top"]) == 5
        assert result.input_tokens == 0
        assert result.output_tokens > 0
        assert result.attempts == 1

    def test_declared_item_bound_enforced(self, make_executor, deals):
        executor = make_executor()
        step = StepDefinition(
            id="raw-deals", kind=StepKind.COMPUTE, inputs=["deals"], max_output_items=20
        )

        result = executor.execute_step(step, {}, {"deals": deals})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "output_size_exceeded"
        assert result.error.details["items"] == 300
        assert result.error.details["path"] == "output.deals"

    def test_byte_cap_enforced(self, make_executor, deals):
        executor = make_executor()
        step = StepDefinition(id="raw-deals", kind=StepKind.COMPUTE, inputs=["deals"])

        result = executor.execute_step(step, {}, {"deals": deals})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "output_size_exceeded"
        assert result.error.details["cap_bytes"] == 8192

    def test_missing_input(self, make_executor):
        executor = make_executor()
        step = StepDefinition(id="stale-summary", kind=StepKind.COMPUTE, inputs=["deals"])

        result = executor.execute_step(step, {}, {})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "missing_input"
        assert result.error.recoverable is False
        assert result.error.details["input_key"] == "deals"

    def test_step_outputs_take_precedence(self, make_executor, compute_registry):
        compute_registry.register("echo", lambda inputs, args, ctx: {"seen": inputs["deals"]})
        executor = make_executor()
        step = StepDefinition(id="echo", kind=StepKind.COMPUTE, inputs=["deals"])

        result = executor.execute_step(step, {"deals": ["from-step"]}, {"deals": ["from-workspace"]})

        assert result.output == {"seen": ["from-step"]}

    def test_function_exception_is_contained(self, make_executor, compute_registry):
        def broken(inputs, args, ctx):
            raise ValueError("bad arithmetic")

        compute_registry.register("broken", broken)
        executor = make_executor()

        result = executor.execute_step(StepDefinition(id="broken", kind=StepKind.COMPUTE), {}, {})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "unexpected_error"
        assert "bad arithmetic" in result.error.message

    def test_timeout(self, make_executor, compute_registry):
        compute_registry.register("slow", lambda inputs, args, ctx: time.sleep(1))
        executor = make_executor()
        step = StepDefinition(id="slow", kind=StepKind.COMPUTE, timeout_s=0.05)

        result = executor.execute_step(step, {}, {})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "step_timeout"
        assert result.completed_at is not None


class TestClassifyStep:
    """Test classify steps."""

    def test_truncates_to_item_ceiling(self, make_executor, classifier, deals):
        executor = make_executor()
        step = StepDefinition(
            id="triage", kind=StepKind.CLASSIFY, inputs=["deals"], item_ceiling=30
        )

        result = executor.execute_step(step, {}, {"deals": deals[:45]})

        assert result.status == StepStatus.SUCCEEDED
        assert len(classifier.calls[0]) == 30
        assert len(result.output) == 30
        assert any("truncated to the first 30" in w for w in result.warnings)
        assert result.input_tokens == 120
        assert result.output_tokens == 60

    def test_token_ceiling_rejects_before_call(self, make_executor, classifier, deals):
        executor = make_executor()
        bulky = [dict(d, source_data={"notes": "x" * 4000}) for d in deals[:30]]
        step = StepDefinition(
            id="triage", kind=StepKind.CLASSIFY, inputs=["deals"], item_ceiling=30
        )

        result = executor.execute_step(step, {}, {"deals": bulky})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "token_ceiling_exceeded"
        assert result.error.details["estimated_tokens"] > 20000
        assert result.error.details["ceiling"] == 20000
        assert result.error.details["largest_input"] == "deals"
        assert any("source_data" in r for r in result.error.details["recommendations"])
        assert classifier.calls == []

    def test_retries_provider_errors(self, make_executor, deals):
        delays = []
        classifier = FakeClassifier(fail_times=2)
        executor = make_executor(classifier=classifier, sleep=delays.append)
        step = StepDefinition(
            id="triage",
            kind=StepKind.CLASSIFY,
            inputs=["deals"],
            item_ceiling=10,
            retry=RetryPolicy(max_attempts=3, base_delay_s=0.5),
        )

        result = executor.execute_step(step, {}, {"deals": deals})

        assert result.status == StepStatus.SUCCEEDED
        assert result.attempts == 3
        assert delays == [0.5, 1.0]

    def test_retries_exhausted(self, make_executor, deals):
        classifier = FakeClassifier(fail_times=5)
        executor = make_executor(classifier=classifier)
        step = StepDefinition(
            id="triage", kind=StepKind.CLASSIFY, inputs=["deals"], item_ceiling=10
        )

        result = executor.execute_step(step, {}, {"deals": deals})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "provider_error"
        assert result.error.recoverable is True
        assert result.attempts == 3
        assert len(classifier.calls) == 3

    def test_requires_list_input(self, make_executor):
        executor = make_executor()
        step = StepDefinition(
            id="triage", kind=StepKind.CLASSIFY, inputs=["company"], item_ceiling=10
        )

        result = executor.execute_step(step, {}, {"company": "Acme"})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "missing_input"


class TestReasonStep:
    """Test reason steps."""

    def summary_step(self, executor, deals):
        step = StepDefinition(
            id="stale-summary", kind=StepKind.COMPUTE, inputs=["deals"], max_output_items=20
        )
        result = executor.execute_step(step, {}, {"deals": deals})
        return {"stale-summary": result.output}

    def test_answers_from_summary(self, make_executor, reasoner, deals):
        executor = make_executor()
        outputs = self.summary_step(executor, deals)
        step = StepDefinition(
            id="synthesize",
            kind=StepKind.REASON,
            inputs=["stale-summary.summary"],
            prompt="Summarize stale deals for {{company}}.",
        )

        result = executor.execute_step(step, outputs, {"deals": deals, "company": "Acme"})

        assert result.status == StepStatus.SUCCEEDED
        assert result.output == "Final analysis"
        context = reasoner.calls[0]["context"]
        assert "Summarize stale deals for Acme." in context
        assert "## stale-summary.summary" in context
        assert '"stale_count":300' in context

    def test_tool_call_ceiling(self, make_executor, deal_tool, deals):
        reasoner = ScriptedReasoner(
            [
                tool_call(call_id="c1", deal_id="deal-001"),
                tool_call(call_id="c2", deal_id="deal-002"),
                tool_call(call_id="c3", deal_id="deal-003"),
            ]
        )
        executor = make_executor(reasoner=reasoner)
        outputs = self.summary_step(executor, deals)
        step = StepDefinition(
            id="synthesize",
            kind=StepKind.REASON,
            inputs=["stale-summary.summary"],
            tools=["lookup_deal"],
            max_tool_calls=2,
        )

        result = executor.execute_step(step, outputs, {})

        assert result.status == StepStatus.SUCCEEDED
        assert result.tool_calls_requested == 3
        assert result.tool_calls_executed == 2
        assert deal_tool.calls == [("deal-001", "tenant-a"), ("deal-002", "tenant-a")]
        final_call = reasoner.calls[-1]
        assert final_call["instruction"] == FINAL_ANSWER_INSTRUCTION
        assert final_call["tools"] == []
        assert final_call["exchanges"][-1].error is not None
        assert any("Tool call limit of 2" in w for w in result.warnings)

    def test_unpermitted_tool_fails_step(self, make_executor, deal_tool, deals):
        reasoner = ScriptedReasoner([tool_call(deal_id="deal-001")])
        executor = make_executor(reasoner=reasoner)
        outputs = self.summary_step(executor, deals)
        step = StepDefinition(
            id="synthesize", kind=StepKind.REASON, inputs=["stale-summary.summary"], tools=[]
        )

        result = executor.execute_step(step, outputs, {})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "unknown_tool"
        assert deal_tool.calls == []

    def test_cross_tenant_tool_call_fails_step(self, make_executor, deal_tool, deals):
        reasoner = ScriptedReasoner([tool_call(deal_id="deal-001", tenant_id="tenant-b")])
        executor = make_executor(reasoner=reasoner)
        outputs = self.summary_step(executor, deals)
        step = StepDefinition(
            id="synthesize",
            kind=StepKind.REASON,
            inputs=["stale-summary.summary"],
            tools=["lookup_deal"],
        )

        result = executor.execute_step(step, outputs, {})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "tenant_isolation_violation"
        assert deal_tool.calls == []

    def test_raw_compute_fan_out_rejected(self, make_executor, compute_registry, reasoner):
        compute_registry.register(
            "top-fifteen", lambda inputs, args, ctx: [{"id": i} for i in range(15)]
        )
        executor = make_executor()
        compute_result = executor.execute_step(
            StepDefinition(id="top-fifteen", kind=StepKind.COMPUTE), {}, {}
        )
        step = StepDefinition(id="synthesize", kind=StepKind.REASON, inputs=["top-fifteen"])

        result = executor.execute_step(step, {"top-fifteen": compute_result.output}, {})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "raw_fan_out"
        assert result.error.details["items"] == 15
        assert reasoner.calls == []

    def test_fan_out_checked_for_placeholders(self, make_executor, compute_registry, reasoner):
        compute_registry.register(
            "top-fifteen", lambda inputs, args, ctx: [{"id": i} for i in range(15)]
        )
        executor = make_executor()
        compute_result = executor.execute_step(
            StepDefinition(id="top-fifteen", kind=StepKind.COMPUTE), {}, {}
        )
        step = StepDefinition(
            id="synthesize", kind=StepKind.REASON, prompt="Review {{top-fifteen}}"
        )

        result = executor.execute_step(step, {"top-fifteen": compute_result.output}, {})

        assert result.error.type == "raw_fan_out"

    def test_workspace_arrays_not_fan_out(self, make_executor):
        executor = make_executor()
        step = StepDefinition(id="synthesize", kind=StepKind.REASON, inputs=["owners"])

        result = executor.execute_step(step, {}, {"owners": [f"rep-{i}" for i in range(15)]})

        assert result.status == StepStatus.SUCCEEDED

    def test_no_reasoner_configured(self, make_executor):
        executor = make_executor(reasoner=None)
        step = StepDefinition(id="synthesize", kind=StepKind.REASON, inputs=["company"])

        result = executor.execute_step(step, {}, {"company": "Acme"})

        assert result.status == StepStatus.FAILED
        assert result.error.type == "provider_error"

    def test_warn_threshold_recorded(self, make_executor):
        settings = Settings(
            retry_base_delay_s=0.0, step_input_warn_tokens=10, step_input_hard_ceiling_tokens=20000
        )
        executor = make_executor(settings=settings)
        step = StepDefinition(id="synthesize", kind=StepKind.REASON, inputs=["notes"])

        result = executor.execute_step(step, {}, {"notes": "n" * 400})

        assert result.status == StepStatus.SUCCEEDED
        assert any("Consider more compute aggregation" in w for w in result.warnings)
