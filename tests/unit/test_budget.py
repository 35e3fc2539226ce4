"""Tests for the token budget governor."""
from skill_runtime.runtime.budget import (
    estimate_tokens,
    payload_recommendations,
    serialize,
    TokenBudgetGovernor,
)
from skill_runtime.runtime.contracts import StepKind


class TestEstimateTokens:
    """Test size-based token estimation."""

    def test_rounds_up(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_structured_values_use_compact_json(self):
        value = {"a": [1, 2]}
        assert serialize(value) == '{"a":[1,2]}'
        assert estimate_tokens(value) == 3

    def test_custom_ratio(self):
        assert estimate_tokens("x" * 30, chars_per_token=3) == 10


class TestRecommendations:
    """Test remediation hints for oversized payloads."""

    def test_source_data_hint(self):
        hints = payload_recommendations('{"source_data": {}}')
        assert any("source_data" in h for h in hints)

    def test_transcript_hint(self):
        hints = payload_recommendations("call transcript follows")
        assert any("Transcript" in h for h in hints)

    def test_heavy_json_hint(self):
        hints = payload_recommendations("{}" * 60)
        assert any("Heavy JSON" in h for h in hints)

    def test_clean_payload(self):
        assert payload_recommendations("short summary") == []


class TestTokenBudgetGovernor:
    """Test per-step and per-run ceilings."""

    def test_small_step_allowed(self):
        governor = TokenBudgetGovernor()

        decision = governor.check_before_step("triage", StepKind.CLASSIFY, 2000)

        assert decision.allowed
        assert not decision.warn
        assert decision.reason is None

    def test_warn_threshold_does_not_block(self):
        governor = TokenBudgetGovernor()

        decision = governor.check_before_step("triage", StepKind.CLASSIFY, 9000)

        assert decision.allowed
        assert decision.warn
        assert "9000" in decision.reason

    def test_hard_ceiling_rejects(self):
        governor = TokenBudgetGovernor()

        decision = governor.check_before_step(
            "synthesize",
            StepKind.REASON,
            25000,
            breakdown={"deals": 24000, "prompt": 1000},
            payload='[{"source_data": {"raw": true}}]',
        )

        assert not decision.allowed
        assert decision.ceiling == 20000
        assert decision.largest_input == "deals"
        assert decision.largest_input_tokens == 24000
        assert "25000" in decision.reason
        assert "deals" in decision.reason
        assert any("source_data" in r for r in decision.recommendations)

    def test_compute_never_gated(self):
        governor = TokenBudgetGovernor()

        decision = governor.check_before_step("aggregate", StepKind.COMPUTE, 500000)

        assert decision.allowed
        assert not decision.warn

    def test_soft_target_flags_once(self):
        governor = TokenBudgetGovernor(run_soft_target_tokens=1000)

        governor.record_after_step(StepKind.CLASSIFY, 600, 100)
        assert not governor.over_budget

        governor.record_after_step(StepKind.REASON, 400, 100)
        assert governor.over_budget
        assert governor.total_tokens == 1200
        assert not governor.hard_ceiling_exceeded

    def test_compute_usage_not_counted(self):
        governor = TokenBudgetGovernor()

        governor.record_after_step(StepKind.COMPUTE, 0, 5000)

        assert governor.total_tokens == 0

    def test_run_hard_ceiling(self):
        governor = TokenBudgetGovernor(run_hard_ceiling_tokens=1000)

        governor.record_after_step(StepKind.REASON, 900, 200)

        assert governor.hard_ceiling_exceeded

    def test_from_settings(self, settings):
        governor = TokenBudgetGovernor.from_settings(settings, run_id="run-1")

        assert governor.warn_tokens == settings.step_input_warn_tokens
        assert governor.hard_ceiling_tokens == settings.step_input_hard_ceiling_tokens
        assert governor.run_hard_ceiling_tokens is None
