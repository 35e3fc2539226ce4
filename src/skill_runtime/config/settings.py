"""Configuration and settings management using pydantic-settings."""
import json
from pathlib import Path

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_prefix="SKILL_RUNTIME_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core service settings
    env: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Log level")

    # Persistence
    run_store: str = Field(
        default="memory",
        description="Run store backend: 'memory' or 'redis'",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    record_step_results: bool = Field(
        default=False,
        description="Write each step result as it lands (off: one write per transition)",
    )

    # Skill definitions
    skills_dir: Path | None = Field(
        default=None,
        description="Directory of YAML skill definitions loaded at startup",
    )

    # Reasoning tier (Anthropic)
    anthropic_api_key: SecretStr | None = Field(
        default=None,
        description="Anthropic API key",
    )
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com",
        description="Anthropic API base URL",
    )
    anthropic_version: str = Field(
        default="2023-06-01",
        description="Anthropic API version",
    )
    anthropic_default_model: str = Field(
        default="claude-sonnet-4-5",
        description="Default reasoning model",
    )

    # Classification tier (Fireworks, OpenAI-compatible)
    fireworks_api_key: SecretStr | None = Field(
        default=None,
        description="Fireworks API key",
    )
    fireworks_base_url: str = Field(
        default="https://api.fireworks.ai/inference/v1",
        description="Fireworks API base URL",
    )
    fireworks_default_model: str = Field(
        default="accounts/fireworks/models/deepseek-v3p1",
        description="Default classification model",
    )
    llm_request_timeout_s: int = Field(
        default=60,
        description="Read timeout for provider HTTP calls",
    )
    llm_max_tokens_cap: int = Field(
        default=4096,
        description="Hard cap on max_tokens for any LLM call",
    )
    llm_pricing_json: str | None = Field(
        default=None,
        description="JSON string with model pricing overrides",
    )

    # Token budget
    step_input_warn_tokens: int = Field(
        default=8000,
        description="Per-step input size that is logged but not blocked",
    )
    step_input_hard_ceiling_tokens: int = Field(
        default=20000,
        description="Per-step input size rejected before execution",
    )
    run_soft_target_tokens: int = Field(
        default=12000,
        description="Run total that flags the run as over budget",
    )
    run_hard_ceiling_tokens: int | None = Field(
        default=None,
        description="Run total that fails the run (unset: no ceiling)",
    )
    chars_per_token: int = Field(
        default=4,
        description="Serialized bytes per estimated token",
    )

    # Data shape limits
    classify_item_ceiling: int = Field(
        default=30,
        description="Largest item ceiling a classify step may declare",
    )
    compute_output_cap_bytes: int = Field(
        default=8192,
        description="Largest serialized array allowed in a compute output",
    )
    reason_input_array_cap: int = Field(
        default=10,
        description="Largest compute array passed straight into a reason step",
    )

    # Tools
    tool_call_timeout_s: float = Field(
        default=30.0,
        description="Timeout for a single tool invocation",
    )
    tool_result_max_bytes: int = Field(
        default=16000,
        description="Tool results larger than this are truncated for the model",
    )
    default_max_tool_calls: int = Field(
        default=10,
        description="Tool-call ceiling for reason steps that do not declare one",
    )

    # Retries and timeouts
    retry_max_attempts: int = Field(
        default=3,
        description="Attempts for classify/reason provider calls",
    )
    retry_base_delay_s: float = Field(
        default=0.5,
        description="First backoff delay; doubles on each attempt",
    )
    default_step_timeout_s: float | None = Field(
        default=None,
        description="Per-step timeout for steps that do not declare one",
    )

    # Run service
    run_worker_count: int = Field(
        default=4,
        description="Concurrent runs executed by the run service",
    )

    @field_validator(
        "llm_max_tokens_cap",
        "step_input_warn_tokens",
        "step_input_hard_ceiling_tokens",
        "run_soft_target_tokens",
        "chars_per_token",
        "classify_item_ceiling",
        "compute_output_cap_bytes",
        "reason_input_array_cap",
        "retry_max_attempts",
        "run_worker_count",
    )
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        """Validate that limits are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("run_store")
    @classmethod
    def validate_run_store(cls, v: str) -> str:
        """Validate run store backend name."""
        if v not in ("memory", "redis"):
            raise ValueError("run_store must be 'memory' or 'redis'")
        return v

    @model_validator(mode="after")
    def validate_token_thresholds(self) -> "Settings":
        """Warn threshold must sit below the hard ceiling."""
        if self.step_input_warn_tokens > self.step_input_hard_ceiling_tokens:
            raise ValueError(
                "step_input_warn_tokens must not exceed step_input_hard_ceiling_tokens"
            )
        return self

    def get_llm_pricing(self) -> dict[str, dict[str, float]]:
        """
        Get LLM pricing map from settings or default fallback.

        Returns:
            Dict mapping model name to pricing dict with input_per_1k and output_per_1k.
        """
        default_pricing = {
            "claude-sonnet-4-5": {
                "input_per_1k": 0.003,
                "output_per_1k": 0.015,
            },
            "claude-haiku-4-5-20251001": {
                "input_per_1k": 0.0008,
                "output_per_1k": 0.004,
            },
            "accounts/fireworks/models/deepseek-v3p1": {
                "input_per_1k": 0.00014,
                "output_per_1k": 0.00028,
            },
        }

        if self.llm_pricing_json:
            try:
                custom_pricing = json.loads(self.llm_pricing_json)
                return {**default_pricing, **custom_pricing}
            except json.JSONDecodeError:
                return default_pricing

        return default_pricing

    def estimate_cost_usd(
        self,
        model: str | None,
        input_tokens: int,
        output_tokens: int,
    ) -> float:
        """Estimate call cost; unknown models are priced at zero."""
        pricing = self.get_llm_pricing().get(
            model or "", {"input_per_1k": 0.0, "output_per_1k": 0.0}
        )
        return (
            input_tokens / 1000 * pricing["input_per_1k"]
            + output_tokens / 1000 * pricing["output_per_1k"]
        )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None
