"""Observability package."""
from skill_runtime.observability.logging import (
    get_logger,
    get_security_logger,
    setup_logging,
    with_trace_context,
)

__all__ = ["get_logger", "get_security_logger", "setup_logging", "with_trace_context"]
