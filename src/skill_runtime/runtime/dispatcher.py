"""Tool call dispatcher: the only path from a reasoning model to a tool."""
import time
from typing import Any

from pydantic import ValidationError

from skill_runtime.config import Settings, get_settings
from skill_runtime.observability import get_logger, get_security_logger, with_trace_context
from skill_runtime.runtime.budget import serialize
from skill_runtime.runtime.contracts import ExecutionContext, ToolInvocation
from skill_runtime.runtime.errors import TenantIsolationError, ToolError, UnknownToolError
from skill_runtime.runtime.timeouts import run_with_timeout
from skill_runtime.runtime.tools import ToolRegistry, get_tool_registry

logger = get_logger(__name__)
security_logger = get_security_logger()

TENANT_PARAM_KEYS = ("tenant_id", "tenantId", "workspace_id", "workspaceId")


class ToolCallDispatcher:
    """
    Validates and executes tool calls for one tenant at a time.

    Guarantees:
    - the tool receives the tenant from the execution context, never from params
    - params naming a different tenant are rejected and logged as a security event
    - every call is bounded by ``tool_call_timeout_s`` on its own thread, so a
      hung tool never delays calls from other runs
    - results larger than ``tool_result_max_bytes`` are truncated
    """

    def __init__(
        self,
        tool_registry: ToolRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.tool_registry = tool_registry or get_tool_registry()
        self.settings = settings or get_settings()

    def invoke(
        self,
        tool_name: str,
        caller_params: dict[str, Any],
        context: ExecutionContext,
    ) -> ToolInvocation:
        """
        Dispatch one tool call.

        Recoverable failures (invalid params, tool errors, timeouts) are
        returned on the invocation so the model can react to them.

        Args:
            tool_name: Requested tool
            caller_params: Model-supplied parameters
            context: Execution context carrying the run's tenant

        Returns:
            ToolInvocation

        Raises:
            UnknownToolError: If the tool is not registered
            TenantIsolationError: If params address another tenant
        """
        extra = with_trace_context(
            run_id=context.run_id,
            skill_id=context.skill_id,
            tenant_id=context.tenant_id,
            step_id=context.step_id,
            tool_name=tool_name,
        )

        tool = self.tool_registry.get(tool_name)
        if tool is None:
            logger.error("unknown_tool_requested", extra=extra)
            raise UnknownToolError(f"Unknown tool: {tool_name}", tool_name=tool_name)

        params = self._strip_tenant_params(tool_name, caller_params or {}, context, extra)
        invocation = ToolInvocation(tool_name=tool_name, params=params, tenant_id=context.tenant_id)

        try:
            validated = tool.params_model().model_validate(params)
        except ValidationError as e:
            invocation.error = f"Invalid parameters for {tool_name}: {e.errors(include_url=False)}"
            invocation.error_type = "invalid_params"
            logger.warning("tool_params_invalid", extra=extra)
            return invocation

        timeout = self.settings.tool_call_timeout_s
        start_time = time.time()
        try:
            result, timed_out = run_with_timeout(tool.execute, timeout, validated, context.tenant_id)
        except Exception as e:
            error = ToolError(f"Tool {tool_name} failed: {e}", tool_name=tool_name)
            invocation.error = error.message
            invocation.error_type = error.error_type
            logger.warning("tool_call_failed", extra={**extra, "error": str(e)}, exc_info=True)
        else:
            if timed_out:
                invocation.error = f"Tool {tool_name} timed out after {timeout}s"
                invocation.error_type = "timeout"
                logger.warning("tool_call_timeout", extra=extra)
            else:
                invocation.result, invocation.result_bytes = self._bound_result(result)
        invocation.duration_ms = int((time.time() - start_time) * 1000)

        logger.info(
            "tool_call_completed",
            extra={**extra, "ok": invocation.ok, "duration_ms": invocation.duration_ms},
        )
        return invocation

    def _strip_tenant_params(
        self,
        tool_name: str,
        caller_params: dict[str, Any],
        context: ExecutionContext,
        extra: dict[str, Any],
    ) -> dict[str, Any]:
        params = dict(caller_params)
        for key in TENANT_PARAM_KEYS:
            if key not in params:
                continue
            value = params.pop(key)
            if str(value) != context.tenant_id:
                security_logger.warning(
                    "tenant_isolation_violation",
                    extra={**extra, "param_key": key, "requested_tenant": str(value)},
                )
                raise TenantIsolationError(
                    f"Tool call {tool_name} attempted to address another tenant via '{key}'",
                    tool_name=tool_name,
                    param_key=key,
                )
        return params

    def _bound_result(self, result: Any) -> tuple[Any, int]:
        serialized = serialize(result)
        size = len(serialized.encode("utf-8"))
        limit = self.settings.tool_result_max_bytes
        if size <= limit:
            return result, size
        truncated = serialized.encode("utf-8")[:limit].decode("utf-8", errors="ignore")
        return f"{truncated}... [truncated {size - limit} bytes]", size
