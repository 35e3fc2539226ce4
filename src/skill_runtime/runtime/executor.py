"""Step executor: runs one compute, classify or reason step."""
import time
from typing import Any, Callable

from skill_runtime.config import Settings, get_settings
from skill_runtime.observability import get_logger, with_trace_context
from skill_runtime.providers.base import (
    ClassificationProvider,
    LLMUsage,
    ReasoningProvider,
    ToolExchange,
)
from skill_runtime.runtime.budget import TokenBudgetGovernor, serialize
from skill_runtime.runtime.compute import ComputeRegistry, get_compute_registry
from skill_runtime.runtime.contracts import (
    ExecutionContext,
    RetryPolicy,
    StepDefinition,
    StepErrorDetail,
    StepKind,
    StepResult,
    StepStatus,
    utcnow,
)
from skill_runtime.runtime.dispatcher import ToolCallDispatcher
from skill_runtime.runtime.errors import (
    FanOutError,
    MissingInputError,
    OutputSizeExceededError,
    ProviderError,
    SkillRuntimeError,
    StepTimeoutError,
    TokenCeilingExceededError,
    UnknownComputeFunctionError,
    UnknownToolError,
)
from skill_runtime.runtime.templates import placeholders, render_template, resolve_key
from skill_runtime.runtime.timeouts import run_with_timeout
from skill_runtime.runtime.tools import ToolRegistry, get_tool_registry

logger = get_logger(__name__)

FINAL_ANSWER_INSTRUCTION = (
    "You have used all available tool calls. Please provide your final analysis "
    "now based on the data you have gathered so far. Do not request any more tools."
)

REFUSED_TOOL_CALL = "Refused: tool call limit reached for this step."


def _error_detail(error: SkillRuntimeError) -> StepErrorDetail:
    return StepErrorDetail(
        type=error.error_type,
        message=error.message,
        recoverable=error.recoverable,
        details={k: v for k, v in error.details.items() if v is not None},
    )


class StepExecutor:
    """
    Executes steps for a single run.

    Dispatches on step kind:
    - compute: registered aggregation function, output size-checked
    - classify: bounded item list sent to the classification provider
    - reason: reasoning provider loop with dispatched tool calls

    ``execute_step`` never raises: every failure becomes a failed
    StepResult carrying a structured error.
    """

    def __init__(
        self,
        context: ExecutionContext,
        governor: TokenBudgetGovernor,
        classifier: ClassificationProvider | None = None,
        reasoner: ReasoningProvider | None = None,
        dispatcher: ToolCallDispatcher | None = None,
        compute_registry: ComputeRegistry | None = None,
        tool_registry: ToolRegistry | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.context = context
        self.governor = governor
        self.classifier = classifier
        self.reasoner = reasoner
        self.settings = settings or get_settings()
        self.tool_registry = tool_registry or get_tool_registry()
        self.compute_registry = compute_registry or get_compute_registry()
        self.dispatcher = dispatcher or ToolCallDispatcher(self.tool_registry, self.settings)
        self._sleep = sleep
        # Output key / step id -> kind of the step that produced it
        self._producers: dict[str, StepKind] = {}

    def execute_step(
        self,
        step: StepDefinition,
        step_outputs: dict[str, Any],
        workspace_context: dict[str, Any],
    ) -> StepResult:
        """
        Execute one step.

        Args:
            step: Step definition
            step_outputs: Outputs of earlier steps, by output key
            workspace_context: Tenant workspace context

        Returns:
            StepResult (succeeded or failed)
        """
        extra = with_trace_context(
            run_id=self.context.run_id,
            skill_id=self.context.skill_id,
            tenant_id=self.context.tenant_id,
            step_id=step.id,
            step_kind=step.kind.value,
        )
        logger.info("step_started", extra=extra)

        start_time = time.time()
        draft = StepResult(step_id=step.id, kind=step.kind, status=StepStatus.FAILED)
        result = draft

        try:
            timeout_s = step.timeout_s or self.settings.default_step_timeout_s
            if timeout_s:
                _, timed_out = run_with_timeout(
                    self._run_step, timeout_s, step, step_outputs, workspace_context, draft, extra
                )
                if timed_out:
                    raise StepTimeoutError(
                        f"Step '{step.id}' timed out after {timeout_s}s",
                        step_id=step.id,
                        timeout_s=timeout_s,
                    )
            else:
                self._run_step(step, step_outputs, workspace_context, draft, extra)
            draft.status = StepStatus.SUCCEEDED
        except StepTimeoutError as e:
            # The abandoned body may still write to the draft.
            result = StepResult(
                step_id=step.id,
                kind=step.kind,
                status=StepStatus.FAILED,
                started_at=draft.started_at,
                error=_error_detail(e),
            )
        except SkillRuntimeError as e:
            draft.error = _error_detail(e)
        except Exception as e:
            logger.error("step_unexpected_error", extra=extra, exc_info=True)
            draft.error = StepErrorDetail(
                type="unexpected_error",
                message=f"{type(e).__name__}: {e}",
                recoverable=True,
            )

        result.completed_at = utcnow()
        result.duration_ms = int((time.time() - start_time) * 1000)
        self.governor.record_after_step(step.kind, result.input_tokens, result.output_tokens)

        log_extra = {
            **extra,
            "duration_ms": result.duration_ms,
            "input_tokens": result.input_tokens,
            "output_tokens": result.output_tokens,
        }
        if result.succeeded:
            self._producers[step.id] = step.kind
            self._producers[step.result_key] = step.kind
            logger.info("step_completed", extra=log_extra)
        else:
            logger.warning(
                "step_failed",
                extra={
                    **log_extra,
                    "error_type": result.error.type,
                    "error_message": result.error.message,
                },
            )
        return result

    def _run_step(
        self,
        step: StepDefinition,
        step_outputs: dict[str, Any],
        workspace_context: dict[str, Any],
        draft: StepResult,
        extra: dict[str, Any],
    ) -> None:
        inputs, sources = self._resolve_inputs(step, step_outputs, workspace_context)
        if step.kind == StepKind.COMPUTE:
            self._run_compute(step, inputs, draft)
        elif step.kind == StepKind.CLASSIFY:
            self._run_classify(step, inputs, step_outputs, workspace_context, draft, extra)
        else:
            self._run_reason(step, inputs, sources, step_outputs, workspace_context, draft, extra)

    def _resolve_inputs(
        self,
        step: StepDefinition,
        step_outputs: dict[str, Any],
        workspace_context: dict[str, Any],
    ) -> tuple[dict[str, Any], dict[str, str]]:
        inputs: dict[str, Any] = {}
        sources: dict[str, str] = {}
        for key in step.inputs:
            found, value, source = resolve_key(key, step_outputs, workspace_context)
            if not found:
                raise MissingInputError(
                    f"Step '{step.id}' input '{key}' was not produced by an earlier step "
                    "and is not in the workspace context",
                    skill_id=self.context.skill_id,
                    step_id=step.id,
                    input_key=key,
                )
            inputs[key] = value
            sources[key] = source
        return inputs, sources

    # compute

    def _run_compute(self, step: StepDefinition, inputs: dict[str, Any], draft: StepResult) -> None:
        fn = self.compute_registry.get(step.compute_function)
        if fn is None:
            raise UnknownComputeFunctionError(
                f"Compute function '{step.compute_function}' is not registered",
                skill_id=self.context.skill_id,
                step_id=step.id,
            )
        draft.attempts = 1
        output = fn(inputs, dict(step.args), self.context.for_step(step.id))
        self._check_compute_output(step, output)
        draft.output = output
        draft.output_tokens = self.governor.estimate(output)

    def _check_compute_output(self, step: StepDefinition, output: Any) -> None:
        cap = self.settings.compute_output_cap_bytes
        for path, array in _iter_arrays(output, "output"):
            if step.max_output_items is not None and len(array) > step.max_output_items:
                raise OutputSizeExceededError(
                    f"Compute step '{step.id}' produced {len(array)} items at '{path}' "
                    f"(declared max {step.max_output_items}). Aggregate further.",
                    step_id=step.id,
                    path=path,
                    items=len(array),
                    max_items=step.max_output_items,
                )
            size = len(serialize(array).encode("utf-8"))
            if size > cap:
                raise OutputSizeExceededError(
                    f"Compute step '{step.id}' produced a {size} byte array at '{path}' "
                    f"(cap {cap} bytes). Aggregate further.",
                    step_id=step.id,
                    path=path,
                    size_bytes=size,
                    cap_bytes=cap,
                )

    # classify

    def _run_classify(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        step_outputs: dict[str, Any],
        workspace_context: dict[str, Any],
        draft: StepResult,
        extra: dict[str, Any],
    ) -> None:
        items_key = next((k for k, v in inputs.items() if isinstance(v, list)), None)
        if items_key is None:
            raise MissingInputError(
                f"Classify step '{step.id}' has no list-valued input to classify",
                skill_id=self.context.skill_id,
                step_id=step.id,
            )
        items = inputs[items_key]

        ceiling = step.item_ceiling or self.settings.classify_item_ceiling
        if len(items) > ceiling:
            warning = (
                f"Classify input '{items_key}' has {len(items)} items; "
                f"truncated to the first {ceiling}"
            )
            draft.warnings.append(warning)
            logger.warning(
                "classify_items_truncated",
                extra={**extra, "input_key": items_key, "items": len(items), "ceiling": ceiling},
            )
            items = items[:ceiling]

        instructions = (
            render_template(step.prompt, step_outputs, workspace_context) if step.prompt else None
        )
        payload = serialize(
            {"instructions": instructions, "items": items, "schema": step.output_schema}
        )
        estimated = self.governor.estimate(payload)
        breakdown = {items_key: self.governor.estimate(items)}
        if instructions:
            breakdown["prompt"] = self.governor.estimate(instructions)
        self._check_budget(step, estimated, breakdown, payload, draft)

        if self.classifier is None:
            raise ProviderError("No classification provider configured", step_id=step.id)

        response = self._call_with_retry(
            step,
            draft,
            extra,
            lambda: self.classifier.classify(items, step.output_schema, instructions),
        )
        if len(response.classifications) != len(items):
            draft.warnings.append(
                f"Classifier returned {len(response.classifications)} results for {len(items)} items"
            )

        draft.output = response.classifications
        self._add_usage(draft, response.usage, estimated, response.classifications)

    # reason

    def _run_reason(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        sources: dict[str, str],
        step_outputs: dict[str, Any],
        workspace_context: dict[str, Any],
        draft: StepResult,
        extra: dict[str, Any],
    ) -> None:
        referenced = dict(inputs)
        for path in placeholders(step.prompt):
            found, value, source = resolve_key(path, step_outputs, workspace_context)
            if found and path not in referenced:
                referenced[path] = value
                sources = {**sources, path: source}
        self._check_fan_out(step, referenced, sources)

        context_text = self._build_reason_context(step, inputs, step_outputs, workspace_context)
        permitted = step.tools or []
        specs = self.tool_registry.specs(permitted)

        estimated = self.governor.estimate(context_text) + self.governor.estimate(
            [s.model_dump() for s in specs]
        )
        breakdown = {key: self.governor.estimate(value) for key, value in inputs.items()}
        if step.prompt:
            breakdown["prompt"] = self.governor.estimate(step.prompt)
        self._check_budget(step, estimated, breakdown, context_text, draft)

        if self.reasoner is None:
            raise ProviderError("No reasoning provider configured", step_id=step.id)

        max_calls = (
            step.max_tool_calls
            if step.max_tool_calls is not None
            else self.settings.default_max_tool_calls
        )
        step_context = self.context.for_step(step.id)
        exchanges: list[ToolExchange] = []

        while True:
            response = self._call_with_retry(
                step,
                draft,
                extra,
                lambda: self.reasoner.reason(
                    context_text, specs, list(exchanges), max_tokens=step.max_tokens
                ),
            )
            self._add_usage(draft, response.usage, estimated, response.answer)

            if not response.tool_calls:
                draft.output = response.answer
                return

            ceiling_reached = False
            for call in response.tool_calls:
                draft.tool_calls_requested += 1
                if draft.tool_calls_executed >= max_calls:
                    ceiling_reached = True
                    exchanges.append(ToolExchange(call=call, error=REFUSED_TOOL_CALL))
                    logger.warning(
                        "tool_call_refused",
                        extra={**extra, "tool_name": call.name, "max_tool_calls": max_calls},
                    )
                    continue
                if call.name not in permitted:
                    raise UnknownToolError(
                        f"Step '{step.id}' requested tool '{call.name}' outside its permitted set",
                        step_id=step.id,
                        tool_name=call.name,
                    )
                invocation = self.dispatcher.invoke(call.name, call.params, step_context)
                draft.tool_calls_executed += 1
                draft.tool_invocations.append(invocation.summary())
                exchanges.append(
                    ToolExchange(call=call, result=invocation.result, error=invocation.error)
                )

            if ceiling_reached:
                final = self._call_with_retry(
                    step,
                    draft,
                    extra,
                    lambda: self.reasoner.reason(
                        context_text,
                        [],
                        list(exchanges),
                        instruction=FINAL_ANSWER_INSTRUCTION,
                        max_tokens=step.max_tokens,
                    ),
                )
                self._add_usage(draft, final.usage, estimated, final.answer)
                draft.output = final.answer
                draft.warnings.append(
                    f"Tool call limit of {max_calls} reached; "
                    f"{draft.tool_calls_requested - draft.tool_calls_executed} call(s) refused"
                )
                return

    def _check_fan_out(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        sources: dict[str, str],
    ) -> None:
        cap = self.settings.reason_input_array_cap
        for key, value in inputs.items():
            root = key.split(".", 1)[0]
            if sources.get(key) != "step" or self._producers.get(root) != StepKind.COMPUTE:
                continue
            for path, array in _iter_arrays(value, key):
                if len(array) > cap:
                    raise FanOutError(
                        f"Reason step '{step.id}' received {len(array)} raw compute items "
                        f"at '{path}' (max {cap}). Classify or aggregate them first.",
                        step_id=step.id,
                        input_key=key,
                        path=path,
                        items=len(array),
                        max_items=cap,
                    )

    def _build_reason_context(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        step_outputs: dict[str, Any],
        workspace_context: dict[str, Any],
    ) -> str:
        parts = []
        prompt = step.prompt or ""
        if prompt:
            parts.append(render_template(prompt, step_outputs, workspace_context))
        referenced = set(placeholders(prompt))
        for key, value in inputs.items():
            if key not in referenced:
                parts.append(f"## {key}\n{serialize(value)}")
        return "\n\n".join(parts)

    # shared

    def _check_budget(
        self,
        step: StepDefinition,
        estimated: int,
        breakdown: dict[str, int],
        payload: str,
        draft: StepResult,
    ) -> None:
        decision = self.governor.check_before_step(step.id, step.kind, estimated, breakdown, payload)
        if not decision.allowed:
            raise TokenCeilingExceededError(
                decision.reason,
                step_id=step.id,
                estimated_tokens=decision.estimated_tokens,
                ceiling=decision.ceiling,
                largest_input=decision.largest_input,
                largest_input_tokens=decision.largest_input_tokens,
                recommendations=decision.recommendations,
            )
        if decision.warn:
            draft.warnings.append(decision.reason)

    def _call_with_retry(
        self,
        step: StepDefinition,
        draft: StepResult,
        extra: dict[str, Any],
        call: Callable[[], Any],
    ) -> Any:
        policy = step.retry or RetryPolicy(
            max_attempts=self.settings.retry_max_attempts,
            base_delay_s=self.settings.retry_base_delay_s,
        )
        attempt = 0
        while True:
            attempt += 1
            draft.attempts += 1
            try:
                return call()
            except ProviderError as e:
                if attempt >= policy.max_attempts:
                    e.details.setdefault("attempts", attempt)
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    "provider_call_retry",
                    extra={**extra, "attempt": attempt, "delay_s": delay, "error": e.message},
                )
                self._sleep(delay)

    def _add_usage(
        self,
        draft: StepResult,
        usage: LLMUsage,
        estimated_input: int,
        output: Any,
    ) -> None:
        input_tokens = usage.input_tokens if usage.input_tokens is not None else estimated_input
        output_tokens = (
            usage.output_tokens
            if usage.output_tokens is not None
            else self.governor.estimate(output if output is not None else "")
        )
        draft.input_tokens += input_tokens
        draft.output_tokens += output_tokens
        draft.cost_usd_estimate += self.settings.estimate_cost_usd(
            usage.model, input_tokens, output_tokens
        )


def _iter_arrays(value: Any, path: str):
    """Yield (path, list) for every list nested anywhere in ``value``."""
    if isinstance(value, list):
        yield path, value
        for index, item in enumerate(value):
            yield from _iter_arrays(item, f"{path}[{index}]")
    elif isinstance(value, dict):
        for key, item in value.items():
            yield from _iter_arrays(item, f"{path}.{key}")
