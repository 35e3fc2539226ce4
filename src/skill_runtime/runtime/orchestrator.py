"""Run orchestrator: validates a skill and drives its steps to a terminal state."""
import threading
import time
import uuid
from contextlib import AbstractContextManager, nullcontext
from typing import Any, Callable

from skill_runtime.config import Settings, get_settings
from skill_runtime.observability import get_logger, with_trace_context
from skill_runtime.providers.base import ClassificationProvider, ReasoningProvider
from skill_runtime.runtime.budget import TokenBudgetGovernor
from skill_runtime.runtime.compute import ComputeRegistry, get_compute_registry
from skill_runtime.runtime.contracts import (
    ExecutionContext,
    RunRecord,
    RunStatus,
    SkillDefinition,
    TriggerType,
)
from skill_runtime.runtime.executor import StepExecutor
from skill_runtime.runtime.recorder import RunRecorder
from skill_runtime.runtime.tools import ToolRegistry, get_tool_registry
from skill_runtime.runtime.validation import validate_skill_definition

logger = get_logger(__name__)

ContextLoader = Callable[[str], dict[str, Any]]


class RunOrchestrator:
    """
    Executes skills step by step for one tenant per run.

    Each run gets its own governor and executor; the orchestrator itself
    holds only read-only collaborators and may serve concurrent runs.
    """

    def __init__(
        self,
        recorder: RunRecorder,
        classifier: ClassificationProvider | None = None,
        reasoner: ReasoningProvider | None = None,
        tool_registry: ToolRegistry | None = None,
        compute_registry: ComputeRegistry | None = None,
        context_loader: ContextLoader | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            recorder: Run recorder
            classifier: Classification provider for classify steps
            reasoner: Reasoning provider for reason steps
            tool_registry: Tools available to reason steps
            compute_registry: Compute functions available to compute steps
            context_loader: Loads a tenant's workspace context
            settings: Runtime settings
            sleep: Backoff sleep (replaceable in tests)
        """
        self.recorder = recorder
        self.classifier = classifier
        self.reasoner = reasoner
        self.settings = settings or get_settings()
        self.tool_registry = tool_registry or get_tool_registry()
        self.compute_registry = compute_registry or get_compute_registry()
        self.context_loader = context_loader
        self._sleep = sleep

    def begin_run(
        self,
        skill: SkillDefinition,
        tenant_id: str,
        trigger_type: TriggerType = TriggerType.MANUAL,
        params: dict[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RunRecord:
        """
        Admit and execute a run to completion.

        Raises:
            SkillDefinitionError: If the definition is invalid (no record is created)
        """
        record = self.admit_run(skill, tenant_id, trigger_type, params)
        return self.execute_run(skill, record, cancel_event)

    def admit_run(
        self,
        skill: SkillDefinition,
        tenant_id: str,
        trigger_type: TriggerType = TriggerType.MANUAL,
        params: dict[str, Any] | None = None,
    ) -> RunRecord:
        """
        Validate the definition and write the ``running`` record.

        Args:
            skill: Skill to run
            tenant_id: Tenant the run is scoped to
            trigger_type: What started the run
            params: Run parameters

        Returns:
            RunRecord in ``running`` state

        Raises:
            SkillDefinitionError: If the definition is invalid
        """
        validate_skill_definition(
            skill,
            settings=self.settings,
            tool_registry=self.tool_registry,
            compute_registry=self.compute_registry,
        )

        record = RunRecord(
            run_id=str(uuid.uuid4()),
            skill_id=skill.id,
            skill_version=skill.version,
            tenant_id=tenant_id,
            trigger_type=trigger_type,
            params=params or {},
            output_format=skill.output_format,
        )
        self.recorder.record_start(record)
        logger.info(
            "run_admitted",
            extra=with_trace_context(
                run_id=record.run_id,
                skill_id=skill.id,
                tenant_id=tenant_id,
                trigger_type=trigger_type.value,
                step_count=len(skill.steps),
            ),
        )
        return record

    def execute_run(
        self,
        skill: SkillDefinition,
        record: RunRecord,
        cancel_event: threading.Event | None = None,
        record_lock: AbstractContextManager | None = None,
    ) -> RunRecord:
        """
        Execute every step of an admitted run and finalize it.

        Args:
            skill: Skill the run was admitted for
            record: Record returned by ``admit_run``
            cancel_event: Checked before each step
            record_lock: Held while the record is mutated, for readers on other threads

        Returns:
            The finalized RunRecord
        """
        extra = with_trace_context(
            run_id=record.run_id,
            skill_id=record.skill_id,
            tenant_id=record.tenant_id,
        )
        governor = TokenBudgetGovernor.from_settings(self.settings, **extra)
        lock = record_lock if record_lock is not None else nullcontext()

        try:
            workspace = self._build_workspace(skill, record)
            context = ExecutionContext(
                run_id=record.run_id,
                skill_id=record.skill_id,
                tenant_id=record.tenant_id,
                workspace=workspace,
            )
            executor = StepExecutor(
                context,
                governor,
                classifier=self.classifier,
                reasoner=self.reasoner,
                compute_registry=self.compute_registry,
                tool_registry=self.tool_registry,
                settings=self.settings,
                sleep=self._sleep,
            )
            status, error, failed_step, output = self._run_steps(
                skill, record, executor, governor, workspace, cancel_event, lock
            )
        except Exception as e:
            logger.error("run_execution_error", extra=extra, exc_info=True)
            with lock:
                record.over_budget = governor.over_budget
                record.finalize(RunStatus.FAILED, error=f"{type(e).__name__}: {e}")
            self.recorder.record_final(record)
            raise

        with lock:
            record.over_budget = governor.over_budget
            record.finalize(status, output=output, error=error, failed_step=failed_step)
        self.recorder.record_final(record)

        logger.info(
            "run_finalized",
            extra={
                **extra,
                "status": status.value,
                "duration_ms": record.duration_ms,
                "total_tokens": record.token_usage.total,
                "over_budget": record.over_budget,
                "failed_step": failed_step,
            },
        )
        return record

    def _run_steps(
        self,
        skill: SkillDefinition,
        record: RunRecord,
        executor: StepExecutor,
        governor: TokenBudgetGovernor,
        workspace: dict[str, Any],
        cancel_event: threading.Event | None,
        lock: AbstractContextManager,
    ) -> tuple[RunStatus, str | None, str | None, Any]:
        step_outputs: dict[str, Any] = {}
        output = None

        for step in skill.steps:
            if cancel_event is not None and cancel_event.is_set():
                return RunStatus.CANCELLED, f"Run cancelled before step '{step.id}'", None, output

            result = executor.execute_step(step, step_outputs, workspace)
            with lock:
                record.append_step_result(result)
            if self.settings.record_step_results:
                self.recorder.record_step(record.run_id, result)

            if result.succeeded:
                step_outputs[step.result_key] = result.output
                step_outputs[step.id] = result.output
                output = result.output
            elif step.critical or not result.error.recoverable:
                return (
                    RunStatus.FAILED,
                    f"Step '{step.id}' failed ({result.error.type}): {result.error.message}",
                    step.id,
                    output,
                )

            if governor.hard_ceiling_exceeded:
                return (
                    RunStatus.FAILED,
                    f"Run used {governor.total_tokens} tokens, over the "
                    f"{governor.run_hard_ceiling_tokens} token run ceiling",
                    step.id,
                    output,
                )

        status = RunStatus.PARTIAL if record.failed_steps() else RunStatus.COMPLETED
        return status, None, None, output

    def _build_workspace(self, skill: SkillDefinition, record: RunRecord) -> dict[str, Any]:
        workspace: dict[str, Any] = {}
        if self.context_loader is not None:
            workspace.update(self.context_loader(record.tenant_id) or {})
        workspace.update(record.params)
        workspace["time_config"] = {
            **skill.time_config,
            **(record.params.get("time_config") or {}),
        }
        return workspace
