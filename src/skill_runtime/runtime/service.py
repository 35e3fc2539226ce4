"""Run service: synchronous admission, asynchronous completion."""
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as futures_wait
from typing import Any

from skill_runtime.config import Settings, get_settings
from skill_runtime.observability import get_logger
from skill_runtime.providers.anthropic import AnthropicReasoningProvider
from skill_runtime.providers.base import ClassificationProvider, ReasoningProvider
from skill_runtime.providers.fireworks import FireworksClassificationProvider
from skill_runtime.runtime.compute import get_compute_registry
from skill_runtime.runtime.contracts import RunRecord, TriggerType
from skill_runtime.runtime.errors import RunNotFoundError, SkillNotFoundError
from skill_runtime.runtime.orchestrator import ContextLoader, RunOrchestrator
from skill_runtime.runtime.recorder import RunRecorder
from skill_runtime.runtime.registry import SkillRegistry
from skill_runtime.runtime.tools import get_tool_registry
from skill_runtime.storage.run_store import RunStore, create_run_store

logger = get_logger(__name__)


class _ActiveRun:
    """A run admitted and not yet finished."""

    def __init__(self, record: RunRecord, cancel_event: threading.Event):
        self.record = record
        self.cancel_event = cancel_event
        self.lock = threading.Lock()
        self.future: Future | None = None


class SkillRunService:
    """
    Admits runs on the caller's thread and executes them on a worker pool.

    ``begin_run`` returns once the ``running`` record is written, so
    definition errors surface to the caller and every admitted run is
    pollable immediately.
    """

    def __init__(
        self,
        orchestrator: RunOrchestrator,
        skill_registry: SkillRegistry,
        store: RunStore,
        settings: Settings | None = None,
    ):
        self.orchestrator = orchestrator
        self.skill_registry = skill_registry
        self.store = store
        self.settings = settings or get_settings()
        self._pool = ThreadPoolExecutor(
            max_workers=self.settings.run_worker_count,
            thread_name_prefix="skill-run",
        )
        self._active: dict[str, _ActiveRun] = {}
        self._lock = threading.RLock()

    def begin_run(
        self,
        skill_id: str,
        tenant_id: str,
        trigger_type: TriggerType = TriggerType.MANUAL,
        params: dict[str, Any] | None = None,
    ) -> str:
        """
        Admit a run and schedule its execution.

        Args:
            skill_id: Registered skill ID
            tenant_id: Tenant the run is scoped to
            trigger_type: What started the run
            params: Run parameters

        Returns:
            Run ID

        Raises:
            SkillNotFoundError: If the skill is not registered
            SkillDefinitionError: If the definition fails validation
        """
        skill = self.skill_registry.get(skill_id)
        if skill is None:
            raise SkillNotFoundError(f"Skill not found: {skill_id}", skill_id=skill_id)

        record = self.orchestrator.admit_run(skill, tenant_id, trigger_type, params)
        active = _ActiveRun(record, threading.Event())

        with self._lock:
            self._active[record.run_id] = active
            active.future = self._pool.submit(
                self.orchestrator.execute_run, skill, record, active.cancel_event, active.lock
            )
            active.future.add_done_callback(lambda f, run_id=record.run_id: self._on_done(run_id, f))

        return record.run_id

    def _on_done(self, run_id: str, future: Future) -> None:
        with self._lock:
            self._active.pop(run_id, None)
        if not future.cancelled() and future.exception() is not None:
            logger.error(
                "run_worker_failed",
                extra={"run_id": run_id, "error": str(future.exception())},
            )

    def get_run(self, run_id: str) -> RunRecord:
        """
        Get the latest known state of a run.

        Raises:
            RunNotFoundError: If the run is unknown
        """
        with self._lock:
            active = self._active.get(run_id)
        if active is not None:
            with active.lock:
                return active.record.model_copy(deep=True)
        record = self.store.get_run(run_id)
        if record is not None:
            return record
        raise RunNotFoundError(f"Run not found: {run_id}", run_id=run_id)

    def list_runs(
        self,
        skill_id: str | None = None,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[RunRecord]:
        """List persisted runs, newest first."""
        return self.store.list_runs(skill_id=skill_id, tenant_id=tenant_id, limit=limit)

    def cancel_run(self, run_id: str) -> bool:
        """
        Request cancellation; observed before the run's next step.

        Returns:
            True if the run was still active
        """
        with self._lock:
            active = self._active.get(run_id)
        if active is None:
            return False
        with active.lock:
            if active.record.status.is_terminal:
                return False
        active.cancel_event.set()
        logger.info("run_cancel_requested", extra={"run_id": run_id})
        return True

    def wait(self, run_id: str, timeout: float | None = None) -> RunRecord:
        """
        Block until a run finishes.

        Raises:
            RunNotFoundError: If the run is unknown
            TimeoutError: If the run does not finish in time
        """
        with self._lock:
            active = self._active.get(run_id)
        if active is not None and active.future is not None:
            done, _ = futures_wait([active.future], timeout=timeout)
            if not done:
                raise TimeoutError(f"Run {run_id} did not finish within {timeout}s")
        return self.get_run(run_id)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting runs and optionally wait for active ones."""
        self._pool.shutdown(wait=wait)


def create_run_service(
    settings: Settings | None = None,
    store: RunStore | None = None,
    skill_registry: SkillRegistry | None = None,
    classifier: ClassificationProvider | None = None,
    reasoner: ReasoningProvider | None = None,
    context_loader: ContextLoader | None = None,
) -> SkillRunService:
    """
    Wire a run service from settings.

    Providers default to Fireworks (classify) and Anthropic (reason) when
    their API keys are configured. The global tool registry is frozen.
    Skills in ``skills_dir`` are loaded into the registry.
    """
    settings = settings or get_settings()
    tool_registry = get_tool_registry()
    compute_registry = get_compute_registry()
    tool_registry.freeze()

    if classifier is None and settings.fireworks_api_key is not None:
        classifier = FireworksClassificationProvider(settings)
    if reasoner is None and settings.anthropic_api_key is not None:
        reasoner = AnthropicReasoningProvider(settings)

    if skill_registry is None:
        skill_registry = SkillRegistry(settings, tool_registry, compute_registry)
        if settings.skills_dir is not None:
            skill_registry.load_dir(settings.skills_dir)

    store = store or create_run_store(settings)
    orchestrator = RunOrchestrator(
        RunRecorder(store),
        classifier=classifier,
        reasoner=reasoner,
        tool_registry=tool_registry,
        compute_registry=compute_registry,
        context_loader=context_loader,
        settings=settings,
    )
    return SkillRunService(orchestrator, skill_registry, store, settings)
