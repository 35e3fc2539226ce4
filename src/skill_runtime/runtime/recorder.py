"""Fire-and-forget run persistence."""
from skill_runtime.observability import get_logger
from skill_runtime.runtime.contracts import RunRecord, StepResult
from skill_runtime.storage.run_store import RunStore

logger = get_logger(__name__)


class RunRecorder:
    """
    Writes run records to a store without ever failing the run.

    A store outage degrades observability only: every write error is
    logged as ``run_store_write_failed`` and the run carries on.
    """

    def __init__(self, store: RunStore):
        self.store = store

    def record_start(self, record: RunRecord) -> bool:
        """Persist the ``running`` record at admission."""
        try:
            self.store.create_run(record)
            return True
        except Exception:
            self._log_failure("create_run", record.run_id)
            return False

    def record_step(self, run_id: str, result: StepResult) -> bool:
        """Persist one step result."""
        try:
            self.store.append_step_result(run_id, result)
            return True
        except Exception:
            self._log_failure("append_step_result", run_id, step_id=result.step_id)
            return False

    def record_final(self, record: RunRecord) -> bool:
        """
        Persist the terminal record.

        Returns:
            True if the store accepted this as the run's final write
        """
        try:
            return self.store.finalize_run(record.run_id, record.status, record)
        except Exception:
            self._log_failure("finalize_run", record.run_id)
            return False

    def _log_failure(self, operation: str, run_id: str, **extra) -> None:
        logger.error(
            "run_store_write_failed",
            extra={"operation": operation, "run_id": run_id, **extra},
            exc_info=True,
        )
