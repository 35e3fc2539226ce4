"""Run record persistence."""
import threading
from abc import ABC, abstractmethod

import redis

from skill_runtime.config import Settings, get_settings
from skill_runtime.observability import get_logger
from skill_runtime.runtime.contracts import RunRecord, RunStatus, StepResult

logger = get_logger(__name__)


class RunStore(ABC):
    """
    Durable store for run records.

    ``finalize_run`` is write-once: only the first call for a run is
    persisted, later calls return False and change nothing.
    """

    @abstractmethod
    def create_run(self, record: RunRecord) -> None:
        """Persist a newly admitted run."""
        pass

    @abstractmethod
    def append_step_result(self, run_id: str, result: StepResult) -> None:
        """Persist one step result of a running run."""
        pass

    @abstractmethod
    def finalize_run(self, run_id: str, status: RunStatus, record: RunRecord) -> bool:
        """
        Persist the terminal record.

        Args:
            run_id: Run ID
            status: Terminal status
            record: Finalized record

        Returns:
            True if this call finalized the run, False if it was already final
        """
        pass

    @abstractmethod
    def get_run(self, run_id: str) -> RunRecord | None:
        """Get a run by ID."""
        pass

    @abstractmethod
    def list_runs(
        self,
        skill_id: str | None = None,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[RunRecord]:
        """List runs, newest first."""
        pass


def _matches(record: RunRecord, skill_id: str | None, tenant_id: str | None) -> bool:
    if skill_id is not None and record.skill_id != skill_id:
        return False
    if tenant_id is not None and record.tenant_id != tenant_id:
        return False
    return True


class InMemoryRunStore(RunStore):
    """Process-local store guarded by a lock. Records are copied in and out."""

    def __init__(self):
        self._runs: dict[str, RunRecord] = {}
        self._finalized: set[str] = set()
        self._lock = threading.Lock()

    def create_run(self, record: RunRecord) -> None:
        with self._lock:
            if record.run_id in self._finalized:
                return
            self._runs[record.run_id] = record.model_copy(deep=True)

    def append_step_result(self, run_id: str, result: StepResult) -> None:
        with self._lock:
            record = self._runs.get(run_id)
            if record is None or run_id in self._finalized:
                logger.warning("run_store_append_ignored", extra={"run_id": run_id})
                return
            record.steps[result.step_id] = result.model_copy(deep=True)

    def finalize_run(self, run_id: str, status: RunStatus, record: RunRecord) -> bool:
        with self._lock:
            if run_id in self._finalized:
                return False
            stored = record.model_copy(deep=True)
            stored.status = status
            self._runs[run_id] = stored
            self._finalized.add(run_id)
            return True

    def get_run(self, run_id: str) -> RunRecord | None:
        with self._lock:
            record = self._runs.get(run_id)
            return record.model_copy(deep=True) if record is not None else None

    def list_runs(
        self,
        skill_id: str | None = None,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[RunRecord]:
        with self._lock:
            records = [r for r in self._runs.values() if _matches(r, skill_id, tenant_id)]
        records.sort(key=lambda r: r.started_at, reverse=True)
        return [r.model_copy(deep=True) for r in records[:limit]]


class RedisRunStore(RunStore):
    """
    Redis-backed store.

    Keys:
    - ``run:{id}``: record JSON
    - ``run:{id}:final``: terminal status, claimed with SET NX
    - ``runs``: sorted set of run IDs scored by start time
    """

    def __init__(self, redis_client: redis.Redis | None = None, settings: Settings | None = None):
        """
        Initialize run store.

        Args:
            redis_client: Optional Redis client (will create one if not provided)
            settings: Settings used to build the client
        """
        if redis_client is None:
            settings = settings or get_settings()
            self.redis_client = redis.from_url(settings.redis_url, decode_responses=True)
        else:
            self.redis_client = redis_client

        self._run_prefix = "run:"
        self._index_key = "runs"

    def _run_key(self, run_id: str) -> str:
        """Get Redis key for a run."""
        return f"{self._run_prefix}{run_id}"

    def _final_key(self, run_id: str) -> str:
        """Get Redis key for a run's finalize marker."""
        return f"{self._run_prefix}{run_id}:final"

    def create_run(self, record: RunRecord) -> None:
        if self.redis_client.get(self._final_key(record.run_id)) is not None:
            return
        self.redis_client.set(self._run_key(record.run_id), record.model_dump_json())
        self.redis_client.zadd(self._index_key, {record.run_id: record.started_at.timestamp()})
        logger.info(
            "run_created",
            extra={"run_id": record.run_id, "skill_id": record.skill_id},
        )

    def append_step_result(self, run_id: str, result: StepResult) -> None:
        if self.redis_client.get(self._final_key(run_id)) is not None:
            logger.warning("run_store_append_ignored", extra={"run_id": run_id})
            return
        record = self.get_run(run_id)
        if record is None:
            logger.error("run_not_found", extra={"run_id": run_id})
            return
        record.steps[result.step_id] = result
        self.redis_client.set(self._run_key(run_id), record.model_dump_json())

    def finalize_run(self, run_id: str, status: RunStatus, record: RunRecord) -> bool:
        if not self.redis_client.set(self._final_key(run_id), status.value, nx=True):
            logger.warning(
                "run_already_finalized",
                extra={"run_id": run_id, "status": status.value},
            )
            return False
        stored = record.model_copy(update={"status": status})
        self.redis_client.set(self._run_key(run_id), stored.model_dump_json())
        self.redis_client.zadd(self._index_key, {run_id: record.started_at.timestamp()})
        logger.info("run_finalized", extra={"run_id": run_id, "status": status.value})
        return True

    def get_run(self, run_id: str) -> RunRecord | None:
        """
        Get run by ID.

        Args:
            run_id: Run ID

        Returns:
            RunRecord if found, None otherwise
        """
        data = self.redis_client.get(self._run_key(run_id))
        if data is None:
            return None
        return RunRecord.model_validate_json(data)

    def list_runs(
        self,
        skill_id: str | None = None,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[RunRecord]:
        records = []
        for run_id in self.redis_client.zrevrange(self._index_key, 0, -1):
            record = self.get_run(run_id)
            if record is not None and _matches(record, skill_id, tenant_id):
                records.append(record)
                if len(records) >= limit:
                    break
        return records


def create_run_store(settings: Settings | None = None) -> RunStore:
    """Build the run store selected by settings."""
    settings = settings or get_settings()
    if settings.run_store == "redis":
        return RedisRunStore(settings=settings)
    return InMemoryRunStore()
