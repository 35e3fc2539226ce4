"""Storage package."""
from skill_runtime.storage.run_store import (
    create_run_store,
    InMemoryRunStore,
    RedisRunStore,
    RunStore,
)

__all__ = ["create_run_store", "InMemoryRunStore", "RedisRunStore", "RunStore"]
