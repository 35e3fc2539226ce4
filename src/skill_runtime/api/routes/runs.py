"""Run status routes."""
from fastapi import APIRouter, Depends, HTTPException, Query

from skill_runtime.api.dependencies import get_run_service
from skill_runtime.runtime.contracts import RunRecord
from skill_runtime.runtime.service import SkillRunService

router = APIRouter()


@router.get("/v1/runs", response_model=list[RunRecord])
def list_runs(
    skill_id: str | None = None,
    tenant_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    service: SkillRunService = Depends(get_run_service),
) -> list[RunRecord]:
    """List runs, newest first."""
    return service.list_runs(skill_id=skill_id, tenant_id=tenant_id, limit=limit)


@router.get("/v1/runs/{run_id}", response_model=RunRecord)
def get_run(run_id: str, service: SkillRunService = Depends(get_run_service)) -> RunRecord:
    """
    Get run status and step results.

    Raises:
        RunNotFoundError: Mapped to 404
    """
    return service.get_run(run_id)


@router.post("/v1/runs/{run_id}/cancel")
def cancel_run(run_id: str, service: SkillRunService = Depends(get_run_service)) -> dict:
    """
    Request cancellation of an active run.

    Raises:
        HTTPException: 409 if the run is no longer active
    """
    if service.cancel_run(run_id):
        return {"run_id": run_id, "cancel_requested": True}
    record = service.get_run(run_id)
    raise HTTPException(
        status_code=409,
        detail=f"Run {run_id} is not active (status: {record.status.value})",
    )
