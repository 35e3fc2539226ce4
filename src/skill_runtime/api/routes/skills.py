"""Skill catalog and run admission routes."""
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from skill_runtime.api.dependencies import get_run_service
from skill_runtime.observability import get_logger
from skill_runtime.runtime.contracts import StepKind, TriggerType
from skill_runtime.runtime.service import SkillRunService

logger = get_logger(__name__)
router = APIRouter()


class StepSummary(BaseModel):
    """Step as listed in the skill catalog."""

    id: str
    kind: StepKind
    inputs: list[str]
    output_key: str
    critical: bool
    tools: list[str] | None = None


class SkillSummary(BaseModel):
    """Skill as listed in the skill catalog."""

    id: str
    name: str | None = None
    version: str
    description: str | None = None
    output_format: str
    steps: list[StepSummary]


class BeginRunRequest(BaseModel):
    """Request model for starting a run."""

    tenant_id: str = Field(..., min_length=1, description="Tenant the run is scoped to")
    trigger_type: TriggerType = Field(default=TriggerType.MANUAL, description="What started the run")
    params: dict[str, Any] = Field(default_factory=dict, description="Run parameters")


class BeginRunResponse(BaseModel):
    """Response model for an admitted run."""

    run_id: str = Field(..., description="Run ID")
    skill_id: str = Field(..., description="Skill ID")
    status: str = Field(..., description="Run status")


@router.get("/v1/skills", response_model=list[SkillSummary])
def list_skills(service: SkillRunService = Depends(get_run_service)) -> list[SkillSummary]:
    """List registered skills."""
    return [
        SkillSummary(
            id=skill.id,
            name=skill.name,
            version=skill.version,
            description=skill.description,
            output_format=skill.output_format.value,
            steps=[
                StepSummary(
                    id=step.id,
                    kind=step.kind,
                    inputs=step.inputs,
                    output_key=step.result_key,
                    critical=step.critical,
                    tools=step.tools,
                )
                for step in skill.steps
            ],
        )
        for skill in service.skill_registry.list_skills()
    ]


@router.post("/v1/skills/{skill_id}/runs", response_model=BeginRunResponse, status_code=202)
def begin_run(
    skill_id: str,
    request: BeginRunRequest,
    service: SkillRunService = Depends(get_run_service),
) -> BeginRunResponse:
    """
    Admit a run; execution continues in the background.

    Args:
        skill_id: Skill to run
        request: Run request

    Returns:
        Run ID and initial status
    """
    run_id = service.begin_run(
        skill_id,
        request.tenant_id,
        trigger_type=request.trigger_type,
        params=request.params,
    )
    logger.info(
        "run_admitted_via_api",
        extra={"run_id": run_id, "skill_id": skill_id, "tenant_id": request.tenant_id},
    )
    return BeginRunResponse(run_id=run_id, skill_id=skill_id, status="running")
