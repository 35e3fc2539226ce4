"""Shared API dependencies."""
from skill_runtime.runtime.service import create_run_service, SkillRunService

_run_service: SkillRunService | None = None


def get_run_service() -> SkillRunService:
    """Get or create the run service used by the API."""
    global _run_service
    if _run_service is None:
        _run_service = create_run_service()
    return _run_service


def set_run_service(service: SkillRunService | None) -> None:
    """Install a run service (``None`` resets to lazy creation)."""
    global _run_service
    _run_service = service
