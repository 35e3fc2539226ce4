"""Health check routes."""
from fastapi import APIRouter

from skill_runtime import __version__
from skill_runtime.config import get_settings

router = APIRouter()


@router.get("/health")
def health_check() -> dict:
    """
    Health check endpoint.

    Reports configuration only; providers and the run store are not probed.

    Returns:
        Status dict
    """
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "skill-runtime",
        "version": __version__,
        "run_store": settings.run_store,
    }
