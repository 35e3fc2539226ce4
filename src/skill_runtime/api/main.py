"""FastAPI application."""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from skill_runtime import __version__
from skill_runtime.api.routes import health, runs, skills
from skill_runtime.observability import setup_logging
from skill_runtime.runtime.errors import (
    RunNotFoundError,
    SkillDefinitionError,
    SkillNotFoundError,
)

# Setup logging
setup_logging()

# Create FastAPI app
app = FastAPI(
    title="Skill Runtime",
    description="Governed execution of compute, classify and reason skill pipelines",
    version=__version__,
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(skills.router, tags=["skills"])
app.include_router(runs.router, tags=["runs"])


@app.exception_handler(SkillNotFoundError)
@app.exception_handler(RunNotFoundError)
def not_found_handler(request: Request, exc: SkillNotFoundError | RunNotFoundError) -> JSONResponse:
    """Map lookup failures to 404."""
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(SkillDefinitionError)
def definition_error_handler(request: Request, exc: SkillDefinitionError) -> JSONResponse:
    """Map definition errors to 422 with the structured error."""
    return JSONResponse(
        status_code=422,
        content={
            "detail": exc.message,
            "error_type": exc.error_type,
            "details": {k: v for k, v in exc.details.items() if v is not None},
        },
    )


@app.get("/")
def root() -> dict:
    """Root endpoint."""
    return {
        "service": "skill-runtime",
        "version": __version__,
        "docs": "/docs",
    }
