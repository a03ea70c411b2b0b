"""
FastAPI application entry point.

Accepts job submissions and GitHub webhooks, and exposes read-only job
and queue views. Jobs are executed by worker processes spawned by the
worker controller, never inside the API process.

Optional API key authentication guards /api/jobs and /api/queue.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..infra.config import Settings, get_settings
from ..orchestrator.errors import (
    JobNotFoundError,
    TransientInfrastructureError,
    UnknownKindError,
    ValidationError,
)
from ..orchestrator.service import JobOrchestrator
from ._services_state import init_orchestrator, shutdown_orchestrator
from .dependencies.auth import verify_api_key
from .routers import health, jobs, queue, webhooks

logger = logging.getLogger(__name__)


# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "jobs",
        "description": "Job submission and read-only job views",
    },
    {
        "name": "queue",
        "description": "Work queue depth (waiting, active, delayed, dead)",
    },
    {
        "name": "webhooks",
        "description": "GitHub webhook ingestion - HMAC-SHA256 verified",
    },
    {
        "name": "health",
        "description": "Job store and queue reachability",
    },
]


HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


def register_exception_handlers(app: FastAPI) -> None:
    """Translate errors into small JSON bodies carrying an "error" code."""

    @app.exception_handler(UnknownKindError)
    async def unknown_kind_handler(request: Request, exc: UnknownKindError):
        return JSONResponse(status_code=400, content={"error": "unknown_job_type", "type": exc.kind})

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_request_body", "details": exc.details},
        )

    @app.exception_handler(JobNotFoundError)
    async def job_not_found_handler(request: Request, exc: JobNotFoundError):
        return JSONResponse(status_code=404, content={"error": "job_not_found", "job_id": exc.job_id})

    @app.exception_handler(TransientInfrastructureError)
    async def infrastructure_handler(request: Request, exc: TransientInfrastructureError):
        logger.error(f"[API] Infrastructure error on {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"error": "service_unavailable"})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": HTTP_ERROR_CODES.get(exc.status_code, "http_error"), "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"[API] Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "internal_server_error"})


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[JobOrchestrator] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Runtime settings (default: get_settings())
        orchestrator: Pre-built orchestrator (tests inject one)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Creates the orchestrator singleton on startup and releases it on
        shutdown. The worker controller is not started here.
        """
        resolved = settings or get_settings()
        init_orchestrator(resolved, orchestrator=orchestrator)
        logger.info("[API] Orchestrator initialized")

        yield

        shutdown_orchestrator()
        logger.info("[API] Orchestrator released")

    app = FastAPI(
        title="cloudjobs API",
        lifespan=lifespan,
        description="""
## cloudjobs API

Asynchronous job orchestration for long-running automation tasks.

### Authentication
When `API_AUTH_ENABLED=true`, `/api/jobs` and `/api/queue` require an
`X-API-Key` header matching the `API_KEY` environment variable.
`/api/webhooks/github` is verified by its HMAC signature instead.

### Usage
```bash
# Start server
cloudjobs serve --host 127.0.0.1 --port 8000

# Submit a job
curl -X POST http://localhost:8000/api/jobs \\
  -H "Content-Type: application/json" \\
  -d '{"type": "task.execute", "payload": {"prompt": "Update the changelog"}}'
```
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=tags_metadata,
    )

    register_exception_handlers(app)

    auth_dependency = [Depends(verify_api_key)]

    app.include_router(
        jobs.router, prefix="/api/jobs", tags=["jobs"], dependencies=auth_dependency
    )
    app.include_router(
        queue.router, prefix="/api/queue", tags=["queue"], dependencies=auth_dependency
    )
    app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
    app.include_router(health.router, prefix="/api/health", tags=["health"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
