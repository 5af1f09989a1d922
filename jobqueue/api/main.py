"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from jobqueue import __version__
from jobqueue.api.routes import health_router, jobs_router
from jobqueue.config import get_settings
from jobqueue.db import close_db
from jobqueue.exceptions import InvalidStateError, JobNotFoundError
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import setup_metrics
from jobqueue.observability.tracing import instrument_fastapi, setup_tracing
from jobqueue.queue.service import JobQueue
from jobqueue.types.api import ErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events. A queue passed to create_app is
    used as is and left open on shutdown.
    """
    owns_queue = app.state.job_queue is None

    # Startup
    setup_logging()
    setup_metrics()
    setup_tracing()
    if owns_queue:
        app.state.job_queue = await JobQueue.create()

    logger.info("Application started")

    yield

    # Shutdown
    if owns_queue:
        await close_db()
        app.state.job_queue = None
    logger.info("Application shutdown")


async def job_not_found_handler(request: Request, exc: JobNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(error="not_found", detail=str(exc)).model_dump(),
    )


async def invalid_state_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=ErrorResponse(error="invalid_state", detail=str(exc)).model_dump(),
    )


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(error="validation_error", detail=str(exc)).model_dump(),
    )


def create_app(job_queue: JobQueue | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        job_queue: Queue to serve. Built from settings at startup when omitted.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Job Queue API",
        description="Tenant-scoped background job queue with retries and dead-letter",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.job_queue = job_queue

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(JobNotFoundError, job_not_found_handler)
    app.add_exception_handler(InvalidStateError, invalid_state_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)

    # Include routers
    app.include_router(health_router)
    app.include_router(jobs_router)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
