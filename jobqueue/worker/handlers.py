"""
Job handlers registry and implementations.

A handler is a processor: it receives the job payload and the job, returns a
JSON-serializable result, and raises to fail the attempt.

Job handlers must be idempotent - they may be executed multiple times
for the same job when a lease expires or a worker crashes.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from jobqueue.db.models import Job
from jobqueue.exceptions import UnknownJobTypeError

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[dict[str, Any], Job], Awaitable[Any]]

# Handler registry
_handlers: dict[str, JobHandler] = {}


def register_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Args:
        job_type: The job type this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("send_invoice")
        async def handle_send_invoice(payload: dict, job: Job) -> dict:
            ...
    """

    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[job_type] = handler
        logger.info(f"Registered handler for job type: {job_type}")
        return handler

    return decorator


def get_handler(job_type: str) -> JobHandler | None:
    """
    Get the handler for a job type.

    Args:
        job_type: The job type.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(job_type)


def list_handlers() -> list[str]:
    """List all registered job types."""
    return list(_handlers.keys())


async def dispatch(payload: dict[str, Any], job: Job) -> Any:
    """
    Processor that routes a job to the handler registered for its type.

    Raises:
        UnknownJobTypeError: If no handler is registered for `job.job_type`.
    """
    handler = get_handler(job.job_type)
    if handler is None:
        logger.error(
            f"No handler for job type: {job.job_type}",
            extra={"job_id": str(job.id)},
        )
        raise UnknownJobTypeError(job.job_type)
    return await handler(payload, job)


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler("echo")
async def handle_echo(payload: dict[str, Any], job: Job) -> dict[str, Any]:
    """
    Echo handler for testing.

    Simply returns the input payload as output.
    """
    logger.info(
        "Echo job executing",
        extra={"job_id": str(job.id), "retry_count": job.retry_count},
    )
    return {"echo": payload}


@register_handler("sleep")
async def handle_sleep(payload: dict[str, Any], job: Job) -> dict[str, Any]:
    """
    Sleep handler for testing delays and timeouts.

    Payload should contain:
    - duration_seconds: How long to sleep
    """
    duration = payload.get("duration_seconds", 1)

    logger.info(
        "Sleep job starting",
        extra={"job_id": str(job.id), "duration": duration},
    )

    await asyncio.sleep(duration)
    return {"slept_for": duration}


@register_handler("failing_job")
async def handle_failing_job(payload: dict[str, Any], job: Job) -> Any:
    """
    Handler that always fails - for testing retry logic.
    """
    logger.info(
        "Failing job executing (will fail)",
        extra={"job_id": str(job.id), "retry_count": job.retry_count},
    )
    raise RuntimeError(f"Intentional failure on attempt {job.retry_count + 1}")


@register_handler("webhook")
async def handle_webhook(payload: dict[str, Any], job: Job) -> dict[str, Any]:
    """
    Make an HTTP request.

    Payload should contain:
    - url: The URL to request
    - method: HTTP method (default POST)
    - headers: Optional headers
    - body: Optional JSON request body

    A non-2xx response fails the attempt.
    """
    url = payload.get("url")
    if not url:
        raise ValueError("Missing 'url' in payload")

    method = payload.get("method", "POST").upper()
    body = payload.get("body")

    logger.info(
        "Webhook job",
        extra={"job_id": str(job.id), "method": method, "url": url},
    )

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.request(
            method=method,
            url=url,
            headers={"X-Correlation-ID": job.correlation_id, **payload.get("headers", {})},
            json=body if method in ["POST", "PUT", "PATCH"] else None,
        )
        response.raise_for_status()

    return {
        "status_code": response.status_code,
        "body": response.text[:1000],  # Truncate response
    }
