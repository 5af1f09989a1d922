"""
Job management routes.
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Header, Query, Response, status

from jobqueue.api.dependencies import Actor, JobQueueDep, OrganizationId
from jobqueue.constants import API_V1_PREFIX, DEFAULT_LIST_LIMIT, IDEMPOTENCY_KEY_HEADER, JobStatus
from jobqueue.types.api import CreateJobRequest, JobListResponse, JobResponse
from jobqueue.types.job import EnqueueRequest, JobStats

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])


@router.post(
    "",
    response_model=JobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue a job",
    description="Enqueue a new job. An active job with the same idempotency key is returned instead.",
)
async def create_job(
    request: CreateJobRequest,
    response: Response,
    job_queue: JobQueueDep,
    organization_id: OrganizationId,
    actor: Actor,
    idempotency_key: Annotated[str | None, Header(alias=IDEMPOTENCY_KEY_HEADER)] = None,
) -> JobResponse:
    """
    Enqueue a job.

    Enqueue is idempotent on (organization_id, idempotency_key) while the
    first job is queued or processing; the existing job is returned with 200.
    """
    job, created = await job_queue.submit(
        EnqueueRequest(
            organization_id=organization_id,
            job_type=request.job_type,
            payload=request.payload,
            priority=request.priority,
            scheduled_for=request.scheduled_for,
            triggered_by=actor,
            idempotency_key=idempotency_key,
            max_retries=request.max_retries,
        )
    )

    if not created:
        response.status_code = status.HTTP_200_OK

    return JobResponse.model_validate(job)


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List the organization's jobs, newest first, with optional filtering.",
)
async def list_jobs(
    job_queue: JobQueueDep,
    organization_id: OrganizationId,
    status: JobStatus | None = Query(default=None),
    job_type: str | None = Query(default=None),
    limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> JobListResponse:
    jobs = await job_queue.list_jobs(
        organization_id,
        status=status,
        job_type=job_type,
        limit=limit,
        offset=offset,
    )

    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        count=len(jobs),
        limit=limit,
        offset=offset,
    )


@router.get(
    "/stats",
    response_model=JobStats,
    summary="Get job statistics",
    description="Point-in-time job counts by status and by job type.",
)
async def get_job_stats(
    job_queue: JobQueueDep,
    organization_id: OrganizationId,
) -> JobStats:
    return await job_queue.get_stats(organization_id)


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(
    job_id: UUID,
    job_queue: JobQueueDep,
    organization_id: OrganizationId,
) -> JobResponse:
    job = await job_queue.get_job(job_id, organization_id)
    return JobResponse.model_validate(job)


@router.post(
    "/{job_id}/cancel",
    response_model=JobResponse,
    summary="Cancel a job",
    description="Cancel a queued or processing job. A running processor is not interrupted.",
)
async def cancel_job(
    job_id: UUID,
    job_queue: JobQueueDep,
    organization_id: OrganizationId,
    actor: Actor,
) -> JobResponse:
    job = await job_queue.cancel(job_id, actor=actor, organization_id=organization_id)

    logger.info(
        "Job cancelled via API",
        extra={"job_id": str(job_id), "organization_id": organization_id, "actor": actor},
    )

    return JobResponse.model_validate(job)


@router.post(
    "/{job_id}/replay",
    response_model=JobResponse,
    summary="Replay a dead-lettered job",
    description="Return a dead-lettered job to the queue with its retry count reset.",
)
async def replay_job(
    job_id: UUID,
    job_queue: JobQueueDep,
    organization_id: OrganizationId,
    actor: Actor,
) -> JobResponse:
    job = await job_queue.replay_dead_letter(
        job_id, actor=actor, organization_id=organization_id
    )

    logger.info(
        "Job replayed from dead letter via API",
        extra={"job_id": str(job_id), "organization_id": organization_id, "actor": actor},
    )

    return JobResponse.model_validate(job)
