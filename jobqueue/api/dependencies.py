"""
Request-scoped dependencies shared by the routers.
"""

from typing import Annotated

from fastapi import Depends, Header, Request

from jobqueue.constants import ACTOR_HEADER, DEFAULT_TRIGGERED_BY, ORGANIZATION_ID_HEADER
from jobqueue.queue.service import JobQueue


def get_job_queue(request: Request) -> JobQueue:
    """The queue the application was started with."""
    return request.app.state.job_queue


def get_actor(actor: Annotated[str | None, Header(alias=ACTOR_HEADER)] = None) -> str:
    """Actor recorded on audit events; defaults to the system actor."""
    return actor or DEFAULT_TRIGGERED_BY


JobQueueDep = Annotated[JobQueue, Depends(get_job_queue)]
OrganizationId = Annotated[str, Header(alias=ORGANIZATION_ID_HEADER, min_length=1)]
Actor = Annotated[str, Depends(get_actor)]
