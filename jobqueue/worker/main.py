"""
Worker process for executing jobs.

The worker is an external driver of the queue core: it polls for due jobs
and hands each id to JobQueue.process_job, which claims, runs and records
the attempt. Retry and dead-letter decisions stay inside the core.
"""

import asyncio
import logging
import os
import signal
from datetime import timedelta
from uuid import UUID

from jobqueue.config import get_settings
from jobqueue.db import close_db
from jobqueue.exceptions import JobNotFoundError, ProcessorFailure
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.tracing import setup_tracing
from jobqueue.queue.coordinator import Processor
from jobqueue.queue.service import JobQueue
from jobqueue.worker.handlers import dispatch

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Atomic claim per job (compare-and-swap in the queue core)
    - Optional per-job timeout, recorded as a TIMEOUT failure
    - Heartbeat to extend leases for long-running jobs
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        job_queue: JobQueue,
        processor: Processor = dispatch,
        worker_id: str | None = None,
        batch_size: int | None = None,
        poll_interval: float | None = None,
        job_timeout: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            job_queue: The queue to drive.
            processor: Callable run for every job. Defaults to handler dispatch.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            batch_size: Number of due jobs to pick up per poll.
            poll_interval: Seconds between polls when queue is empty.
            job_timeout: Seconds a job may run before the attempt fails.
        """
        settings = get_settings()

        self.job_queue = job_queue
        self.processor = processor
        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.batch_size = batch_size or settings.worker_batch_size
        self.poll_interval = poll_interval or settings.worker_poll_interval_seconds
        self.job_timeout = job_timeout or settings.worker_job_timeout_seconds
        self.heartbeat_interval = settings.worker_heartbeat_interval_seconds
        self.lease_duration = timedelta(seconds=settings.worker_lease_duration_seconds)

        self._running = False
        self._current_jobs: dict[UUID, asyncio.Task] = {}
        self._heartbeat_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the worker."""
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "batch_size": self.batch_size},
        )

        self._running = True

        # Start heartbeat task
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        # Main polling loop
        while self._running:
            try:
                jobs_processed = await self.run_once()

                # If no jobs were processed, wait before polling again
                if jobs_processed == 0:
                    await asyncio.sleep(self.poll_interval)

            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id},
                )
                await asyncio.sleep(self.poll_interval)

        # Wait for current jobs to complete
        if self._current_jobs:
            logger.info(f"Waiting for {len(self._current_jobs)} jobs to complete")
            await asyncio.gather(*self._current_jobs.values(), return_exceptions=True)

        # Cancel heartbeat
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False

    async def run_once(self) -> int:
        """
        Process one batch of due jobs concurrently.

        Returns:
            Number of job ids handed to the queue core.
        """
        job_ids = await self.job_queue.due_job_ids(limit=self.batch_size)
        if not job_ids:
            return 0

        logger.info(
            f"Picked up {len(job_ids)} due jobs",
            extra={"worker_id": self.worker_id},
        )

        tasks = []
        for job_id in job_ids:
            task = asyncio.create_task(self._execute_job(job_id))
            self._current_jobs[job_id] = task
            tasks.append(task)

        await asyncio.gather(*tasks)
        return len(job_ids)

    async def _execute_job(self, job_id: UUID) -> None:
        """Run one attempt; failures are already persisted by the core."""
        try:
            job = await self.job_queue.process_job(
                job_id,
                self.processor,
                worker_id=self.worker_id,
                timeout=self.job_timeout,
            )
            logger.info(
                "Job attempt finished",
                extra={"job_id": str(job_id), "status": job.status.value},
            )
        except ProcessorFailure as e:
            logger.warning(
                "Job failed",
                extra={
                    "job_id": str(job_id),
                    "status": e.job.status.value,
                    "retry_count": e.job.retry_count,
                    "error": str(e),
                    "code": e.code,
                },
            )
        except JobNotFoundError:
            logger.warning("Due job disappeared before it ran", extra={"job_id": str(job_id)})
        except Exception as e:
            logger.exception(
                "Exception executing job",
                extra={"job_id": str(job_id), "error": str(e)},
            )
        finally:
            # Remove from current jobs
            self._current_jobs.pop(job_id, None)

    async def _heartbeat_loop(self) -> None:
        """
        Periodically extend leases on running jobs.

        This prevents jobs from being recovered by the reaper
        while they're still being executed.
        """
        while self._running:
            try:
                await asyncio.sleep(self.heartbeat_interval)
                await self.extend_leases()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")

    async def extend_leases(self) -> int:
        """Extend the lease of every job this worker is running."""
        extended = 0
        for job_id in list(self._current_jobs.keys()):
            if await self.job_queue.extend_lease(job_id, self.worker_id, self.lease_duration):
                extended += 1
                logger.debug("Extended lease", extra={"job_id": str(job_id)})
        return extended


async def run_async() -> None:
    """Run the worker asynchronously."""
    setup_logging()
    setup_tracing()
    job_queue = await JobQueue.create()

    worker = Worker(job_queue)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(worker.stop()))

    try:
        await worker.start()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
