"""
Lease reaper for recovering orphaned jobs.

A job left in processing by a crashed or stalled worker keeps an expiring
lease. The reaper runs periodically, finds processing jobs whose lease has run
out and records each as a failed attempt with code LEASE_EXPIRED, so it is
requeued with backoff or dead-lettered like any other failure.
"""

import asyncio
import logging
import signal

from jobqueue.config import get_settings
from jobqueue.db import close_db
from jobqueue.observability.logging import setup_logging
from jobqueue.queue.service import JobQueue

logger = logging.getLogger(__name__)


class Reaper:
    """
    Lease reaper that recovers expired job leases.

    Runs periodically to:
    1. Find jobs in PROCESSING status with expired lease_expires_at
    2. Requeue or dead-letter them through the retry policy
    """

    def __init__(self, job_queue: JobQueue, interval_seconds: int | None = None):
        """
        Initialize the reaper.

        Args:
            job_queue: The queue to recover jobs in.
            interval_seconds: Seconds between reaper runs.
        """
        settings = get_settings()
        self.job_queue = job_queue
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self._running = False

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                recovered = await self.run_once()

                if recovered > 0:
                    logger.info(f"Recovered {recovered} expired leases")

            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            await asyncio.sleep(self.interval)

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False

    async def run_once(self) -> int:
        """
        Run the reaper once (for testing or cron-style execution).

        Returns:
            Number of jobs recovered.
        """
        return await self.job_queue.recover_expired_leases()


async def run_async() -> None:
    """Run the reaper asynchronously."""
    setup_logging()
    job_queue = await JobQueue.create()

    reaper = Reaper(job_queue)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(reaper.stop()))

    try:
        await reaper.start()
    finally:
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
