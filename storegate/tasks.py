"""
Background Task Queue
=====================

A small asyncio worker pool for work that must not block a request, such as
the post-install setup that runs after the OAuth callback has already
redirected the merchant.

Jobs are retried with exponential backoff plus jitter. A job that exhausts
its attempts is logged and kept in a bounded ``failed_jobs`` buffer; it never
propagates to whoever enqueued it.
"""

import asyncio
import logging
import random
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, List, Optional

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


@dataclass
class Job:
    name: str
    factory: JobFactory
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts: int = 0
    last_error: Optional[str] = None
    failed_at: Optional[datetime] = None


class TaskQueue:
    """
    Asyncio worker pool with bounded retries.

    Jobs enqueued before ``start()`` wait in the queue until workers exist.

    Args:
        workers: Number of concurrent workers
        max_attempts: Attempts per job, including the first
        base_delay: Backoff delay after the first failure, in seconds
        max_delay: Backoff cap, in seconds
        jitter: Jitter factor (0.0-1.0) applied to each delay
        max_failed: Size of the failed job buffer
    """

    def __init__(
        self,
        workers: int = 2,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 0.3,
        max_failed: int = 100,
    ):
        self._worker_count = workers
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._jitter = jitter
        self._queue: "asyncio.Queue[Job]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self.failed_jobs: Deque[Job] = deque(maxlen=max_failed)
        self.completed_count = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"storegate-worker-{index}")
            for index in range(self._worker_count)
        ]
        logger.info("Task queue started", extra={"workers": self._worker_count})

    async def stop(self, drain_timeout: Optional[float] = 5.0) -> None:
        """Stop the workers, giving queued jobs up to drain_timeout seconds to finish."""
        if not self._workers:
            return

        if drain_timeout:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("Task queue stopped with jobs pending", extra={"pending": self.pending})

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Task queue stopped")

    def enqueue(self, name: str, factory: JobFactory) -> str:
        """
        Schedule a job.

        Args:
            name: Job name for logs
            factory: Zero-argument callable returning a fresh awaitable per attempt

        Returns:
            The job id
        """
        job = Job(name=name, factory=factory)
        self._queue.put_nowait(job)
        logger.debug("Job enqueued", extra={"job_id": job.id, "job": name})
        return job.id

    async def drain(self) -> None:
        """Wait until every queued job has finished (successfully or not)."""
        await self._queue.join()

    def _delay(self, attempt: int) -> float:
        delay = min(self._base_delay * (2 ** (attempt - 1)), self._max_delay)
        jitter_amount = delay * self._jitter
        return max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

    async def _run(self, job: Job) -> None:
        while True:
            job.attempts += 1
            try:
                await job.factory()
                self.completed_count += 1
                logger.info("Job completed", extra={"job_id": job.id, "job": job.name, "attempts": job.attempts})
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                job.last_error = f"{type(e).__name__}: {e}"
                if job.attempts >= self._max_attempts:
                    job.failed_at = datetime.now(timezone.utc)
                    self.failed_jobs.append(job)
                    logger.error(
                        "Job failed permanently",
                        extra={"job_id": job.id, "job": job.name, "attempts": job.attempts, "error": job.last_error},
                    )
                    return

                delay = self._delay(job.attempts)
                logger.warning(
                    "Retry %d/%d for job %s, waiting %.1fs",
                    job.attempts,
                    self._max_attempts,
                    job.name,
                    delay,
                    extra={"job_id": job.id, "error": job.last_error},
                )
                await asyncio.sleep(delay)

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run(job)
            finally:
                self._queue.task_done()
