"""
In-process background queue for quote jobs.

The intake endpoint must answer in well under a second, while rendering a PDF
and talking to SMTP can take many seconds. Jobs are appended to a FIFO and
consumed by a single worker task: at most one job runs at a time, and a job
that raises is logged and dropped without stopping the worker.

Nothing is persisted; pending jobs are lost on restart. There are no retries.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from app.models.quote import QuoteJob

logger = logging.getLogger(__name__)

JobHandler = Callable[[QuoteJob], Awaitable[Any]]


class QueueFullError(Exception):
    """Raised by enqueue() when the queue already holds max_size jobs."""


class QuoteJobQueue:
    """
    Single-consumer FIFO job queue.

    Usage:
        queue = QuoteJobQueue(handler=processor.process, max_size=100)
        queue.enqueue(job)     # starts the worker if it is idle
        await queue.join()     # wait until every queued job has been handled
        await queue.stop()     # cancel the worker, drop pending jobs
    """

    def __init__(self, handler: JobHandler, max_size: int = 100) -> None:
        self._handler = handler
        self.max_size = max_size
        self._jobs: deque[QuoteJob] = deque()
        self._worker: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        """Number of jobs waiting to be picked up."""
        return len(self._jobs)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, job: QuoteJob) -> int:
        """
        Append a job and make sure the worker is running.

        Must be called from the event loop. Returns the queue length after
        the append; raises QueueFullError when max_size jobs are pending.
        """
        if self.max_size and len(self._jobs) >= self.max_size:
            raise QueueFullError(f"quote queue is full ({self.max_size} pending jobs)")

        self._jobs.append(job)
        self._ensure_worker()
        return len(self._jobs)

    def _ensure_worker(self) -> None:
        if self.is_running:
            return
        self._worker = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while self._jobs:
            job = self._jobs.popleft()
            try:
                await self._handler(job)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    f"Quote job {job.fingerprint[:12]} failed; dropping it"
                )

    async def join(self) -> None:
        """Wait until the queue is empty and the worker has gone idle."""
        while self.is_running:
            await asyncio.shield(self._worker)

    async def stop(self) -> None:
        """Cancel the worker and discard any pending jobs."""
        dropped = len(self._jobs)
        self._jobs.clear()
        if self.is_running:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        if dropped:
            logger.warning(f"Quote queue stopped with {dropped} pending job(s) discarded")
