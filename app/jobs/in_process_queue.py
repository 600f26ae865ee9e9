"""In-process job runner using asyncio tasks.

Each job runs as its own task so a slow external call never holds up an
unrelated job. A semaphore bounds how many jobs talk to the external
services at once; excess jobs simply wait their turn. No external
dependencies (Redis, Celery) needed.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from app.jobs.dispatcher import JobDispatcher

logger = logging.getLogger(__name__)


class InProcessQueue(JobDispatcher):
    """Fire-and-forget runner that still keeps a handle on every task."""

    def __init__(
        self,
        worker_fn: Callable[[str], Awaitable[None]],
        max_concurrency: int = 8,
        shutdown_grace_seconds: float = 10.0,
        on_abandoned: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        """
        worker_fn: async callable(job_id) that drives one job to a
            terminal state. It is expected to record failures itself;
            anything it lets escape is logged here.
        on_abandoned: async callable(job_id) for a job cancelled while it
            was still waiting for a free slot.
        """
        self._worker_fn = worker_fn
        self._max_concurrency = max_concurrency
        self._shutdown_grace_seconds = shutdown_grace_seconds
        self._on_abandoned = on_abandoned
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, job_id: str) -> None:
        if not self._running:
            raise RuntimeError("Job dispatcher not started")
        task = asyncio.get_running_loop().create_task(
            self._run(job_id), name=f"job-{job_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    async def start(self) -> None:
        self._semaphore = asyncio.Semaphore(self._max_concurrency)
        self._running = True

    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        """Stop accepting jobs and let in-flight ones finish.

        Jobs still running after the grace period are cancelled; the worker
        is expected to record them as FAILED on the way out.
        """
        self._running = False
        grace = self._shutdown_grace_seconds if grace_seconds is None else grace_seconds
        tasks = list(self._tasks)
        if not tasks:
            return

        logger.info("Waiting up to %.0fs for %d in-flight job(s)", grace, len(tasks))
        pending = set(tasks)
        if grace > 0:
            _, pending = await asyncio.wait(tasks, timeout=grace)
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Cancelled %d in-flight job(s) on shutdown", len(pending))

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, job_id: str) -> None:
        try:
            await self._semaphore.acquire()
        except asyncio.CancelledError:
            if self._on_abandoned is not None:
                await self._on_abandoned(job_id)
            raise
        try:
            await self._worker_fn(job_id)
        finally:
            self._semaphore.release()

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s raised %s: %s",
                task.get_name(),
                type(exc).__name__,
                exc,
                exc_info=exc,
            )
