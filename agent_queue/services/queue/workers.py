"""arq worker bound to a single category queue."""

from __future__ import annotations

import logging
from typing import Any

from arq.utils import timestamp_ms
from arq.worker import Worker

from agent_queue.services.queue.queue import JobQueue

logger = logging.getLogger(__name__)


class CategoryWorker(Worker):
    """Worker that pulls from one queue and honours its pause flag.

    ``max_jobs`` caps the jobs running at once in this process. Signals are
    left to the process entry point.
    """

    def __init__(self, *, queue: JobQueue, **kwargs: Any):
        kwargs.setdefault("handle_signals", False)
        kwargs.setdefault("queue_name", queue.name)
        super().__init__(**kwargs)
        self._queue = queue

    async def start_jobs(self, job_ids: list[bytes]) -> None:
        if not job_ids:
            return
        if await self._queue.is_paused():
            logger.debug("Queue %s paused, leaving %d jobs waiting", self.queue_name, len(job_ids))
            return
        if await self._queue.promote_ready():
            # Promoted jobs may now sort ahead of the ids read by this poll
            job_ids = await self.pool.zrangebyscore(
                self.queue_name, min=float("-inf"), max=timestamp_ms(), start=0, num=len(job_ids)
            )
        await super().start_jobs(job_ids)
