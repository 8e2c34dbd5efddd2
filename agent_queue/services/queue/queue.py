"""Per-category job queue on top of arq.

arq provides the durable part (job payloads, a score-ordered queue per name,
claims, retries). This module adds what the queue core needs on top of it:
priorities, pause flags, bounded completed/failed history and progress
events.

arq dispatches every job whose score is at or below the current time, in
score order. Runnable jobs are therefore scored inside a negative priority
band (``priority_score``): all of them are due, lower priority numbers come
first and equal priorities keep submission order. Delayed and retried jobs
carry their ready time as score until ``promote_ready`` moves them into
their band.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Iterator

from arq.connections import ArqRedis
from arq.constants import in_progress_key_prefix, result_key_prefix
from arq.utils import timestamp_ms
from redis.exceptions import RedisError

from agent_queue.services.queue.models import (
    DEFAULT_PRIORITY,
    JOB_FUNCTION_NAME,
    MAX_PRIORITY,
    MIN_PRIORITY,
    JobState,
    QueueConnectionError,
    QueueError,
    QueueEvent,
    QueueName,
    QueueStats,
    SubmitOptions,
)

logger = logging.getLogger(__name__)

PROGRESS_TTL_SECONDS = 86400

# Width of one priority band. Wider than any epoch-ms timestamp, so the
# submission-time part of a score never reaches the next band.
PRIORITY_BAND_MS = 10**13


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


def clamp_priority(priority: int) -> int:
    return max(MIN_PRIORITY, min(MAX_PRIORITY, priority))


def priority_score(priority: int, ready_ms: int) -> int:
    """Score of a runnable job: its priority band, then its ready time.

    Every band lies below zero, so banded jobs are always due and sort ahead
    of anything still scored by ready time.
    """
    band = MAX_PRIORITY + 1 - clamp_priority(priority)
    return ready_ms - band * PRIORITY_BAND_MS


class JobQueue:
    """A named queue bound to the shared broker connection."""

    def __init__(
        self,
        name: QueueName,
        redis: ArqRedis,
        *,
        prefix: str = "agentq",
        keep_completed: int = 100,
        keep_failed: int = 50,
        default_priority: int = DEFAULT_PRIORITY,
        expires_ms: int = 86_400_000,
    ):
        self._queue_name = name
        self._redis = redis
        self._prefix = prefix
        self._keep = {JobState.COMPLETED: keep_completed, JobState.FAILED: keep_failed}
        self._default_priority = clamp_priority(default_priority)
        self._expires_ms = expires_ms
        self._closed = False

    @property
    def name(self) -> str:
        """Broker queue name (also the arq sorted-set key)."""
        return self._queue_name.value

    @property
    def queue_name(self) -> QueueName:
        return self._queue_name

    @property
    def pause_key(self) -> str:
        return f"{self._prefix}:{self.name}:paused"

    @property
    def events_channel(self) -> str:
        return f"{self._prefix}:{self.name}:events"

    @property
    def priority_key(self) -> str:
        """Hash of job id to submitted priority, read when promoting."""
        return f"{self._prefix}:{self.name}:priority"

    def _history_key(self, state: JobState) -> str:
        return f"{self._prefix}:{self.name}:{state.value}"

    def _progress_key(self, job_id: str) -> str:
        return f"{self._prefix}:{self.name}:progress:{job_id}"

    @contextmanager
    def _broker_errors(self, operation: str, **details: Any) -> Iterator[None]:
        try:
            yield
        except RedisError as e:
            logger.error("Failed to %s on %s: %s", operation, self.name, e)
            raise QueueConnectionError(
                f"Failed to {operation}: {e}", {"queue_name": self.name, **details}
            ) from e

    def score_for(self, priority: int, delay_ms: int, now_ms: int) -> int:
        """Compute the arq score for a submission.

        Delayed jobs are scored at their ready time and join their priority
        band once promoted. Everything else goes straight into its band.
        """
        if delay_ms > 0:
            return now_ms + delay_ms
        return priority_score(priority, now_ms)

    async def add(self, *, job_id: str, data: dict[str, Any], options: SubmitOptions) -> str:
        """Enqueue a job under ``job_id`` and return the broker job id.

        Raises:
            QueueError: If the queue was closed
            QueueConnectionError: If the broker rejects the write
        """
        if self._closed:
            raise QueueError(f"Queue {self.name} is closed", {"queue_name": self.name})

        priority = clamp_priority(options.priority)
        now_ms = timestamp_ms()
        score = self.score_for(priority, options.delay_ms, now_ms)

        with self._broker_errors("enqueue job", job_id=job_id):
            job = await self._redis.enqueue_job(
                JOB_FUNCTION_NAME,
                _job_id=job_id,
                _queue_name=self.name,
                _defer_by=timedelta(milliseconds=score - now_ms),
                _expires=timedelta(milliseconds=max(options.delay_ms, 0) + self._expires_ms),
                **data,
            )
            if job is not None:
                await self._redis.hset(self.priority_key, job_id, priority)

        if job is None:
            # arq refuses a second job with an id that is queued or has a result
            logger.warning("Job %s already exists on %s, not enqueued again", job_id, self.name)
            return job_id

        logger.info(
            "Enqueued job %s on %s (priority=%d, delay=%dms)",
            job.job_id,
            self.name,
            priority,
            options.delay_ms,
        )
        return job.job_id

    async def promote_ready(self) -> int:
        """Move delayed and retried jobs that are now due into their priority band.

        Jobs currently claimed by a worker are left alone, arq rescores them
        itself when they finish or retry.

        Returns:
            Number of promoted jobs
        """
        now_ms = timestamp_ms()
        promoted = 0
        with self._broker_errors("promote jobs"):
            ready = await self._redis.zrangebyscore(self.name, 0, now_ms, withscores=True)
            for raw_id, score in ready:
                job_id = _decode(raw_id)
                if await self._redis.exists(in_progress_key_prefix + job_id):
                    continue
                stored = await self._redis.hget(self.priority_key, job_id)
                priority = int(stored) if stored is not None else self._default_priority
                await self._redis.zadd(
                    self.name, {job_id: priority_score(priority, int(score))}, xx=True
                )
                promoted += 1

        if promoted:
            logger.debug("Promoted %d ready jobs on %s", promoted, self.name)
        return promoted

    async def get_counts(self) -> QueueStats:
        """Count jobs per broker state."""
        now_ms = timestamp_ms()
        with self._broker_errors("count jobs"):
            due = await self._redis.zrangebyscore(self.name, "-inf", now_ms)
            delayed = await self._redis.zcount(self.name, f"({now_ms}", "+inf")

            active = 0
            if due:
                # arq keeps a job in the queue set while it runs and marks it in progress
                active = await self._redis.exists(
                    *(in_progress_key_prefix + _decode(job_id) for job_id in due)
                )

            completed = await self._redis.zcard(self._history_key(JobState.COMPLETED))
            failed = await self._redis.zcard(self._history_key(JobState.FAILED))

        return QueueStats(
            waiting=len(due) - active,
            active=active,
            completed=completed,
            failed=failed,
            delayed=delayed,
        )

    async def pause(self) -> None:
        """Stop dispatch of new jobs in every worker process."""
        with self._broker_errors("pause queue"):
            await self._redis.set(self.pause_key, b"1")
        logger.info("Paused queue %s", self.name)

    async def resume(self) -> None:
        with self._broker_errors("resume queue"):
            await self._redis.delete(self.pause_key)
        logger.info("Resumed queue %s", self.name)

    async def is_paused(self) -> bool:
        with self._broker_errors("read pause flag"):
            return bool(await self._redis.exists(self.pause_key))

    async def record_finished(self, job_id: str, state: JobState) -> None:
        """Add a finished job to the history, keeping only the newest entries."""
        keep = self._keep[state]
        key = self._history_key(state)
        with self._broker_errors("record finished job", job_id=job_id):
            await self._redis.zadd(key, {job_id: timestamp_ms()})
            await self._redis.zremrangebyrank(key, 0, -(keep + 1))
            await self._redis.hdel(self.priority_key, job_id)

    async def clean(self, grace_ms: int, limit: int, state: JobState) -> list[str]:
        """Drop up to ``limit`` history entries older than ``grace_ms``.

        Returns:
            IDs of the removed jobs
        """
        key = self._history_key(state)
        cutoff = timestamp_ms() - grace_ms
        with self._broker_errors("clean queue"):
            raw_ids = await self._redis.zrangebyscore(key, "-inf", cutoff, start=0, num=limit)
            job_ids = [_decode(job_id) for job_id in raw_ids]
            if job_ids:
                await self._redis.zrem(key, *job_ids)
                await self._redis.delete(*(result_key_prefix + job_id for job_id in job_ids))
        logger.info("Cleaned %d %s jobs from %s", len(job_ids), state.value, self.name)
        return job_ids

    async def update_progress(self, job_id: str, progress: int) -> None:
        """Store job progress (0-100) and publish a progress event."""
        progress = max(0, min(100, progress))
        with self._broker_errors("update progress", job_id=job_id):
            await self._redis.set(self._progress_key(job_id), progress, ex=PROGRESS_TTL_SECONDS)
        await self.publish_event(QueueEvent.PROGRESS, job_id, {"progress": progress})

    async def get_progress(self, job_id: str) -> int | None:
        with self._broker_errors("read progress", job_id=job_id):
            value = await self._redis.get(self._progress_key(job_id))
        return int(value) if value is not None else None

    async def publish_event(
        self, event: QueueEvent, job_id: str, data: dict[str, Any] | None = None
    ) -> None:
        message = json.dumps(
            {"event": event.value, "queue": self.name, "job_id": job_id, "data": data or {}},
            default=str,
        )
        with self._broker_errors("publish event", job_id=job_id):
            await self._redis.publish(self.events_channel, message)

    async def close(self) -> None:
        """Stop accepting submissions. The shared connection stays open."""
        self._closed = True
        logger.debug("Closed queue %s", self.name)
