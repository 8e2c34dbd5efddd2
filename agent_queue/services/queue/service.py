"""Queue manager: the single entry point for submitting and operating agent jobs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from arq.utils import timestamp_ms
from arq.worker import func

from agent_queue.core.config import Settings, get_settings
from agent_queue.db.session import get_session_factory
from agent_queue.models.action import ActionStatus
from agent_queue.services.queue.events import QueueEvents
from agent_queue.services.queue.executors import ExecutorRegistry
from agent_queue.services.queue.models import (
    CATEGORY_CONCURRENCY,
    JOB_FUNCTION_NAME,
    JobState,
    Policy,
    QueueError,
    QueueEvent,
    QueueName,
    QueueNotFoundError,
    QueueStats,
    SubmitOptions,
    utc_now,
)
from agent_queue.services.queue.queue import JobQueue
from agent_queue.services.queue.redis import RedisConnection
from agent_queue.services.queue.routing import coerce_queue_name, resolve_queue
from agent_queue.services.queue.store import RunStore
from agent_queue.services.queue.tasks import JobEnvelope
from agent_queue.services.queue.workers import CategoryWorker

logger = logging.getLogger(__name__)

# Completed / failed history entries removed per clean call
CLEAN_LIMITS = {JobState.COMPLETED: 100, JobState.FAILED: 50}


def build_idempotency_key(action_id: str) -> str:
    """Key for one submission of an action; also used as the broker job id."""
    return f"{action_id}-{timestamp_ms()}"


class QueueManager:
    """Owns the category queues, their workers and event subscriptions.

    Constructing a manager never starts workers, so an API process can use
    it purely to enqueue. Consumers call ``start_workers()`` once.
    """

    def __init__(
        self,
        connection: RedisConnection,
        store: RunStore,
        settings: Optional[Settings] = None,
        executors: Optional[ExecutorRegistry] = None,
    ):
        """Create queues and event subscriptions for every category.

        Args:
            connection: Connected broker connection shared by all queues
            store: Run Store facade
            settings: Queue settings (defaults to the cached settings)
            executors: Category executors, required to start workers
        """
        self._connection = connection
        self._store = store
        self._settings = settings or get_settings()
        self._executors = executors

        self._queues: dict[QueueName, JobQueue] = {}
        self._events: dict[QueueName, QueueEvents] = {}
        self._workers: dict[QueueName, CategoryWorker] = {}
        self._worker_tasks: dict[QueueName, asyncio.Task] = {}
        self._closed = False

        client = connection.client
        for queue_name in QueueName:
            queue = JobQueue(
                queue_name,
                client,
                prefix=self._settings.queue_prefix,
                keep_completed=self._settings.queue_keep_completed,
                keep_failed=self._settings.queue_keep_failed,
                default_priority=self._settings.queue_default_priority,
                expires_ms=self._settings.queue_job_expires_seconds * 1000,
            )
            events = QueueEvents(queue.name, client, queue.events_channel)
            self._attach_listeners(queue.name, events)
            self._queues[queue_name] = queue
            self._events[queue_name] = events

    @staticmethod
    def _attach_listeners(name: str, events: QueueEvents) -> None:
        events.on(
            QueueEvent.COMPLETED,
            lambda message: logger.info("[QUEUE:%s] Job %s completed", name, message["job_id"]),
        )
        events.on(
            QueueEvent.FAILED,
            lambda message: logger.error(
                "[QUEUE:%s] Job %s failed: %s",
                name,
                message["job_id"],
                message.get("data", {}).get("error"),
            ),
        )
        events.on(
            QueueEvent.PROGRESS,
            lambda message: logger.debug(
                "[QUEUE:%s] Job %s progress: %s%%",
                name,
                message["job_id"],
                message.get("data", {}).get("progress"),
            ),
        )

    @property
    def queue_names(self) -> list[str]:
        return [queue.name for queue in self._queues.values()]

    @property
    def workers_started(self) -> bool:
        return bool(self._workers)

    def _get_queue(self, name: str | QueueName) -> JobQueue:
        queue_name = coerce_queue_name(name)
        if queue_name is None:
            raise QueueNotFoundError(str(name))
        return self._queues[queue_name]

    async def open(self) -> None:
        """Start the event subscriptions. Safe to call more than once."""
        for events in self._events.values():
            await events.start()

    async def start_workers(self) -> None:
        """Start one worker per category queue. A second call is a no-op.

        Raises:
            QueueError: If the manager has no executor registry or is shut down
        """
        if self._workers:
            logger.debug("Workers already started")
            return
        if self._closed:
            raise QueueError("Queue manager is shut down")
        if self._executors is None:
            raise QueueError("An executor registry is required to start workers")
        if not self._executors.has_default():
            logger.warning("No agent actions executor registered, only dry runs can succeed")

        for queue_name, queue in self._queues.items():
            envelope = JobEnvelope(
                queue,
                self._store,
                self._executors.find(queue_name),
                self._settings,
                submit=self.queue_action,
            )
            concurrency = CATEGORY_CONCURRENCY[queue_name]
            worker = CategoryWorker(
                functions=[func(envelope.run, name=JOB_FUNCTION_NAME)],
                redis_pool=self._connection.borrow(),
                queue=queue,
                max_jobs=concurrency,
                max_tries=self._settings.queue_job_attempts,
                job_timeout=self._settings.queue_job_timeout_seconds,
                keep_result=self._settings.queue_keep_result_seconds,
                poll_delay=self._settings.worker_poll_delay_seconds,
            )
            self._workers[queue_name] = worker
            self._worker_tasks[queue_name] = asyncio.create_task(
                worker.async_run(), name=f"worker:{queue.name}"
            )
            logger.info("Started worker for %s with concurrency %d", queue.name, concurrency)

    async def queue_action(
        self,
        action_id: str,
        user_token: str,
        action_type: str,
        payload: dict[str, Any],
        policy: Policy | dict[str, Any],
        options: Optional[SubmitOptions] = None,
        *,
        category: str | QueueName | None = None,
    ) -> str:
        """Submit an action for asynchronous execution.

        Args:
            action_id: Action to run
            user_token: Owner of the action
            action_type: Declared type, routed by keyword when no category is given
            payload: Opaque data for the executor
            policy: Execution policy, snapshotted on the run
            options: Priority, delay and repeat
            category: Explicit target queue

        Returns:
            Broker job id

        Raises:
            QueueNotFoundError: If ``category`` is not a known queue
            RunStoreError: If the run cannot be created (nothing is enqueued)
            QueueError: If the broker rejects the job or the manager is shut down
        """
        if self._closed:
            raise QueueError("Queue manager is shut down")
        options = options or SubmitOptions(priority=self._settings.queue_default_priority)
        queue = self._get_queue(category) if category is not None else self._queues[
            resolve_queue(action_type)
        ]
        policy = Policy.model_validate(policy)
        idempotency_key = build_idempotency_key(action_id)

        run = await self._store.create_run(
            action_id=action_id,
            user_token=user_token,
            idempotency_key=idempotency_key,
            policy=policy,
        )

        data = {
            "action_id": action_id,
            "user_token": user_token,
            "run_id": run.id,
            "idempotency_key": idempotency_key,
            "action_type": action_type,
            "policy": policy.model_dump(mode="json"),
            "payload": payload,
            "priority": options.priority,
            "repeat": options.repeat.to_dict() if options.repeat else None,
        }
        try:
            job_id = await queue.add(job_id=idempotency_key, data=data, options=options)
        except QueueError as e:
            await self._store.mark_run_failed(
                run.id, error_details=f"Enqueue failed: {e}", completed_at=utc_now()
            )
            raise

        await self._store.update_action_status(action_id, ActionStatus.QUEUED)
        logger.info(
            "Queued action %s (%s) on %s as job %s", action_id, action_type, queue.name, job_id
        )
        return job_id

    async def get_queue_stats(self, name: str | QueueName) -> QueueStats:
        return await self._get_queue(name).get_counts()

    async def get_all_queue_stats(self) -> dict[str, QueueStats]:
        return {queue.name: await queue.get_counts() for queue in self._queues.values()}

    async def get_job_progress(self, name: str | QueueName, job_id: str) -> int | None:
        return await self._get_queue(name).get_progress(job_id)

    async def pause_queue(self, name: str | QueueName) -> None:
        """Stop dispatching new jobs from a queue. Active jobs run to completion."""
        await self._get_queue(name).pause()

    async def resume_queue(self, name: str | QueueName) -> None:
        await self._get_queue(name).resume()

    async def clean_queue(
        self, name: str | QueueName, older_than_ms: Optional[int] = None
    ) -> dict[str, list[str]]:
        """Prune completed and failed history older than ``older_than_ms``.

        Defaults to the configured clean grace period.

        Returns:
            Removed job ids per state
        """
        queue = self._get_queue(name)
        if older_than_ms is None:
            older_than_ms = self._settings.queue_clean_grace_seconds * 1000
        return {
            state.value: await queue.clean(older_than_ms, limit, state)
            for state, limit in CLEAN_LIMITS.items()
        }

    async def health_check(self) -> bool:
        return await self._connection.health_check()

    async def shutdown(self) -> None:
        """Close workers, then event subscriptions, then queues, then the connection."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down queue manager")

        try:
            for queue_name, worker in self._workers.items():
                await worker.close()
                logger.info("Closed worker for %s", queue_name.value)

            results = await asyncio.gather(*self._worker_tasks.values(), return_exceptions=True)
            for queue_name, result in zip(self._worker_tasks, results):
                if isinstance(result, Exception):
                    logger.error("Worker for %s exited with error: %s", queue_name.value, result)
            self._worker_tasks.clear()

            for events in self._events.values():
                await events.close()
        finally:
            for queue in self._queues.values():
                await queue.close()
            await self._connection.disconnect()
        logger.info("Queue manager shut down")


async def create_queue_manager(
    settings: Optional[Settings] = None,
    executors: Optional[ExecutorRegistry] = None,
) -> QueueManager:
    """Connect to the broker and build an opened manager from settings.

    Raises:
        QueueConnectionError: If the broker is unreachable
    """
    settings = settings or get_settings()
    connection = RedisConnection(
        url=settings.redis_url, max_connections=settings.redis_max_connections
    )
    await connection.connect()

    manager = QueueManager(connection, RunStore(get_session_factory()), settings, executors)
    await manager.open()
    return manager
