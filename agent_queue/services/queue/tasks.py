"""Job processing envelope shared by every category worker."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from arq.worker import Retry

from agent_queue.core.config import Settings
from agent_queue.models.action import ActionStatus
from agent_queue.services.queue.context import JobContext
from agent_queue.services.queue.executors import ActionExecutor, ExecutionOutcome
from agent_queue.services.queue.models import (
    Environment,
    ExecutorNotRegisteredError,
    JobResult,
    JobState,
    JobStats,
    Policy,
    QueueError,
    QueueEvent,
    RepeatOptions,
    SubmitOptions,
    utc_now,
)
from agent_queue.services.queue.queue import JobQueue
from agent_queue.services.queue.store import RunStore

logger = logging.getLogger(__name__)

SubmitFn = Callable[..., Awaitable[str]]

DRY_RUN_MESSAGE = "Dry run completed successfully"


def backoff_delay(attempt: int, base_seconds: float) -> float:
    """Delay before the attempt following ``attempt`` (1-indexed): 2s, 4s, 8s..."""
    return base_seconds * (2 ** (attempt - 1))


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class JobEnvelope:
    """Runs one job attempt: run bookkeeping around a category executor.

    Every category shares this template and differs only in the executor
    it delegates to. ``run`` is registered with the category's arq worker.
    """

    def __init__(
        self,
        queue: JobQueue,
        store: RunStore,
        executor: Optional[ActionExecutor],
        settings: Settings,
        submit: Optional[SubmitFn] = None,
    ):
        self._queue = queue
        self._store = store
        self._executor = executor
        self._settings = settings
        self._submit = submit

    @property
    def queue_name(self) -> str:
        return self._queue.name

    async def run(
        self,
        ctx: dict[str, Any],
        *,
        action_id: str,
        user_token: str,
        run_id: str,
        idempotency_key: str,
        action_type: str,
        policy: dict[str, Any],
        payload: dict[str, Any],
        priority: int = 50,
        repeat: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Process a job attempt.

        Args:
            ctx: arq context (``job_id``, ``job_try``)

        Returns:
            The job result stored by the broker

        Raises:
            Retry: After a failed attempt that the broker should retry
            Exception: The handler error, after the final attempt
        """
        job_id = ctx.get("job_id", idempotency_key)
        attempt = ctx.get("job_try", 1)
        max_attempts = self._settings.queue_job_attempts

        context = JobContext(
            job_id=job_id,
            queue_name=self._queue.queue_name,
            attempt=attempt,
            max_attempts=max_attempts,
            action_id=action_id,
            action_type=action_type,
            user_token=user_token,
            run_id=run_id,
            idempotency_key=idempotency_key,
            payload=payload,
            policy=Policy.model_validate(policy),
            progress_callback=lambda progress: self._queue.update_progress(job_id, progress),
        )
        started = time.monotonic()

        logger.info(
            "[QUEUE:%s] Processing job %s for action %s (attempt %d/%d)",
            self.queue_name,
            job_id,
            action_id,
            attempt,
            max_attempts,
        )

        try:
            await self._store.mark_run_running(run_id, started_at=context.started_at)
            await self._store.update_action_status(action_id, ActionStatus.RUNNING)

            outcome = await self._execute(context)
            await context.report_progress(100)

            duration_ms = int((time.monotonic() - started) * 1000)
            result = JobResult(
                success=True,
                data=outcome.data,
                stats=JobStats(
                    execution_time_ms=duration_ms,
                    pages_processed=outcome.pages_processed,
                    patches_applied=outcome.patches_applied,
                ),
            )
            await self._store.mark_run_succeeded(
                run_id,
                output_data=result.data,
                stats=result.stats.to_dict(),
                duration_ms=duration_ms,
                completed_at=utc_now(),
            )
            # Success always waits for a separate verification step
            await self._store.update_action_status(action_id, ActionStatus.NEEDS_VERIFICATION)
        except Exception as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            await self._record_failure(context, exc, duration_ms)
            if attempt < max_attempts:
                delay = backoff_delay(attempt, self._settings.queue_backoff_delay_seconds)
                await self._count_retry(context)
                logger.warning(
                    "[QUEUE:%s] Job %s failed on attempt %d/%d, retrying in %.1fs: %s",
                    self.queue_name,
                    job_id,
                    attempt,
                    max_attempts,
                    delay,
                    exc,
                )
                raise Retry(defer=delay) from exc

            logger.error(
                "[QUEUE:%s] Job %s failed permanently after %d attempts: %s",
                self.queue_name,
                job_id,
                attempt,
                exc,
            )
            await self._finish(
                job_id,
                JobState.FAILED,
                QueueEvent.FAILED,
                {"error": _error_message(exc), "attempts": attempt},
            )
            await self._schedule_next(context, priority, repeat)
            raise

        await self._finish(job_id, JobState.COMPLETED, QueueEvent.COMPLETED, result.to_dict())
        await self._schedule_next(context, priority, repeat)

        logger.info(
            "[QUEUE:%s] Job %s succeeded in %dms", self.queue_name, job_id, duration_ms
        )
        return result.to_dict()

    async def _execute(self, context: JobContext) -> ExecutionOutcome:
        await context.report_progress(25)
        if context.policy.environment == Environment.DRY_RUN:
            # No executor is consulted in dry runs
            await asyncio.sleep(self._settings.dry_run_delay_seconds)
            return ExecutionOutcome(
                data={"message": DRY_RUN_MESSAGE, "payload": context.payload},
            )

        if self._executor is None:
            raise ExecutorNotRegisteredError(self.queue_name)
        await context.report_progress(50)
        return await self._executor.execute(context)

    async def _record_failure(
        self, context: JobContext, exc: Exception, duration_ms: int
    ) -> None:
        """Store the attempt error on the run and the action.

        A store failure here is logged and dropped: the broker must still see
        the retry or the original error. The next attempt starts from
        ``running`` in that case.
        """
        message = _error_message(exc)
        try:
            await self._store.mark_run_failed(
                context.run_id,
                error_details=message,
                duration_ms=duration_ms,
                completed_at=utc_now(),
            )
            await self._store.update_action_status(
                context.action_id, ActionStatus.FAILED, error_message=message
            )
        except Exception:
            logger.exception(
                "[QUEUE:%s] Could not record failure of run %s", self.queue_name, context.run_id
            )

    async def _count_retry(self, context: JobContext) -> None:
        try:
            await self._store.increment_action_retries(context.action_id)
        except Exception:
            logger.exception(
                "[QUEUE:%s] Could not count retry of action %s", self.queue_name, context.action_id
            )

    async def _finish(
        self, job_id: str, state: JobState, event: QueueEvent, data: dict[str, Any]
    ) -> None:
        """Record history and publish the terminal event after the run is settled."""
        try:
            await self._queue.record_finished(job_id, state)
            await self._queue.publish_event(event, job_id, data)
        except QueueError as e:
            logger.error(
                "[QUEUE:%s] Could not record %s job %s: %s", self.queue_name, state.value, job_id, e
            )

    async def _schedule_next(
        self, context: JobContext, priority: int, repeat: Optional[dict[str, Any]]
    ) -> None:
        """Submit the next occurrence of a recurring job."""
        current = RepeatOptions.from_dict(repeat)
        if current is None or self._submit is None:
            return
        following = current.next()
        if following is None:
            logger.info("Repeat limit reached for action %s", context.action_id)
            return

        try:
            job_id = await self._submit(
                context.action_id,
                context.user_token,
                context.action_type,
                context.payload,
                context.policy,
                SubmitOptions(priority=priority, delay_ms=current.every_ms, repeat=following),
                category=context.queue_name,
            )
        except QueueError as e:
            logger.error(
                "Failed to schedule next occurrence of action %s: %s", context.action_id, e
            )
            return
        logger.info(
            "Scheduled next occurrence of action %s as job %s in %dms",
            context.action_id,
            job_id,
            current.every_ms,
        )
