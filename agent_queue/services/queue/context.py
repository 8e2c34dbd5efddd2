"""Per-attempt context handed to executors."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from agent_queue.services.queue.models import Policy, QueueName, utc_now

ProgressCallback = Callable[[int], Awaitable[None]]


@dataclass
class JobContext:
    """Everything an executor may read about the attempt it is running.

    ``deadline`` is derived from ``policy.timeout_ms`` and is advisory: the
    queue never cancels an executor, so long-running executors should check
    ``remaining_seconds()`` and stop on their own.
    """

    job_id: str
    queue_name: QueueName
    attempt: int
    max_attempts: int
    action_id: str
    action_type: str
    user_token: str
    run_id: str
    idempotency_key: str
    payload: dict[str, Any]
    policy: Policy
    started_at: datetime = field(default_factory=utc_now)
    progress_callback: Optional[ProgressCallback] = field(default=None, repr=False)

    @property
    def deadline(self) -> datetime | None:
        if self.policy.timeout_ms is None:
            return None
        return self.started_at + timedelta(milliseconds=self.policy.timeout_ms)

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    def remaining_seconds(self) -> float | None:
        """Seconds left before the policy deadline, or None without a timeout."""
        deadline = self.deadline
        if deadline is None:
            return None
        return max(0.0, (deadline - utc_now()).total_seconds())

    async def report_progress(self, progress: int) -> None:
        if self.progress_callback is not None:
            await self.progress_callback(progress)
