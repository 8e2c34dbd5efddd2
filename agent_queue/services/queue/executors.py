"""Category-specific business logic behind the job envelope.

The envelope owns run bookkeeping; an executor only does the work. A failed
attempt is retried by the broker and the executor runs again with the same
``context.idempotency_key``, so executors must make their side effects
idempotent on that key (or dedupe on their own key). The queue does not
guarantee exactly-once execution.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import httpx

from agent_queue.core.config import Settings
from agent_queue.services.queue.context import JobContext
from agent_queue.services.queue.models import QueueName

logger = logging.getLogger(__name__)


@dataclass
class ExecutionOutcome:
    """What an executor produced; stored on the run as output and stats."""

    data: dict[str, Any] = field(default_factory=dict)
    pages_processed: int = 0
    patches_applied: int = 0


class ActionExecutor(ABC):
    """Abstract base class for category executors."""

    @abstractmethod
    async def execute(self, context: JobContext) -> ExecutionOutcome:
        """
        Perform the side effects of one attempt.

        Args:
            context: Attempt context (payload, policy, ids, progress reporting).

        Returns:
            Outcome to record on the run.

        Raises:
            Exception: Any error fails the attempt and lets the broker retry.
        """
        pass


class HttpDelegateExecutor(ActionExecutor):
    """Delegates an attempt to a collaborator service over HTTP."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        return self._url

    def _request_timeout(self, context: JobContext) -> float:
        remaining = context.remaining_seconds()
        if remaining is None:
            return self._timeout
        if remaining <= 0:
            raise TimeoutError(f"Policy deadline passed before calling {self._url}")
        return min(self._timeout, remaining)

    async def execute(self, context: JobContext) -> ExecutionOutcome:
        body = {
            "action_id": context.action_id,
            "action_type": context.action_type,
            "run_id": context.run_id,
            "user_token": context.user_token,
            "attempt": context.attempt,
            "payload": context.payload,
            "policy": context.policy.model_dump(mode="json"),
        }
        headers = {
            "Idempotency-Key": context.idempotency_key,
            "User-Agent": "SEO-Agent-Queue/1.0",
        }

        logger.info(
            "Delegating run %s (attempt %d) to %s", context.run_id, context.attempt, self._url
        )
        async with httpx.AsyncClient(
            timeout=self._request_timeout(context), transport=self._transport
        ) as client:
            response = await client.post(self._url, json=body, headers=headers)

        response.raise_for_status()
        result = response.json() if response.content else {}
        if not isinstance(result, dict):
            raise ValueError(f"Unexpected response from {self._url}: expected a JSON object")

        return ExecutionOutcome(
            data=result.get("data", {}),
            pages_processed=int(result.get("pages_processed", 0)),
            patches_applied=int(result.get("patches_applied", 0)),
        )


class ExecutorRegistry:
    """Executors by queue; queues without one fall back to the agent actions executor."""

    def __init__(self, executors: Optional[Mapping[QueueName, ActionExecutor]] = None) -> None:
        self._executors: dict[QueueName, ActionExecutor] = dict(executors or {})

    def register(self, queue_name: QueueName, executor: ActionExecutor) -> None:
        self._executors[queue_name] = executor

    def has_default(self) -> bool:
        return QueueName.AGENT_ACTIONS in self._executors

    def find(self, queue_name: QueueName) -> Optional[ActionExecutor]:
        return self._executors.get(queue_name) or self._executors.get(QueueName.AGENT_ACTIONS)


def build_executor_registry(settings: Settings) -> ExecutorRegistry:
    """Wire an HTTP executor for every category with a configured URL."""
    registry = ExecutorRegistry()
    for name, url in settings.executor_urls.items():
        registry.register(
            QueueName(name),
            HttpDelegateExecutor(url, timeout=settings.executor_timeout_seconds),
        )
        logger.info("Registered HTTP executor for %s -> %s", name, url)
    return registry
