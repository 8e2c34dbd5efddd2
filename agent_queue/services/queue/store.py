"""Run Store access used by the queue core.

Each call opens its own short session so concurrent handlers never share one.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agent_queue.models.action import ActionStatus
from agent_queue.models.run import AgentRun
from agent_queue.repositories.action import ActionRepository
from agent_queue.repositories.run import RunRepository
from agent_queue.services.queue.models import Policy, RunStoreError

logger = logging.getLogger(__name__)


class RunStore:
    """Persistence facade over the run and action repositories."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        runs: RunRepository | None = None,
        actions: ActionRepository | None = None,
    ):
        self._session_factory = session_factory
        self._runs = runs or RunRepository()
        self._actions = actions or ActionRepository()

    async def create_run(
        self,
        *,
        action_id: str,
        user_token: str,
        idempotency_key: str,
        policy: Policy,
    ) -> AgentRun:
        """Insert a ``queued`` run for a submission.

        Raises:
            RunStoreError: If the insert fails for any database reason
        """
        try:
            async with self._session_factory() as session:
                return await self._runs.create(
                    session,
                    data={
                        "action_id": action_id,
                        "user_token": user_token,
                        "idempotency_key": idempotency_key,
                        "policy": policy.model_dump(mode="json"),
                        "stats": {},
                        "output_data": {},
                    },
                )
        except SQLAlchemyError as e:
            logger.error("Failed to create run for action %s: %s", action_id, e)
            raise RunStoreError(
                f"Failed to create run: {e}",
                {"action_id": action_id, "idempotency_key": idempotency_key, "reason": str(e)},
            ) from e

    async def get_run(self, run_id: str) -> AgentRun | None:
        async with self._session_factory() as session:
            return await self._runs.get_by_id(session, run_id)

    async def mark_run_running(self, run_id: str, *, started_at: datetime) -> bool:
        async with self._session_factory() as session:
            return await self._runs.mark_running(session, run_id, started_at=started_at)

    async def mark_run_succeeded(
        self,
        run_id: str,
        *,
        output_data: dict[str, Any],
        stats: dict[str, Any],
        duration_ms: int,
        completed_at: datetime,
    ) -> bool:
        async with self._session_factory() as session:
            return await self._runs.mark_succeeded(
                session,
                run_id,
                output_data=output_data,
                stats=stats,
                duration_ms=duration_ms,
                completed_at=completed_at,
            )

    async def mark_run_failed(
        self,
        run_id: str,
        *,
        error_details: str,
        completed_at: datetime,
        duration_ms: int | None = None,
    ) -> bool:
        async with self._session_factory() as session:
            return await self._runs.mark_failed(
                session,
                run_id,
                error_details=error_details,
                duration_ms=duration_ms,
                completed_at=completed_at,
            )

    async def update_action_status(
        self, action_id: str, status: ActionStatus, *, error_message: str | None = None
    ) -> bool:
        async with self._session_factory() as session:
            return await self._actions.update_status(
                session, action_id, status, error_message=error_message
            )

    async def increment_action_retries(self, action_id: str) -> bool:
        async with self._session_factory() as session:
            return await self._actions.increment_retry_count(session, action_id)
