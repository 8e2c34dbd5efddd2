"""Database access helpers for agent runs.

Status transitions are guarded in SQL so that a run reaches a terminal state
only once per attempt:

    queued|failed|running -> running   (retry, or requeue after a worker shutdown)
    running               -> succeeded
    queued|running        -> failed
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from agent_queue.models.run import AgentRun, RunStatus
from agent_queue.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

RUNNABLE_STATUSES = (RunStatus.QUEUED.value, RunStatus.FAILED.value, RunStatus.RUNNING.value)
FAILABLE_STATUSES = (RunStatus.QUEUED.value, RunStatus.RUNNING.value)


class RunRepository(BaseRepository[AgentRun]):
    """Repository for interacting with agent run records."""

    def __init__(self) -> None:
        super().__init__(model=AgentRun)

    async def create(self, session: AsyncSession, *, data: dict[str, Any]) -> AgentRun:
        """Insert a new run in the ``queued`` state."""
        run = AgentRun(status=RunStatus.QUEUED.value, **data)
        created = await self.add(session, run)
        await session.commit()
        return created

    async def get_by_id(self, session: AsyncSession, run_id: str) -> AgentRun | None:
        """Get a run by ID."""
        return await self.get(session, run_id)

    async def mark_running(
        self, session: AsyncSession, run_id: str, *, started_at: datetime
    ) -> bool:
        """Start an attempt. Also valid after a failed attempt that is being retried."""
        return await self._transition(
            session,
            run_id,
            RunStatus.RUNNING,
            allowed_from=RUNNABLE_STATUSES,
            values={
                "started_at": started_at,
                "completed_at": None,
                "attempts": AgentRun.attempts + 1,
            },
        )

    async def mark_succeeded(
        self,
        session: AsyncSession,
        run_id: str,
        *,
        output_data: dict[str, Any],
        stats: dict[str, Any],
        duration_ms: int,
        completed_at: datetime,
    ) -> bool:
        """Finish the current attempt successfully, clearing earlier attempt errors."""
        return await self._transition(
            session,
            run_id,
            RunStatus.SUCCEEDED,
            allowed_from=(RunStatus.RUNNING.value,),
            values={
                "output_data": output_data,
                "stats": stats,
                "duration_ms": duration_ms,
                "completed_at": completed_at,
                "error_details": None,
            },
        )

    async def mark_failed(
        self,
        session: AsyncSession,
        run_id: str,
        *,
        error_details: str,
        duration_ms: int | None,
        completed_at: datetime,
    ) -> bool:
        """Record a failed attempt (or a submission that never reached the broker)."""
        return await self._transition(
            session,
            run_id,
            RunStatus.FAILED,
            allowed_from=FAILABLE_STATUSES,
            values={
                "error_details": error_details,
                "duration_ms": duration_ms,
                "completed_at": completed_at,
            },
        )

    async def _transition(
        self,
        session: AsyncSession,
        run_id: str,
        status: RunStatus,
        *,
        allowed_from: tuple[str, ...],
        values: dict[str, Any],
    ) -> bool:
        updated = await self.update_where(
            session,
            AgentRun.id == run_id,
            AgentRun.status.in_(allowed_from),
            values={"status": status.value, **values},
        )
        await session.commit()

        if not updated:
            logger.warning(
                "Refused transition of run %s to %s (allowed from: %s)",
                run_id,
                status.value,
                ", ".join(allowed_from),
            )
        return updated > 0
