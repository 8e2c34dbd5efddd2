"""Database access helpers for agent actions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from agent_queue.models.action import ActionStatus, AgentAction
from agent_queue.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

# Timestamp column stamped when an action enters the given status
_STATUS_TIMESTAMPS = {
    ActionStatus.QUEUED: "queued_at",
    ActionStatus.RUNNING: "started_at",
    ActionStatus.COMPLETED: "completed_at",
    ActionStatus.FAILED: "failed_at",
}


class ActionRepository(BaseRepository[AgentAction]):
    """Repository for status bookkeeping on agent actions."""

    def __init__(self) -> None:
        super().__init__(model=AgentAction)

    async def update_status(
        self,
        session: AsyncSession,
        action_id: str,
        status: ActionStatus,
        *,
        error_message: str | None = None,
    ) -> bool:
        """Move an action to ``status``; returns False if the action does not exist."""
        now = datetime.now(timezone.utc)
        values: dict[str, object] = {"status": status.value, "updated_at": now}

        column = _STATUS_TIMESTAMPS.get(status)
        if column:
            values[column] = now
        if status == ActionStatus.FAILED and error_message:
            values["error_message"] = error_message

        updated = await self.update_where(session, AgentAction.id == action_id, values=values)
        await session.commit()

        if not updated:
            logger.warning("Action %s not found while setting status %s", action_id, status.value)
        return updated > 0

    async def increment_retry_count(self, session: AsyncSession, action_id: str) -> bool:
        """Bump the retry counter exposed to users on failed actions."""
        updated = await self.update_where(
            session,
            AgentAction.id == action_id,
            values={
                "retry_count": AgentAction.retry_count + 1,
                "updated_at": datetime.now(timezone.utc),
            },
        )
        await session.commit()
        return updated > 0
