"""ORM model for agent runs, one row per submitted job."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from agent_queue.db.base import Base


class RunStatus(str, enum.Enum):
    """Execution states of a run."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AgentRun(Base):
    """One execution of an action, 1:1 with a broker job."""

    __tablename__ = "agent_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    action_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agent_actions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_token: Mapped[str] = mapped_column(String(255), nullable=False)

    # Doubles as the broker job id
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    policy: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),  # Store as string to avoid enum name/value confusion
        nullable=False,
        default=RunStatus.QUEUED.value,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    stats: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    output_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error_details: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
