"""Pydantic schemas for queue API endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from agent_queue.services.queue.models import (
    MAX_PRIORITY,
    MIN_PRIORITY,
    Policy,
    QueueName,
    RepeatOptions,
    SubmitOptions,
)


class RepeatRequest(BaseModel):
    """Recurring submission settings."""

    every_ms: int = Field(gt=0, description="Interval between occurrences in milliseconds")
    limit: int | None = Field(default=None, ge=1, description="Total occurrences, unbounded if omitted")


class QueueActionRequest(BaseModel):
    """Request payload to submit an action to the queues."""

    user_token: str = Field(min_length=1)
    action_type: str = Field(min_length=1, description="Declared type, used for routing")
    payload: dict[str, Any] = Field(default_factory=dict)
    policy: Policy = Field(default_factory=Policy)
    category: QueueName | None = Field(
        default=None,
        description="Target queue; overrides routing by action type",
    )
    priority: int = Field(
        default=50,
        ge=MIN_PRIORITY,
        le=MAX_PRIORITY,
        description="Lower numbers dispatch first",
    )
    delay_ms: int = Field(default=0, ge=0)
    repeat: RepeatRequest | None = None

    def to_options(self) -> SubmitOptions:
        repeat = (
            RepeatOptions(every_ms=self.repeat.every_ms, limit=self.repeat.limit)
            if self.repeat
            else None
        )
        return SubmitOptions(priority=self.priority, delay_ms=self.delay_ms, repeat=repeat)


class QueueActionResponse(BaseModel):
    """Response for a submitted action."""

    action_id: str
    job_id: str


class QueueStatsResponse(BaseModel):
    """Job counts per broker state for one queue."""

    queue: str
    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int

    model_config = ConfigDict(from_attributes=True)


class CleanQueueRequest(BaseModel):
    """Age threshold for pruning finished job history."""

    older_than_ms: int | None = Field(default=None, ge=0)  # configured grace period when unset


class CleanQueueResponse(BaseModel):
    """Job ids removed from a queue's history."""

    queue: str
    completed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class JobProgressResponse(BaseModel):
    """Last reported progress of a job."""

    queue: str
    job_id: str
    progress: int | None = Field(default=None, ge=0, le=100)
