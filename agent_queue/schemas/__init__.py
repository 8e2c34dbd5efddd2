"""Pydantic schemas exposed by the operations API."""

from agent_queue.schemas.queue import (
    CleanQueueRequest,
    CleanQueueResponse,
    JobProgressResponse,
    QueueActionRequest,
    QueueActionResponse,
    QueueStatsResponse,
    RepeatRequest,
)

__all__ = [
    "CleanQueueRequest",
    "CleanQueueResponse",
    "JobProgressResponse",
    "QueueActionRequest",
    "QueueActionResponse",
    "QueueStatsResponse",
    "RepeatRequest",
]
