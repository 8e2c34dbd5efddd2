"""Queue infrastructure models for agent action jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class QueueName(str, Enum):
    """Job categories. Each one is a separate broker queue."""

    AGENT_ACTIONS = "agent-actions"
    CONTENT_GENERATION = "content-generation"
    TECHNICAL_SEO = "technical-seo"
    CMS_PUBLISHING = "cms-publishing"
    VERIFICATION = "verification"
    SCHEDULED_TASKS = "scheduled-tasks"


# Jobs pulled simultaneously per worker process, sized by resource cost
CATEGORY_CONCURRENCY: dict[QueueName, int] = {
    QueueName.AGENT_ACTIONS: 5,
    QueueName.CONTENT_GENERATION: 3,  # CPU / external API heavy
    QueueName.TECHNICAL_SEO: 5,
    QueueName.CMS_PUBLISHING: 2,  # rate-sensitive vendor APIs
    QueueName.VERIFICATION: 10,  # lightweight checks
    QueueName.SCHEDULED_TASKS: 1,
}

# arq function name registered by every category worker
JOB_FUNCTION_NAME = "process_agent_job"

MIN_PRIORITY = 0
MAX_PRIORITY = 100
DEFAULT_PRIORITY = 50  # lower dispatches first


class Environment(str, Enum):
    """Where an action is allowed to have side effects."""

    DRY_RUN = "DRY_RUN"
    STAGING = "STAGING"
    PRODUCTION = "PRODUCTION"


class Policy(BaseModel):
    """Execution constraints captured on the run when it is submitted."""

    environment: Environment = Environment.DRY_RUN
    max_pages: int | None = Field(default=None, ge=0)
    max_patches: int | None = Field(default=None, ge=0)
    timeout_ms: int | None = Field(default=None, gt=0)
    requires_approval: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")


class JobState(str, Enum):
    """Broker-side job states reported by queue statistics."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


class QueueEvent(str, Enum):
    """Lifecycle events published on a queue's event channel."""

    COMPLETED = "completed"
    FAILED = "failed"
    PROGRESS = "progress"


@dataclass(frozen=True)
class RepeatOptions:
    """Recurring submission: run every ``every_ms``, at most ``limit`` times."""

    every_ms: int
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.every_ms <= 0:
            raise ValueError("every_ms must be positive")
        if self.limit is not None and self.limit < 1:
            raise ValueError("limit must be at least 1")

    def next(self) -> RepeatOptions | None:
        """Options for the following occurrence, or None when exhausted."""
        if self.limit is None:
            return self
        if self.limit <= 1:
            return None
        return RepeatOptions(every_ms=self.every_ms, limit=self.limit - 1)

    def to_dict(self) -> dict[str, Any]:
        return {"every_ms": self.every_ms, "limit": self.limit}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RepeatOptions | None:
        if not data:
            return None
        return cls(every_ms=int(data["every_ms"]), limit=data.get("limit"))


@dataclass(frozen=True)
class SubmitOptions:
    """Scheduling hints for a submission."""

    priority: int = DEFAULT_PRIORITY
    delay_ms: int = 0
    repeat: RepeatOptions | None = None


@dataclass
class JobStats:
    """Execution statistics stored on the run."""

    execution_time_ms: int
    pages_processed: int = 0
    patches_applied: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "execution_time_ms": self.execution_time_ms,
            "pages_processed": self.pages_processed,
            "patches_applied": self.patches_applied,
        }


@dataclass
class JobResult:
    """Value returned to the broker for a finished job."""

    success: bool
    stats: JobStats
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "stats": self.stats.to_dict(),
        }


@dataclass
class QueueStats:
    """Job counts per broker state for one queue."""

    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int


class QueueError(Exception):
    """Base exception for queue errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class QueueNotFoundError(QueueError):
    """Raised when an operation names a queue that does not exist."""

    def __init__(self, queue_name: str):
        super().__init__(f"Queue not found: {queue_name}", {"queue_name": queue_name})


class QueueConnectionError(QueueError):
    """Raised when Redis connection fails."""

    pass


class RunStoreError(QueueError):
    """Raised when the run store cannot persist a submission."""

    pass


class ExecutorNotRegisteredError(QueueError):
    """Raised when a category has no executor to delegate to."""

    def __init__(self, queue_name: str):
        super().__init__(
            f"No executor registered for queue: {queue_name}", {"queue_name": queue_name}
        )
