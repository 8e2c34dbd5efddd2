"""Agent Job Queue System.

Multi-queue background execution of agent actions using arq with Redis,
with run state tracked in the relational Run Store.
"""

from agent_queue.services.queue.context import JobContext
from agent_queue.services.queue.executors import (
    ActionExecutor,
    ExecutionOutcome,
    ExecutorRegistry,
    HttpDelegateExecutor,
    build_executor_registry,
)
from agent_queue.services.queue.models import (
    CATEGORY_CONCURRENCY,
    Environment,
    JobResult,
    JobState,
    JobStats,
    Policy,
    QueueName,
    QueueStats,
    RepeatOptions,
    SubmitOptions,
    ExecutorNotRegisteredError,
    QueueConnectionError,
    QueueError,
    QueueNotFoundError,
    RunStoreError,
)
from agent_queue.services.queue.redis import RedisConnection
from agent_queue.services.queue.routing import resolve_queue
from agent_queue.services.queue.service import (
    QueueManager,
    build_idempotency_key,
    create_queue_manager,
)
from agent_queue.services.queue.store import RunStore

__all__ = [
    # Enums
    "Environment",
    "JobState",
    "QueueName",
    # Data classes
    "JobResult",
    "JobStats",
    "Policy",
    "QueueStats",
    "RepeatOptions",
    "SubmitOptions",
    # Constants
    "CATEGORY_CONCURRENCY",
    # Exceptions
    "ExecutorNotRegisteredError",
    "QueueConnectionError",
    "QueueError",
    "QueueNotFoundError",
    "RunStoreError",
    # Execution
    "ActionExecutor",
    "ExecutionOutcome",
    "ExecutorRegistry",
    "HttpDelegateExecutor",
    "JobContext",
    "build_executor_registry",
    # Redis
    "RedisConnection",
    # Run Store
    "RunStore",
    # Manager
    "QueueManager",
    "build_idempotency_key",
    "create_queue_manager",
    "resolve_queue",
]
