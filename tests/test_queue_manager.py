"""Tests for the queue manager."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from agent_queue.core.config import Settings
from agent_queue.models.action import ActionStatus
from agent_queue.services.queue.events import QueueEvents
from agent_queue.services.queue.executors import ActionExecutor, ExecutorRegistry
from agent_queue.services.queue.models import (
    CATEGORY_CONCURRENCY,
    JOB_FUNCTION_NAME,
    JobState,
    Policy,
    QueueConnectionError,
    QueueError,
    QueueName,
    QueueNotFoundError,
    QueueStats,
    RunStoreError,
    SubmitOptions,
)
from agent_queue.services.queue.queue import JobQueue
from agent_queue.services.queue.redis import RedisConnection
from agent_queue.services.queue.service import QueueManager
from agent_queue.services.queue.store import RunStore


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def connection(fake_redis):
    """Create mock broker connection around the in-memory client."""
    mock = MagicMock(spec=RedisConnection)
    mock.client = fake_redis
    mock.borrow.return_value = fake_redis
    mock.is_connected = True
    return mock


@pytest.fixture
def store():
    mock = AsyncMock(spec=RunStore)
    mock.create_run.return_value = MagicMock(id="run-1")
    return mock


@pytest.fixture
def registry():
    return ExecutorRegistry({QueueName.AGENT_ACTIONS: AsyncMock(spec=ActionExecutor)})


@pytest.fixture
def manager(connection, store, settings, registry):
    return QueueManager(connection, store, settings, registry)


@pytest.fixture
def worker_cls():
    """Patch the worker class so no real polling loop starts."""
    with patch("agent_queue.services.queue.service.CategoryWorker") as mock_cls:
        mock_cls.side_effect = lambda **kwargs: MagicMock(
            async_run=AsyncMock(), close=AsyncMock(), kwargs=kwargs
        )
        yield mock_cls


async def _submit(manager, action_type: str = "cms-publish-123", **kwargs) -> str:
    return await manager.queue_action(
        kwargs.pop("action_id", "a1"),
        "user-1",
        action_type,
        {"post_id": 42},
        kwargs.pop("policy", {"environment": "DRY_RUN"}),
        **kwargs,
    )


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    """Tests for manager initialization."""

    def test_creates_every_queue(self, manager):
        assert manager.queue_names == [name.value for name in QueueName]

    def test_does_not_start_workers(self, manager, worker_cls):
        assert manager.workers_started is False
        worker_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_open_starts_event_listeners(self, manager):
        with patch.object(QueueEvents, "start", new_callable=AsyncMock) as start:
            await manager.open()
            await manager.open()

        assert start.await_count == 2 * len(QueueName)


# =============================================================================
# Submission
# =============================================================================


class TestQueueAction:
    """Tests for submitting actions."""

    @pytest.mark.asyncio
    async def test_run_created_before_enqueue(self, manager, store, fake_redis):
        """Test the run row exists before anything reaches the broker."""

        async def create_run(**kwargs):
            assert fake_redis.enqueued == []
            return MagicMock(id="run-1")

        store.create_run.side_effect = create_run

        job_id = await _submit(manager)

        assert job_id == fake_redis.enqueued[0]["job_id"]
        store.create_run.assert_awaited_once()
        assert store.create_run.await_args.kwargs["idempotency_key"] == job_id

    @pytest.mark.asyncio
    async def test_run_insert_failure_enqueues_nothing(self, manager, store, fake_redis):
        store.create_run.side_effect = RunStoreError("Failed to create run: db down")

        with pytest.raises(RunStoreError):
            await _submit(manager)

        assert fake_redis.enqueued == []
        store.update_action_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_job_carries_run_and_policy(self, manager, fake_redis):
        await _submit(manager, policy=Policy.model_validate({"environment": "PRODUCTION"}))

        kwargs = fake_redis.enqueued[0]["kwargs"]
        assert fake_redis.enqueued[0]["function"] == JOB_FUNCTION_NAME
        assert kwargs["run_id"] == "run-1"
        assert kwargs["action_id"] == "a1"
        assert kwargs["policy"]["environment"] == "PRODUCTION"
        assert kwargs["payload"] == {"post_id": 42}
        assert kwargs["repeat"] is None

    @pytest.mark.asyncio
    async def test_action_marked_queued(self, manager, store):
        await _submit(manager)

        store.update_action_status.assert_awaited_once_with("a1", ActionStatus.QUEUED)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "action_type,expected",
        [
            ("content-generate", "content-generation"),
            ("seo-fix", "technical-seo"),
            ("technical-audit", "technical-seo"),
            ("cms-publish-123", "cms-publishing"),
            ("verify-links", "verification"),
            ("sync-analytics", "agent-actions"),
        ],
    )
    async def test_routing(self, manager, fake_redis, action_type, expected):
        await _submit(manager, action_type)

        assert fake_redis.enqueued[0]["queue_name"] == expected

    @pytest.mark.asyncio
    async def test_explicit_category_overrides_routing(self, manager, fake_redis):
        await _submit(manager, "content-generate", category=QueueName.SCHEDULED_TASKS)

        assert fake_redis.enqueued[0]["queue_name"] == "scheduled-tasks"

    @pytest.mark.asyncio
    async def test_unknown_category(self, manager, store):
        with pytest.raises(QueueNotFoundError):
            await _submit(manager, category="nope")

        store.create_run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_enqueue_failure_marks_run_failed(self, manager, store, fake_redis):
        fake_redis.enqueue_job = AsyncMock(side_effect=RedisConnectionError("refused"))

        with pytest.raises(QueueConnectionError):
            await _submit(manager)

        store.mark_run_failed.assert_awaited_once()
        assert "refused" in store.mark_run_failed.await_args.kwargs["error_details"]
        store.update_action_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_distinct_actions_same_millisecond(self, manager, fake_redis):
        """Test two actions in the same millisecond get two jobs."""
        with patch(
            "agent_queue.services.queue.service.timestamp_ms", return_value=1700000000000
        ):
            first = await _submit(manager, action_id="a1")
            second = await _submit(manager, action_id="a2")

        assert first != second
        assert len(fake_redis.enqueued) == 2

    @pytest.mark.asyncio
    async def test_priority_and_delay_are_passed(self, manager, fake_redis):
        fake_redis.clock = lambda: 1_000_000
        with patch("agent_queue.services.queue.queue.timestamp_ms", return_value=1_000_000):
            await _submit(manager, options=SubmitOptions(priority=10, delay_ms=5000))

        assert fake_redis.zsets["cms-publishing"][fake_redis.enqueued[0]["job_id"]] == 1_005_000
        assert fake_redis.enqueued[0]["kwargs"]["priority"] == 10


# =============================================================================
# Workers
# =============================================================================


class TestStartWorkers:
    """Tests for worker activation."""

    @pytest.mark.asyncio
    async def test_one_worker_per_queue_with_category_concurrency(self, manager, worker_cls):
        await manager.start_workers()

        assert worker_cls.call_count == len(QueueName)
        limits = {
            c.kwargs["queue"].name: c.kwargs["max_jobs"] for c in worker_cls.call_args_list
        }
        assert limits == {name.value: CATEGORY_CONCURRENCY[name] for name in QueueName}
        assert limits["cms-publishing"] == 2

    @pytest.mark.asyncio
    async def test_worker_configuration(self, manager, worker_cls, connection, settings):
        await manager.start_workers()

        kwargs = worker_cls.call_args_list[0].kwargs
        assert kwargs["max_tries"] == settings.queue_job_attempts
        assert kwargs["redis_pool"] is connection.borrow.return_value
        assert kwargs["queue"].pause_key == "agentq:agent-actions:paused"
        assert kwargs["functions"][0].name == JOB_FUNCTION_NAME

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, manager, worker_cls):
        await manager.start_workers()
        await manager.start_workers()

        assert worker_cls.call_count == len(QueueName)
        assert manager.workers_started is True

    @pytest.mark.asyncio
    async def test_requires_registry(self, connection, store, settings, worker_cls):
        manager = QueueManager(connection, store, settings)

        with pytest.raises(QueueError):
            await manager.start_workers()

        worker_cls.assert_not_called()


# =============================================================================
# Operations
# =============================================================================


class TestOperations:
    """Tests for stats, pause, resume and clean."""

    @pytest.mark.asyncio
    async def test_stats(self, manager):
        stats = await manager.get_queue_stats("verification")
        assert stats == QueueStats(waiting=0, active=0, completed=0, failed=0, delayed=0)

    @pytest.mark.asyncio
    async def test_all_stats(self, manager):
        stats = await manager.get_all_queue_stats()
        assert list(stats) == manager.queue_names

    @pytest.mark.asyncio
    async def test_pause_affects_one_queue(self, manager, fake_redis):
        await manager.pause_queue("cms-publishing")

        assert "agentq:cms-publishing:paused" in fake_redis.values
        assert "agentq:verification:paused" not in fake_redis.values

        await manager.resume_queue(QueueName.CMS_PUBLISHING)
        assert "agentq:cms-publishing:paused" not in fake_redis.values

    @pytest.mark.asyncio
    async def test_clean_both_histories(self, manager):
        with patch.object(JobQueue, "clean", new_callable=AsyncMock, return_value=[]) as clean:
            removed = await manager.clean_queue("verification")

        assert removed == {"completed": [], "failed": []}
        assert [c.args for c in clean.await_args_list] == [
            (86_400_000, 100, JobState.COMPLETED),
            (86_400_000, 50, JobState.FAILED),
        ]

    @pytest.mark.asyncio
    async def test_clean_uses_configured_grace(self, connection, store, registry):
        settings = Settings(queue_clean_grace_seconds=3600)
        manager = QueueManager(connection, store, settings, registry)

        with patch.object(JobQueue, "clean", new_callable=AsyncMock, return_value=[]) as clean:
            await manager.clean_queue("verification")

        assert {c.args[0] for c in clean.await_args_list} == {3_600_000}

    @pytest.mark.asyncio
    async def test_clean_with_explicit_threshold(self, manager):
        with patch.object(JobQueue, "clean", new_callable=AsyncMock, return_value=[]) as clean:
            await manager.clean_queue("verification", older_than_ms=1000)

        assert {c.args[0] for c in clean.await_args_list} == {1000}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "operation",
        ["get_queue_stats", "pause_queue", "resume_queue", "clean_queue"],
    )
    async def test_unknown_queue(self, manager, operation):
        with pytest.raises(QueueNotFoundError):
            await getattr(manager, operation)("missing-queue")

    @pytest.mark.asyncio
    async def test_job_progress(self, manager, fake_redis):
        fake_redis.values["agentq:verification:progress:a1-1"] = b"25"

        assert await manager.get_job_progress("verification", "a1-1") == 25


# =============================================================================
# Shutdown
# =============================================================================


class TestShutdown:
    """Tests for ordered teardown."""

    @pytest.mark.asyncio
    async def test_shutdown_order(self, manager, worker_cls, connection):
        """Test workers close before events, queues and the connection."""
        order: list[str] = []
        await manager.start_workers()
        for worker in manager._workers.values():
            worker.close.side_effect = lambda: order.append("worker")
        connection.disconnect.side_effect = lambda: order.append("connection")

        with patch.object(
            QueueEvents, "close", new=AsyncMock(side_effect=lambda: order.append("events"))
        ), patch.object(
            JobQueue, "close", new=AsyncMock(side_effect=lambda: order.append("queue"))
        ):
            await manager.shutdown()

        count = len(QueueName)
        assert order == (
            ["worker"] * count + ["events"] * count + ["queue"] * count + ["connection"]
        )

    @pytest.mark.asyncio
    async def test_broker_released_when_teardown_fails(self, manager, connection):
        """Test the connection is closed even if an event subscription fails to close."""
        with patch.object(
            QueueEvents, "close", new=AsyncMock(side_effect=RuntimeError("subscription broken"))
        ), patch.object(JobQueue, "close", new_callable=AsyncMock) as queue_close:
            with pytest.raises(RuntimeError, match="subscription broken"):
                await manager.shutdown()

        assert queue_close.await_count == len(QueueName)
        connection.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_twice_is_safe(self, manager, connection):
        await manager.shutdown()
        await manager.shutdown()

        connection.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_submissions_after_shutdown(self, manager, store):
        await manager.shutdown()

        with pytest.raises(QueueError):
            await _submit(manager)

        store.create_run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cannot_start_workers_after_shutdown(self, manager, worker_cls):
        await manager.shutdown()

        with pytest.raises(QueueError):
            await manager.start_workers()
