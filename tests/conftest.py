"""Shared fixtures for queue tests."""

from __future__ import annotations

import math
from collections import defaultdict
from unittest.mock import MagicMock

import pytest
from arq.constants import result_key_prefix
from arq.utils import timestamp_ms, to_ms

from agent_queue.core.config import Settings


def _bound(value: str | int) -> tuple[float, bool]:
    """Parse a Redis score bound into (score, exclusive)."""
    if isinstance(value, str):
        if value in ("-inf", "+inf"):
            return (-math.inf if value == "-inf" else math.inf), False
        if value.startswith("("):
            return float(value[1:]), True
    return float(value), False


def _in_range(score: float, low: tuple[float, bool], high: tuple[float, bool]) -> bool:
    above = score > low[0] if low[1] else score >= low[0]
    below = score < high[0] if high[1] else score <= high[0]
    return above and below


class FakePipeline:
    """Watch/multi pipeline as used by arq when a worker claims a job."""

    def __init__(self, redis: FakeArqRedis) -> None:
        self._redis = redis

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    async def watch(self, *keys) -> None:
        return None

    async def exists(self, *keys) -> int:
        return await self._redis.exists(*keys)

    async def zscore(self, key, member):
        return await self._redis.zscore(key, member)

    def multi(self) -> None:
        return None

    def psetex(self, key, milliseconds, value) -> None:
        self._redis.values[key] = value

    async def execute(self) -> list:
        return []


class FakeArqRedis:
    """In-memory stand-in for the ArqRedis calls the queue layer makes.

    ``clock`` is the broker's notion of now, used to score enqueued jobs.
    """

    def __init__(self) -> None:
        self.values: dict[str, bytes] = {}
        self.zsets: dict[str, dict[str, int]] = defaultdict(dict)
        self.hashes: dict[str, dict[str, bytes]] = defaultdict(dict)
        self.published: list[tuple[str, str]] = []
        self.enqueued: list[dict] = []
        self.clock = timestamp_ms

    async def enqueue_job(
        self,
        function: str,
        *args,
        _job_id: str | None = None,
        _queue_name: str | None = None,
        _defer_by=None,
        _expires=None,
        **kwargs,
    ):
        queue = self.zsets[_queue_name]
        if _job_id in queue or (result_key_prefix + _job_id) in self.values:
            return None
        queue[_job_id] = self.clock() + (to_ms(_defer_by) or 0)
        self.enqueued.append(
            {
                "function": function,
                "job_id": _job_id,
                "queue_name": _queue_name,
                "defer_by": _defer_by,
                "expires": _expires,
                "kwargs": kwargs,
            }
        )
        return MagicMock(job_id=_job_id)

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def zrangebyscore(
        self, key, min, max, start=None, num=None, withscores=False
    ):
        lo, hi = _bound(min), _bound(max)
        members = [
            (member, score)
            for member, score in sorted(self.zsets[key].items(), key=lambda item: item[1])
            if _in_range(score, lo, hi)
        ]
        if start is not None and num is not None:
            members = members[start : start + num]
        if withscores:
            return [(member.encode(), float(score)) for member, score in members]
        return [member.encode() for member, _ in members]

    async def zscore(self, key, member):
        score = self.zsets[key].get(member)
        return float(score) if score is not None else None

    async def zcount(self, key, low, high) -> int:
        lo, hi = _bound(low), _bound(high)
        return sum(1 for score in self.zsets[key].values() if _in_range(score, lo, hi))

    async def zcard(self, key) -> int:
        return len(self.zsets[key])

    async def zadd(self, key, mapping: dict, xx: bool = False) -> int:
        if xx:
            mapping = {member: score for member, score in mapping.items() if member in self.zsets[key]}
        self.zsets[key].update(mapping)
        return 0 if xx else len(mapping)

    async def hset(self, key, field, value) -> int:
        self.hashes[key][field] = str(value).encode()
        return 1

    async def hget(self, key, field):
        return self.hashes[key].get(field)

    async def hdel(self, key, *fields) -> int:
        return sum(1 for field in fields if self.hashes[key].pop(field, None) is not None)

    async def zremrangebyrank(self, key, start: int, stop: int) -> int:
        ordered = sorted(self.zsets[key].items(), key=lambda item: item[1])
        size = len(ordered)
        if stop < 0:
            stop += size
        removed = ordered[start : stop + 1] if stop >= start else []
        for member, _ in removed:
            del self.zsets[key][member]
        return len(removed)

    async def zrem(self, key, *members) -> int:
        return sum(1 for member in members if self.zsets[key].pop(member, None) is not None)

    async def exists(self, *keys) -> int:
        return sum(1 for key in keys if key in self.values)

    async def set(self, key, value, ex=None) -> bool:
        self.values[key] = str(value).encode()
        return True

    async def get(self, key):
        return self.values.get(key)

    async def delete(self, *keys) -> int:
        return sum(1 for key in keys if self.values.pop(key, None) is not None)

    async def publish(self, channel, message) -> int:
        self.published.append((channel, message))
        return 0

    async def ping(self) -> bool:
        return True


@pytest.fixture
def fake_redis():
    """Create in-memory broker client."""
    return FakeArqRedis()


@pytest.fixture
def settings():
    """Settings with no artificial delays."""
    return Settings(dry_run_delay_seconds=0, api_key="test-key")
