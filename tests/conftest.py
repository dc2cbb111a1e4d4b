from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from backend import RedisBackend
from relay.service import ChatRelay


class FakeRedis:
    """The handful of async Redis list commands the message store uses."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.fail_writes = False
        self.fail_reads = False
        self.read_gate: Optional[asyncio.Event] = None
        self.closed = False

    async def ping(self) -> bool:
        if self.fail_reads:
            raise ConnectionError("redis unavailable")
        return True

    async def rpush(self, key: str, value: str) -> int:
        if self.fail_writes:
            raise ConnectionError("redis unavailable")
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.fail_reads:
            raise ConnectionError("redis unavailable")
        items = self.lists.get(key, [])
        if start < 0:
            start = max(len(items) + start, 0)
        if end < 0:
            end = len(items) + end
        return list(items[start:end + 1])

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))

    async def exists(self, key: str) -> int:
        return 1 if self.lists.get(key) else 0

    async def aclose(self) -> None:
        self.closed = True


class FakeSocket:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = fail
        self.close_code: Optional[int] = None

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    def types(self) -> list[str]:
        return [event["type"] for event in self.sent]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [event for event in self.sent if event["type"] == event_type]

    def clear(self) -> None:
        self.sent.clear()


async def settle(relay: ChatRelay) -> None:
    """Let background writes finish and every outbox drain."""
    await relay.wait_for_pending_writes()
    await relay.dispatcher.flush()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def backend(fake_redis: FakeRedis) -> RedisBackend:
    return RedisBackend(redis_client=fake_redis)


@pytest.fixture
def relay(backend: RedisBackend) -> ChatRelay:
    return ChatRelay(backend)
