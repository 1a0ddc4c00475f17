from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

import pytest

from parley.schemas.chat import ChatMessage
from parley.store import MessageStore


class FakeClock:
    """Millisecond clock that advances by one tick per call."""

    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


class FakeRelay:
    """Stands in for ``RelayClient``: yields preset chunks, then optionally raises.

    Set ``gate`` to an ``asyncio.Event`` to hold the stream open after the
    first chunk until the test releases it.
    """

    def __init__(self) -> None:
        self.chunks: list[bytes] = [b"Hello", b" world"]
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.calls: list[tuple[list[ChatMessage], str]] = []

    async def stream_reply(self, messages: Sequence[ChatMessage], context: str = "") -> AsyncIterator[bytes]:
        self.calls.append((list(messages), context))
        self.started.set()
        for index, chunk in enumerate(self.chunks):
            yield chunk
            if index == 0 and self.gate is not None:
                await self.gate.wait()
        if self.error is not None:
            raise self.error


@pytest.fixture
async def store(tmp_path: Path) -> AsyncIterator[MessageStore]:
    """An open store backed by a fresh SQLite file per test."""
    async with MessageStore(f"sqlite+aiosqlite:///{tmp_path / 'turns.db'}") as message_store:
        yield message_store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_relay() -> FakeRelay:
    return FakeRelay()
