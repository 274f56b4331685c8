"""
Pytest configuration and fixtures for gitmod tests.
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from gitmod.datatypes.config_datatypes import ConfigDocument  # noqa: E402
from gitmod.store.errors import ConfigConflict, ConfigNotFound  # noqa: E402


class FakeClock:
    """Manually advanced unix clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConfigStore:
    """In-memory store with the same optimistic concurrency rules as GitHub.

    Every committed write bumps the revision; a write carrying any other
    revision raises ConfigConflict. ``read_barrier`` lets tests force two
    readers to observe the same revision before either writes.
    """

    def __init__(self, document: ConfigDocument | None = None) -> None:
        self.document = document
        self.version = 0
        self.reads = 0
        self.writes: list[tuple[ConfigDocument, str | None, str]] = []
        self.read_barrier: asyncio.Barrier | None = None
        self.read_error: Exception | None = None
        self.write_error: Exception | None = None

    @property
    def revision(self) -> str | None:
        return None if self.document is None else f"sha-{self.version}"

    async def read(self):
        self.reads += 1
        if self.read_error is not None:
            raise self.read_error
        if self.document is None:
            raise ConfigNotFound("no document")
        snapshot = (self.document, self.revision)
        if self.read_barrier is not None:
            await self.read_barrier.wait()
        return snapshot

    async def write(self, document, revision, message):
        if self.write_error is not None:
            raise self.write_error
        if revision != self.revision:
            raise ConfigConflict(f"stale revision {revision}, current {self.revision}")
        self.document = document
        self.version += 1
        self.writes.append((document, revision, message))
        return self.revision


def make_dispatcher(is_admin: bool = True) -> AsyncMock:
    dispatcher = AsyncMock()
    dispatcher.notify.return_value = {"message_id": 500}
    dispatcher.is_admin.return_value = is_admin
    return dispatcher


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def dispatcher() -> AsyncMock:
    return make_dispatcher()
