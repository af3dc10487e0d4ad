"""Shared fixtures for tank-talk tests."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass

import pytest

from tank_talk.common.config import GameConfig
from tank_talk.common.protocol import MessageType
from tank_talk.server.audio_relay import AudioRelay
from tank_talk.server.combat import CombatEngine
from tank_talk.server.connection import Connection
from tank_talk.server.entity_store import EntityStore
from tank_talk.server.registry import ConnectionRegistry


# Mock StreamReader/StreamWriter for protocol tests
class MockStreamReader:
    """Mock asyncio.StreamReader for testing protocol reads."""

    def __init__(self, data: bytes = b"") -> None:
        self._data = data
        self._offset = 0

    def feed_data(self, data: bytes) -> None:
        """Add data to the stream."""
        self._data = self._data[self._offset :] + data
        self._offset = 0

    async def readexactly(self, n: int) -> bytes:
        """Read exactly n bytes."""
        if self._offset + n > len(self._data):
            raise asyncio.IncompleteReadError(
                self._data[self._offset :], n - (len(self._data) - self._offset)
            )
        result = self._data[self._offset : self._offset + n]
        self._offset += n
        return result


class MockStreamWriter:
    """Mock asyncio.StreamWriter for testing protocol writes."""

    def __init__(self) -> None:
        self._data = b""
        self._closed = False

    def write(self, data: bytes) -> None:
        self._data += data

    async def drain(self) -> None:
        pass

    def get_data(self) -> bytes:
        return self._data

    def clear(self) -> None:
        self._data = b""

    def close(self) -> None:
        self._closed = True

    async def wait_closed(self) -> None:
        pass


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConnection(Connection):
    """Connection that records every message instead of sending it."""

    transport = "websocket"

    def __init__(self, address: str = "127.0.0.1:5000") -> None:
        super().__init__(address)
        self.sent: list[tuple[MessageType, bytes]] = []

    def send(self, msg_type: MessageType, payload: bytes = b"") -> None:
        if not self.closed:
            self.sent.append((msg_type, payload))

    def close(self) -> None:
        self.closed = True

    def of_type(self, msg_type: MessageType) -> list[bytes]:
        """Payloads of all recorded messages with the given type."""
        return [payload for t, payload in self.sent if t == msg_type]

    def clear(self) -> None:
        self.sent.clear()


@dataclass
class MockPlayer:
    """Minimal positioned player for audio routing tests."""

    id: int
    x: float
    y: float
    name: str = "test"


@dataclass
class ServerParts:
    """The server's game components wired together around a fake clock."""

    clock: FakeClock
    store: EntityStore
    registry: ConnectionRegistry
    combat: CombatEngine
    relay: AudioRelay

    def join(self, x: float | None = None, y: float | None = None) -> FakeConnection:
        """Connect a fake client, optionally placing its player."""
        connection = FakeConnection()
        player, _ = self.registry.on_connect(connection)
        if x is not None and y is not None:
            player.x, player.y = x, y
        return connection


@pytest.fixture
def mock_reader() -> MockStreamReader:
    return MockStreamReader()


@pytest.fixture
def mock_writer() -> MockStreamWriter:
    return MockStreamWriter()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def build_server(clock: FakeClock, config: GameConfig | None = None) -> ServerParts:
    """Server components sharing a fake clock and a seeded RNG."""
    store = EntityStore(config or GameConfig(), rng=random.Random(1234))
    registry = ConnectionRegistry(store, clock=clock)
    combat = CombatEngine(store, registry, clock=clock, wall_clock_ms=lambda: 5000)
    relay = AudioRelay(store, registry, clock=clock, wall_clock_ms=lambda: 10_000.0)
    return ServerParts(clock, store, registry, combat, relay)


@pytest.fixture
def server(clock: FakeClock) -> ServerParts:
    return build_server(clock)
