"""Per-connection transports with non-blocking, ordered sends."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from asyncio import StreamReader, StreamWriter

from aiohttp import web

from ..common.protocol import MessageType, encode_packet, write_message

logger = logging.getLogger(__name__)

# Outgoing messages buffered per connection before we start dropping
SEND_QUEUE_SIZE = 1024


class Connection(ABC):
    """One live transport session, 1:1 with a Player while connected."""

    transport: str = "unknown"

    def __init__(self, address: str = "") -> None:
        self.address = address
        self.player_id: int | None = None
        self.closed = False

    @abstractmethod
    def send(self, msg_type: MessageType, payload: bytes = b"") -> None:
        """Queue a message for delivery. Never blocks."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Flush queued messages, then close the transport."""
        ...


class QueuedConnection(Connection):
    """Connection whose writes are drained by a dedicated writer task.

    Senders only enqueue, so a slow peer never stalls the game loop.
    """

    def __init__(self, address: str = "") -> None:
        super().__init__(address)
        self._queue: asyncio.Queue[tuple[MessageType, bytes] | None] = asyncio.Queue(
            maxsize=SEND_QUEUE_SIZE
        )
        self._writer_task: asyncio.Task[None] | None = None
        self.dropped = 0

    def start(self) -> None:
        self._writer_task = asyncio.create_task(self._write_loop())

    def send(self, msg_type: MessageType, payload: bytes = b"") -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait((msg_type, payload))
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped % 100 == 1:
                logger.warning(
                    f"Send queue full for {self.address}, dropped {self.dropped} messages"
                )

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Writer is hopelessly behind; close right away
            if self._writer_task is not None:
                self._writer_task.cancel()
            asyncio.ensure_future(self._close_transport())

    async def wait_closed(self) -> None:
        if self._writer_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer_task

    async def _write_loop(self) -> None:
        try:
            while True:
                item = await self._queue.get()
                if item is None:
                    break
                msg_type, payload = item
                await self._write(msg_type, payload)
        except (ConnectionResetError, BrokenPipeError, OSError) as e:
            logger.debug(f"Write to {self.address} failed: {e}")
            self.closed = True
        finally:
            await self._close_transport()

    @abstractmethod
    async def _write(self, msg_type: MessageType, payload: bytes) -> None: ...

    @abstractmethod
    async def _close_transport(self) -> None: ...


class WebSocketConnection(QueuedConnection):
    """Preferred transport: one binary WebSocket frame per message."""

    transport = "websocket"

    def __init__(self, ws: web.WebSocketResponse, address: str = "") -> None:
        super().__init__(address)
        self.ws = ws

    async def _write(self, msg_type: MessageType, payload: bytes) -> None:
        if self.ws.closed:
            raise ConnectionResetError("WebSocket closed")
        await self.ws.send_bytes(encode_packet(msg_type, payload))

    async def _close_transport(self) -> None:
        if not self.ws.closed:
            await self.ws.close()


class StreamConnection(QueuedConnection):
    """Fallback transport: length-prefixed messages over a TCP stream."""

    transport = "stream"

    def __init__(
        self, reader: StreamReader, writer: StreamWriter, address: str = ""
    ) -> None:
        super().__init__(address)
        self.reader = reader
        self.writer = writer
        # Monotonic time of the last PONG, set by the server on connect
        self.last_pong = 0.0

    async def _write(self, msg_type: MessageType, payload: bytes) -> None:
        await write_message(self.writer, msg_type, payload)

    async def _close_transport(self) -> None:
        self.writer.close()
        with contextlib.suppress(Exception):
            await self.writer.wait_closed()
