"""Client transport: WebSocket with TCP stream fallback and auto-reconnect."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import struct
from collections.abc import Callable
from dataclasses import dataclass

import aiohttp

from ..common.constants import (
    RECONNECT_BASE_DELAY,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY,
    WS_HEARTBEAT,
)
from ..common.protocol import (
    FramingError,
    MessageType,
    ProtocolError,
    decode_packet,
    deserialize_server_disconnect,
    encode_packet,
    read_message,
    write_message,
)

logger = logging.getLogger(__name__)

# Errors that mean the link is gone and should go through the reconnect path
CONNECTION_ERRORS = (
    aiohttp.ClientError,
    OSError,
    asyncio.IncompleteReadError,
    ConnectionResetError,
    asyncio.TimeoutError,
)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass
class ReconnectPolicy:
    """Capped exponential backoff with a bounded number of attempts."""

    base_delay: float = RECONNECT_BASE_DELAY
    max_delay: float = RECONNECT_MAX_DELAY
    max_attempts: int = RECONNECT_MAX_ATTEMPTS
    attempt: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def next_delay(self) -> float | None:
        """Delay before the next attempt, or None when attempts are used up."""
        if self.exhausted:
            return None
        delay = min(self.base_delay * 2**self.attempt, self.max_delay)
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0


class ServerConnection:
    """Owns the link to the server for one client session.

    ``on_message`` is called on the event loop for every server message,
    in arrival order. Sends are queued and never block the caller.
    """

    def __init__(
        self,
        host: str,
        port: int,
        on_message: Callable[[MessageType, bytes], None],
        stream_port: int | None = None,
        on_state_change: Callable[[ConnectionState], None] | None = None,
        policy: ReconnectPolicy | None = None,
        prefer_websocket: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.stream_port = stream_port if stream_port is not None else port + 1
        self.on_message = on_message
        self.on_state_change = on_state_change
        self.policy = policy or ReconnectPolicy()
        self.prefer_websocket = prefer_websocket

        self.state = ConnectionState.DISCONNECTED
        self.transport: str | None = None
        self.disconnect_reason = ""
        self._server_initiated = False
        self._closing = False

        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._outgoing: asyncio.Queue[tuple[MessageType, bytes]] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._manual_retry = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        logger.info(f"Connection state: {self.state.value} -> {state.value}")
        self.state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    async def connect(self) -> bool:
        """Open a link, trying the WebSocket first and the stream second."""
        self._set_state(ConnectionState.CONNECTING)
        if self.prefer_websocket and await self._open_websocket():
            self.transport = "websocket"
        elif await self._open_stream():
            self.transport = "stream"
        else:
            self._set_state(ConnectionState.DISCONNECTED)
            return False

        self._server_initiated = False
        self._outgoing = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._write_loop(self._outgoing))
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected to {self.host} via {self.transport}")
        return True

    async def _open_websocket(self) -> bool:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        url = f"http://{self.host}:{self.port}/ws"
        try:
            self._ws = await self._session.ws_connect(url, heartbeat=WS_HEARTBEAT)
        except CONNECTION_ERRORS as e:
            logger.info(f"WebSocket connect to {url} failed: {e}")
            self._ws = None
            return False
        return True

    async def _open_stream(self) -> bool:
        try:
            self._reader, self._writer = await asyncio.open_connection(
                self.host, self.stream_port
            )
        except CONNECTION_ERRORS as e:
            logger.info(
                f"Stream connect to {self.host}:{self.stream_port} failed: {e}"
            )
            return False
        return True

    def send(self, msg_type: MessageType, payload: bytes = b"") -> None:
        """Queue a message; silently dropped while disconnected."""
        if self._outgoing is None or not self.connected:
            return
        self._outgoing.put_nowait((msg_type, payload))

    async def _write_loop(
        self, queue: asyncio.Queue[tuple[MessageType, bytes]]
    ) -> None:
        try:
            while True:
                msg_type, payload = await queue.get()
                if self._ws is not None:
                    await self._ws.send_bytes(encode_packet(msg_type, payload))
                elif self._writer is not None:
                    await write_message(self._writer, msg_type, payload)
        except CONNECTION_ERRORS as e:
            logger.debug(f"Send failed: {e}")

    async def run(self) -> None:
        """Receive until closed, reconnecting whenever the link drops."""
        while not self._closing:
            if self.connected:
                await self._receive()
                await self._teardown()
                if self._closing:
                    break

            if self._server_initiated:
                # The server told us to go; come straight back once
                self._server_initiated = False
                self._set_state(ConnectionState.RECONNECTING)
                if await self.connect():
                    self.policy.reset()
                    continue

            delay = self.policy.next_delay()
            if delay is None:
                self._set_state(ConnectionState.FAILED)
                self._manual_retry.clear()
                await self._manual_retry.wait()
                if self._closing:
                    break
                self.policy.reset()
                self._set_state(ConnectionState.RECONNECTING)
                await self.connect()
                continue

            self._set_state(ConnectionState.RECONNECTING)
            logger.info(
                f"Reconnecting in {delay:.1f}s "
                f"(attempt {self.policy.attempt}/{self.policy.max_attempts})"
            )
            await asyncio.sleep(delay)
            if await self.connect():
                self.policy.reset()

        self._set_state(ConnectionState.DISCONNECTED)

    def reconnect(self) -> None:
        """Manual reconnect after the automatic attempts ran out."""
        if self.state == ConnectionState.FAILED:
            self._manual_retry.set()

    async def _receive(self) -> None:
        try:
            if self._ws is not None:
                await self._receive_websocket(self._ws)
            elif self._reader is not None:
                await self._receive_stream(self._reader)
        except CONNECTION_ERRORS as e:
            logger.info(f"Connection lost: {type(e).__name__}: {e}")

    async def _receive_websocket(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.BINARY:
                try:
                    msg_type, payload = decode_packet(msg.data)
                except ProtocolError as e:
                    logger.debug(f"Dropping packet: {e}")
                    continue
                self._dispatch(msg_type, payload)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.info(f"WebSocket error: {ws.exception()}")
                break

    async def _receive_stream(self, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                msg_type, payload = await read_message(reader)
            except FramingError as e:
                logger.warning(f"Closing stream: {e}")
                return
            except ProtocolError as e:
                logger.debug(f"Dropping frame: {e}")
                continue
            if msg_type == MessageType.PING:
                self.send(MessageType.PONG)
                continue
            self._dispatch(msg_type, payload)

    def _dispatch(self, msg_type: MessageType, payload: bytes) -> None:
        if msg_type == MessageType.SERVER_DISCONNECT:
            try:
                self.disconnect_reason = deserialize_server_disconnect(payload)
            except (ProtocolError, ValueError):
                self.disconnect_reason = "unknown"
            self._server_initiated = True
            logger.info(f"Server disconnected us: {self.disconnect_reason}")
        try:
            self.on_message(msg_type, payload)
        except (ProtocolError, ValueError, struct.error) as e:
            logger.debug(f"Dropping malformed {msg_type.name}: {e}")

    async def _teardown(self) -> None:
        if self._writer_task is not None:
            self._writer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer_task
            self._writer_task = None
        self._outgoing = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._writer is not None:
            self._writer.close()
            with contextlib.suppress(Exception):
                await self._writer.wait_closed()
            self._writer = None
            self._reader = None
        self.transport = None
        if not self._closing:
            self._set_state(ConnectionState.DISCONNECTED)

    async def close(self) -> None:
        self._closing = True
        self._manual_retry.set()
        await self._teardown()
        if self._session is not None:
            await self._session.close()
            self._session = None
