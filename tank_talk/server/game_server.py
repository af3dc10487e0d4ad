"""Main game server handling connections and game state."""

from __future__ import annotations

import asyncio
import logging
import resource
import time
from asyncio import StreamReader, StreamWriter
from collections.abc import Callable
from typing import Any

from aiohttp import WSMsgType, web

from ..common.config import GameConfig, ServerConfig
from ..common.protocol import (
    AudioFrame,
    AudioStateChange,
    FramingError,
    MessageType,
    MoveRequest,
    Pong,
    ProtocolError,
    ShootRequest,
    decode_packet,
    parse_client_message,
    read_message,
)
from .audio_relay import AudioRelay
from .combat import CombatEngine
from .connection import Connection, StreamConnection, WebSocketConnection
from .entity_store import EntityStore
from .registry import ConnectionRegistry
from .scheduler import TickScheduler

logger = logging.getLogger(__name__)


def _memory_usage() -> dict[str, int]:
    usage = resource.getrusage(resource.RUSAGE_SELF)
    return {"maxrss_kb": usage.ru_maxrss}


class GameServer:
    def __init__(
        self,
        config: ServerConfig | None = None,
        game_config: GameConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ServerConfig()
        self.game_config = game_config or GameConfig()
        self.clock = clock
        self.store = EntityStore(self.game_config)
        self.registry = ConnectionRegistry(
            self.store,
            clock=clock,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
        )
        self.combat = CombatEngine(self.store, self.registry, clock=clock)
        self.relay = AudioRelay(self.store, self.registry, clock=clock)
        self.scheduler = TickScheduler(
            self.combat, self.relay, self.registry, clock=clock
        )
        self.started_at = clock()
        self.stream_server: asyncio.Server | None = None
        # Actual bound port of the stream server (differs when configured as 0)
        self.stream_port: int | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self.handle_websocket)
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/stats", self.handle_stats)
        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def start(self) -> None:
        runner = web.AppRunner(self.build_app())
        await runner.setup()
        site = web.TCPSite(runner, self.config.host, self.config.port)
        await site.start()
        print(f"Server listening on {self.config.host}:{self.config.port} (WebSocket /ws)")
        print(f"Stream fallback on {self.config.host}:{self.stream_port}")
        print(f"Arena {self.game_config.arena.width:.0f}x{self.game_config.arena.height:.0f}")
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    async def _on_startup(self, app: web.Application) -> None:
        self.started_at = self.clock()
        self.stream_server = await asyncio.start_server(
            self.handle_stream_client,
            self.config.host,
            self.config.effective_stream_port,
            reuse_address=True,
        )
        self.stream_port = self.stream_server.sockets[0].getsockname()[1]
        self.scheduler.start()

    async def _on_shutdown(self, app: web.Application) -> None:
        for player_id in list(self.registry.connections):
            self.registry.evict(player_id, "Server shutting down")

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.scheduler.stop()
        if self.stream_server is not None:
            self.stream_server.close()
            await self.stream_server.wait_closed()
            self.stream_server = None

    def handle_message(
        self, connection: Connection, msg_type: MessageType, payload: bytes
    ) -> None:
        """Dispatch one client message. Malformed input is logged and dropped."""
        player_id = connection.player_id
        if player_id is None:
            return
        try:
            msg = parse_client_message(msg_type, payload)
        except ProtocolError as e:
            logger.debug(f"Dropping message from player {player_id}: {e}")
            return

        if isinstance(msg, MoveRequest):
            self.combat.apply_move(player_id, msg.x, msg.y, msg.angle)
        elif isinstance(msg, ShootRequest):
            self.combat.apply_shoot(player_id)
        elif isinstance(msg, AudioFrame):
            self.relay.on_audio_frame(player_id, msg)
        elif isinstance(msg, AudioStateChange):
            self.relay.on_audio_state_changed(player_id, msg.enabled)
        elif isinstance(msg, Pong):
            if isinstance(connection, StreamConnection):
                connection.last_pong = self.clock()

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(
            heartbeat=self.config.ws_heartbeat,
            receive_timeout=self.config.ws_idle_timeout,
        )
        await ws.prepare(request)

        connection = WebSocketConnection(ws, request.remote or "")
        connection.start()
        player, _ = self.registry.on_connect(connection)
        reason = "connection closed"
        try:
            async for msg in ws:
                if msg.type == WSMsgType.BINARY:
                    try:
                        msg_type, payload = decode_packet(msg.data)
                    except ProtocolError as e:
                        logger.debug(f"Dropping packet from {player.name}: {e}")
                        continue
                    self.handle_message(connection, msg_type, payload)
                elif msg.type == WSMsgType.ERROR:
                    reason = f"websocket error: {ws.exception()}"
                    break
                else:
                    logger.debug(f"Ignoring {msg.type.name} frame from {player.name}")
        except asyncio.TimeoutError:
            reason = "idle timeout"
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            logger.error(
                f"Unexpected error for {player.name}: {reason}", exc_info=True
            )
        finally:
            self.registry.on_disconnect(player.id, reason)
            connection.close()
            await connection.wait_closed()
        return ws

    async def handle_stream_client(
        self, reader: StreamReader, writer: StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        address = f"{peer[0]}:{peer[1]}" if peer else ""
        connection = StreamConnection(reader, writer, address)
        connection.last_pong = self.clock()
        connection.start()
        player, _ = self.registry.on_connect(connection)
        ping_task = asyncio.create_task(self._ping_loop(connection))
        reason = "connection closed"
        try:
            while True:
                try:
                    msg_type, payload = await read_message(reader)
                except FramingError as e:
                    reason = str(e)
                    logger.warning(f"Closing {player.name}: {reason}")
                    break
                except ProtocolError as e:
                    logger.debug(f"Dropping frame from {player.name}: {e}")
                    continue
                self.handle_message(connection, msg_type, payload)
        except (
            asyncio.IncompleteReadError,
            ConnectionResetError,
            BrokenPipeError,
            OSError,
        ):
            pass  # Client disconnected
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            logger.error(
                f"Unexpected error for {player.name}: {reason}", exc_info=True
            )
        finally:
            ping_task.cancel()
            try:
                await ping_task
            except asyncio.CancelledError:
                pass
            self.registry.on_disconnect(player.id, reason)
            connection.close()
            await connection.wait_closed()

    async def _ping_loop(self, connection: StreamConnection) -> None:
        """Send periodic pings and drop the connection when pongs stop."""
        while True:
            await asyncio.sleep(self.config.ping_interval)
            since_pong = self.clock() - connection.last_pong
            if since_pong > self.config.ping_timeout:
                logger.info(
                    f"Stream client {connection.address} timed out "
                    f"(no pong for {since_pong:.1f}s)"
                )
                # Closing the transport ends the read loop
                connection.close()
                return
            connection.send(MessageType.PING)

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "timestamp": int(time.time() * 1000),
                "players": len(self.store.players),
                "uptime": self.clock() - self.started_at,
                "memory": _memory_usage(),
            }
        )

    async def handle_stats(self, request: web.Request) -> web.Response:
        now = self.clock()
        details: list[dict[str, Any]] = [
            {
                "id": p.id,
                "name": p.name,
                "transport": p.transport,
                "audioEnabled": p.audio_enabled,
                "sessionDuration": now - p.connected_at,
            }
            for p in self.store.players.values()
        ]
        return web.json_response(
            {
                "players": len(self.store.players),
                "bullets": len(self.store.bullets),
                "audio": self.relay.stats.to_dict(),
                "uptime": now - self.started_at,
                "memory": _memory_usage(),
                "playerDetails": details,
            }
        )
