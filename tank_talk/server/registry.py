"""Connection registry: maps live connections to players and fans out messages."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from ..common.protocol import (
    GameState,
    MessageType,
    ServerInfo,
    serialize_game_state,
    serialize_player_info,
    serialize_player_left,
    serialize_server_disconnect,
)
from .connection import Connection
from .entity_store import EntityStore
from .player import Player

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    def __init__(
        self,
        store: EntityStore,
        clock: Callable[[], float] = time.monotonic,
        ping_interval: float = 0.0,
        ping_timeout: float = 0.0,
    ):
        self.store = store
        self.clock = clock
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.connections: dict[int, Connection] = {}

    def on_connect(self, connection: Connection) -> tuple[Player, GameState]:
        """Create a player for a new connection and send it the initial state.

        The snapshot includes the new player itself. Everyone else is told
        about the arrival with PLAYER_JOINED.
        """
        player = self.store.create_player(
            self.clock(), transport=connection.transport, address=connection.address
        )
        connection.player_id = player.id
        self.connections[player.id] = connection

        state = self.store.snapshot(
            player.id,
            ServerInfo(connection.transport, self.ping_interval, self.ping_timeout),
        )
        connection.send(MessageType.GAME_STATE, serialize_game_state(state))
        self.broadcast(
            MessageType.PLAYER_JOINED,
            serialize_player_info(player.to_info()),
            exclude=player.id,
        )
        logger.info(
            f"Player {player.name} (id={player.id}) connected from "
            f"{connection.address or 'unknown'} via {connection.transport}"
        )
        return player, state

    def on_disconnect(self, player_id: int, reason: str = "") -> bool:
        """Remove a player and tell the others. Repeated calls are no-ops."""
        player = self.store.remove_player(player_id)
        self.connections.pop(player_id, None)
        if player is None:
            return False

        self.broadcast(MessageType.PLAYER_LEFT, serialize_player_left(player_id))
        session = self.clock() - player.connected_at
        logger.info(
            f"Player {player.name} (id={player_id}) disconnected "
            f"({reason or 'unknown'}) - session {session:.1f}s"
        )
        return True

    def evict(self, player_id: int, reason: str) -> bool:
        """Server-initiated disconnect: notify the client, drop it, close."""
        connection = self.connections.get(player_id)
        if connection is not None:
            connection.send(
                MessageType.SERVER_DISCONNECT, serialize_server_disconnect(reason)
            )
        removed = self.on_disconnect(player_id, reason)
        if connection is not None:
            connection.close()
        return removed

    def get_player(self, player_id: int) -> Player | None:
        return self.store.players.get(player_id)

    def send(self, player_id: int, msg_type: MessageType, payload: bytes = b"") -> None:
        connection = self.connections.get(player_id)
        if connection is not None:
            connection.send(msg_type, payload)

    def send_many(
        self, player_ids: Iterable[int], msg_type: MessageType, payload: bytes = b""
    ) -> None:
        for player_id in player_ids:
            self.send(player_id, msg_type, payload)

    def broadcast(
        self, msg_type: MessageType, payload: bytes = b"", exclude: int | None = None
    ) -> None:
        """Send to every connection, optionally skipping one player."""
        for player_id, connection in list(self.connections.items()):
            if player_id != exclude:
                connection.send(msg_type, payload)
