"""Client-side replica of the arena with local movement prediction."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable

from ..common.config import ArenaConfig, GameConfig
from ..common.protocol import (
    BulletInfo,
    GameState,
    MessageType,
    PlayerInfo,
    deserialize_bullet_destroyed,
    deserialize_bullet_info,
    deserialize_player_audio_state,
    deserialize_player_damaged,
    deserialize_player_info,
    deserialize_player_left,
    deserialize_player_moved,
    deserialize_player_respawned,
)

logger = logging.getLogger(__name__)


class ClientMirror:
    """Holds the replicated players and bullets for one client.

    The local player is moved by prediction; every other entity follows the
    server's events.
    """

    def __init__(
        self,
        config: GameConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or GameConfig()
        self.clock = clock
        self.arena: ArenaConfig = self.config.arena
        self.local_id: int | None = None
        self.players: dict[int, PlayerInfo] = {}
        self.bullets: dict[int, BulletInfo] = {}
        self.last_shot: float | None = None

    @property
    def local_player(self) -> PlayerInfo | None:
        if self.local_id is None:
            return None
        return self.players.get(self.local_id)

    def reset(self) -> None:
        """Forget everything; used before applying a fresh snapshot."""
        self.local_id = None
        self.players.clear()
        self.bullets.clear()

    def apply_game_state(self, state: GameState) -> None:
        self.reset()
        self.local_id = state.player_id
        self.arena = ArenaConfig(
            width=state.arena_width,
            height=state.arena_height,
            margin=self.config.arena.margin,
        )
        for player in state.players:
            self.players[player.player_id] = player
        for bullet in state.bullets:
            self.bullets[bullet.bullet_id] = bullet
        logger.info(
            f"Joined as player {state.player_id}: {len(state.players)} players, "
            f"{len(state.bullets)} bullets, arena "
            f"{state.arena_width:.0f}x{state.arena_height:.0f}"
        )

    def handle_message(self, msg_type: MessageType, payload: bytes) -> bool:
        """Apply one server event. Returns False for types it does not own."""
        if msg_type == MessageType.PLAYER_JOINED:
            player = deserialize_player_info(payload)
            self.players[player.player_id] = player
        elif msg_type == MessageType.PLAYER_MOVED:
            player_id, x, y, angle = deserialize_player_moved(payload)
            # Our own position comes from prediction
            if player_id != self.local_id and player_id in self.players:
                moved = self.players[player_id]
                moved.x, moved.y, moved.angle = x, y, angle
        elif msg_type == MessageType.PLAYER_LEFT:
            self.players.pop(deserialize_player_left(payload), None)
        elif msg_type == MessageType.BULLET_CREATED:
            bullet = deserialize_bullet_info(payload)
            self.bullets[bullet.bullet_id] = bullet
        elif msg_type == MessageType.BULLET_DESTROYED:
            self.bullets.pop(deserialize_bullet_destroyed(payload), None)
        elif msg_type == MessageType.PLAYER_DAMAGED:
            player_id, damage = deserialize_player_damaged(payload)
            if player_id in self.players:
                damaged = self.players[player_id]
                damaged.health = max(0, damaged.health - damage)
        elif msg_type == MessageType.PLAYER_RESPAWNED:
            player_id, x, y, health = deserialize_player_respawned(payload)
            if player_id in self.players:
                respawned = self.players[player_id]
                respawned.x, respawned.y, respawned.health = x, y, health
        elif msg_type == MessageType.PLAYER_AUDIO_STATE:
            player_id, enabled = deserialize_player_audio_state(payload)
            if player_id in self.players:
                self.players[player_id].audio_enabled = enabled
        else:
            return False
        return True

    def predict_move(self, dx: float, dy: float) -> tuple[float, float, float] | None:
        """Move the local player one fixed step in direction (dx, dy).

        Returns the new (x, y, angle) to send, or None if nothing moved.
        """
        player = self.local_player
        if player is None or (dx == 0 and dy == 0):
            return None

        magnitude = math.hypot(dx, dy)
        if magnitude > 1:
            dx /= magnitude
            dy /= magnitude

        step = self.config.tick_step
        speed = self.config.player_speed
        player.x, player.y = self.arena.clamp(
            player.x + dx * speed * step, player.y + dy * speed * step
        )
        player.angle = math.degrees(math.atan2(dy, dx))
        return player.x, player.y, player.angle

    def try_shoot(self) -> bool:
        """Local cooldown check; the server still has the final say."""
        now = self.clock()
        if (
            self.last_shot is not None
            and now - self.last_shot < self.config.client_shoot_cooldown
        ):
            return False
        self.last_shot = now
        return True

    def advance_bullets(self) -> None:
        """Dead-reckon bullets by one fixed step until the server destroys them."""
        step = self.config.tick_step
        for bullet in self.bullets.values():
            radians = math.radians(bullet.angle)
            bullet.x += math.cos(radians) * bullet.speed * step
            bullet.y += math.sin(radians) * bullet.speed * step
