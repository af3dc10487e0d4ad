"""Authoritative in-memory collection of players and bullets."""

from __future__ import annotations

import random

from ..common.config import ArenaConfig, GameConfig
from ..common.protocol import GameState, ServerInfo
from .player import Bullet, Player


class EntityStore:
    """Owns every live Player and in-flight Bullet.

    All access happens on the event loop thread, so no locking is needed.
    """

    def __init__(self, config: GameConfig, rng: random.Random | None = None):
        self.config = config
        self.players: dict[int, Player] = {}
        self.bullets: dict[int, Bullet] = {}
        self.next_player_id = 1
        self.next_bullet_id = 0
        self.rng = rng or random.Random()

    @property
    def arena(self) -> ArenaConfig:
        return self.config.arena

    def spawn_position(self) -> tuple[float, float]:
        """Random position inside the inner bounds."""
        arena = self.arena
        x = self.rng.random() * (arena.width - 2 * arena.margin) + arena.margin
        y = self.rng.random() * (arena.height - 2 * arena.margin) + arena.margin
        return x, y

    def create_player(
        self, now: float, transport: str = "websocket", address: str = ""
    ) -> Player:
        """Allocate a Player with a random spawn, color and name."""
        player_id = self.next_player_id
        self.next_player_id += 1
        x, y = self.spawn_position()
        player = Player(
            id=player_id,
            name=f"Tank{self.rng.randrange(1000)}",
            color=f"hsl({self.rng.randrange(360)}, 70%, 50%)",
            x=x,
            y=y,
            health=self.config.max_health,
            connected_at=now,
            last_activity=now,
            last_audio_packet=now,
            transport=transport,
            address=address,
        )
        self.players[player_id] = player
        return player

    def remove_player(self, player_id: int) -> Player | None:
        return self.players.pop(player_id, None)

    def add_bullet(
        self, owner: Player, speed: float, now: float, now_ms: int
    ) -> Bullet:
        """Allocate a bullet at the owner's position and heading."""
        bullet = Bullet(
            id=self.next_bullet_id,
            owner_id=owner.id,
            x=owner.x,
            y=owner.y,
            angle=owner.angle,
            speed=speed,
            created_at=now,
            created_at_ms=now_ms,
        )
        self.next_bullet_id += 1
        self.bullets[bullet.id] = bullet
        return bullet

    def remove_bullet(self, bullet_id: int) -> Bullet | None:
        return self.bullets.pop(bullet_id, None)

    def snapshot(self, player_id: int, server_info: ServerInfo) -> GameState:
        """Full state for a newly connected client."""
        return GameState(
            player_id=player_id,
            arena_width=self.arena.width,
            arena_height=self.arena.height,
            players=[p.to_info() for p in self.players.values()],
            bullets=[b.to_info() for b in self.bullets.values()],
            server_info=server_info,
        )
