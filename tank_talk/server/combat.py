"""Movement validation, shooting and the fixed-step bullet simulation."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable

from ..common.config import GameConfig
from ..common.protocol import (
    MessageType,
    serialize_bullet_destroyed,
    serialize_bullet_info,
    serialize_player_damaged,
    serialize_player_moved,
    serialize_player_respawned,
)
from .entity_store import EntityStore
from .player import Bullet, Player
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class CombatEngine:
    def __init__(
        self,
        store: EntityStore,
        registry: ConnectionRegistry,
        clock: Callable[[], float] = time.monotonic,
        wall_clock_ms: Callable[[], int] = _wall_clock_ms,
    ):
        self.store = store
        self.registry = registry
        self.clock = clock
        self.wall_clock_ms = wall_clock_ms
        # bullet_id -> pending expiry timer
        self._expiry_handles: dict[int, asyncio.TimerHandle] = {}

    @property
    def config(self) -> GameConfig:
        return self.store.config

    def apply_move(self, player_id: int, x: float, y: float, angle: float) -> None:
        """Apply a client-predicted move after clamping it into the arena.

        The sender already applied its own prediction, so only the other
        connections hear about it.
        """
        player = self.store.players.get(player_id)
        if player is None:
            return
        if not all(
            isinstance(v, (int, float)) and math.isfinite(v) for v in (x, y, angle)
        ):
            return

        player.x, player.y = self.store.arena.clamp(float(x), float(y))
        player.angle = float(angle)
        player.last_activity = self.clock()

        self.registry.broadcast(
            MessageType.PLAYER_MOVED,
            serialize_player_moved(player.id, player.x, player.y, player.angle),
            exclude=player.id,
        )

    def apply_shoot(self, player_id: int) -> Bullet | None:
        """Fire a bullet if the shooter's cooldown has elapsed."""
        player = self.store.players.get(player_id)
        if player is None:
            return None
        now = self.clock()
        if (
            player.last_shoot is not None
            and now - player.last_shoot < self.config.shoot_cooldown
        ):
            return None

        player.last_shoot = now
        player.last_activity = now
        bullet = self.store.add_bullet(
            player, self.config.bullet_speed, now, self.wall_clock_ms()
        )
        self.registry.broadcast(
            MessageType.BULLET_CREATED, serialize_bullet_info(bullet.to_info())
        )
        self._schedule_expiry(bullet.id)
        return bullet

    def _schedule_expiry(self, bullet_id: int) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (e.g. driven synchronously); the tick enforces lifetime
            return
        self._expiry_handles[bullet_id] = loop.call_later(
            self.config.bullet_lifetime, self.destroy_bullet, bullet_id, "expired"
        )

    def destroy_bullet(self, bullet_id: int, reason: str = "") -> bool:
        """Remove a bullet and broadcast its destruction exactly once."""
        handle = self._expiry_handles.pop(bullet_id, None)
        if handle is not None:
            handle.cancel()
        bullet = self.store.remove_bullet(bullet_id)
        if bullet is None:
            return False
        self.registry.broadcast(
            MessageType.BULLET_DESTROYED, serialize_bullet_destroyed(bullet_id)
        )
        logger.debug(f"Bullet {bullet_id} destroyed ({reason})")
        return True

    def tick(self) -> None:
        """Advance every bullet by one fixed step and resolve hits."""
        step = self.config.tick_step
        arena = self.store.arena
        now = self.clock()

        for bullet in list(self.store.bullets.values()):
            radians = math.radians(bullet.angle)
            bullet.x += math.cos(radians) * bullet.speed * step
            bullet.y += math.sin(radians) * bullet.speed * step

            if not arena.contains(bullet.x, bullet.y):
                self.destroy_bullet(bullet.id, "out of bounds")
                continue

            target = self._find_hit(bullet)
            if target is not None:
                self._apply_hit(bullet, target)
                continue

            if now - bullet.created_at >= self.config.bullet_lifetime:
                self.destroy_bullet(bullet.id, "expired")

    def _find_hit(self, bullet: Bullet) -> Player | None:
        """Nearest non-owner player within the hit radius (ties: lowest id)."""
        best: tuple[float, int] | None = None
        target: Player | None = None
        for player in self.store.players.values():
            if player.id == bullet.owner_id:
                continue
            distance = math.hypot(bullet.x - player.x, bullet.y - player.y)
            if distance >= self.config.hit_radius:
                continue
            key = (distance, player.id)
            if best is None or key < best:
                best = key
                target = player
        return target

    def _apply_hit(self, bullet: Bullet, target: Player) -> None:
        damage = self.config.bullet_damage
        target.health = max(0, target.health - damage)
        self.registry.broadcast(
            MessageType.PLAYER_DAMAGED, serialize_player_damaged(target.id, damage)
        )
        self.destroy_bullet(bullet.id, f"hit player {target.id}")
        if target.health == 0:
            self.respawn(target)

    def respawn(self, player: Player) -> None:
        """Put a destroyed tank back at a random spawn with full health."""
        player.x, player.y = self.store.spawn_position()
        player.health = self.config.max_health
        self.registry.broadcast(
            MessageType.PLAYER_RESPAWNED,
            serialize_player_respawned(player.id, player.x, player.y, player.health),
        )
        logger.info(f"Player {player.name} (id={player.id}) destroyed and respawned")

    def cancel_all(self) -> None:
        for handle in self._expiry_handles.values():
            handle.cancel()
        self._expiry_handles.clear()
