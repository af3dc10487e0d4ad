"""Typed configuration built from the compiled-in defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from . import constants as c


@dataclass(frozen=True)
class ArenaConfig:
    width: float = float(c.ARENA_SMALL[0])
    height: float = float(c.ARENA_SMALL[1])
    margin: float = c.ARENA_MARGIN
    # Static obstacles, currently always empty
    obstacles: tuple[tuple[float, float, float, float], ...] = ()

    @classmethod
    def preset(cls, name: str) -> ArenaConfig:
        """Return the 'small' (800x600) or 'large' (1200x800) arena."""
        sizes = {"small": c.ARENA_SMALL, "large": c.ARENA_LARGE}
        if name not in sizes:
            raise ValueError(f"Unknown arena preset: {name!r}")
        width, height = sizes[name]
        return cls(width=float(width), height=float(height))

    def clamp(self, x: float, y: float) -> tuple[float, float]:
        """Clamp a position into the inner bounds."""
        return (
            max(self.margin, min(self.width - self.margin, x)),
            max(self.margin, min(self.height - self.margin, y)),
        )

    def contains(self, x: float, y: float) -> bool:
        """Check if a point lies inside the outer bounds."""
        return 0.0 <= x <= self.width and 0.0 <= y <= self.height


@dataclass(frozen=True)
class GameConfig:
    arena: ArenaConfig = field(default_factory=ArenaConfig)
    max_health: int = c.MAX_HEALTH
    player_speed: float = c.PLAYER_SPEED
    hit_radius: float = c.HIT_RADIUS
    bullet_speed: float = c.BULLET_SPEED
    bullet_lifetime: float = c.BULLET_LIFETIME
    bullet_damage: int = c.BULLET_DAMAGE
    shoot_cooldown: float = c.SHOOT_COOLDOWN
    client_shoot_cooldown: float = c.CLIENT_SHOOT_COOLDOWN
    audio_radius: float = c.AUDIO_RADIUS
    audio_timeout: float = c.AUDIO_TIMEOUT
    inactivity_timeout: float = c.INACTIVITY_TIMEOUT
    combat_tick_rate: int = c.COMBAT_TICK_RATE
    liveness_interval: float = c.LIVENESS_SWEEP_INTERVAL
    stats_interval: float = c.STATS_INTERVAL

    @property
    def tick_step(self) -> float:
        """Fixed simulation timestep in seconds."""
        return 1.0 / self.combat_tick_rate


@dataclass(frozen=True)
class ServerConfig:
    host: str = c.DEFAULT_HOST
    port: int = c.DEFAULT_PORT
    stream_port: int | None = None  # Defaults to port + 1
    ws_heartbeat: float = c.WS_HEARTBEAT
    ws_idle_timeout: float = c.WS_IDLE_TIMEOUT
    ping_interval: float = c.PING_INTERVAL
    ping_timeout: float = c.PING_TIMEOUT

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Read the listening port from the PORT environment variable."""
        return cls(port=int(os.environ.get("PORT", c.DEFAULT_PORT)))

    @property
    def effective_stream_port(self) -> int:
        return self.stream_port if self.stream_port is not None else self.port + 1
