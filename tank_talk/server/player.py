"""Player and bullet state for the server."""

from __future__ import annotations

from dataclasses import dataclass

from ..common.protocol import BulletInfo, PlayerInfo


@dataclass
class Player:
    id: int
    name: str
    color: str
    x: float
    y: float
    angle: float = 0.0
    health: int = 100
    audio_enabled: bool = False
    # Monotonic timestamps, seconds
    connected_at: float = 0.0
    last_activity: float = 0.0
    last_audio_packet: float = 0.0
    last_shoot: float | None = None
    # Transport metadata
    transport: str = "websocket"
    address: str = ""

    def to_info(self) -> PlayerInfo:
        return PlayerInfo(
            self.id,
            self.x,
            self.y,
            self.angle,
            self.health,
            self.audio_enabled,
            self.name,
            self.color,
        )


@dataclass
class Bullet:
    id: int
    owner_id: int
    x: float
    y: float
    angle: float
    speed: float
    created_at: float  # Monotonic seconds
    created_at_ms: int = 0  # Wall clock, for clients

    def to_info(self) -> BulletInfo:
        return BulletInfo(
            self.id,
            self.owner_id,
            self.x,
            self.y,
            self.angle,
            self.speed,
            self.created_at_ms,
        )
