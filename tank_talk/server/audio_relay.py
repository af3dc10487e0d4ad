"""Voice frame relay with spatial routing and latency statistics."""

from __future__ import annotations

import logging
import struct
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass

from ..common.config import GameConfig
from ..common.protocol import (
    AudioFrame,
    MessageType,
    ProtocolError,
    deserialize_audio_frame,
    serialize_audio_frame,
    serialize_player_audio_state,
)
from .audio_router import get_audio_recipients
from .entity_store import EntityStore
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass
class AudioStats:
    packets_per_second: float = 0.0
    total_packets: int = 0
    active_streams: int = 0
    average_latency: float = 0.0  # ms, exponentially smoothed
    peak_concurrent_users: int = 0

    def to_dict(self) -> dict[str, float | int]:
        return asdict(self)


class AudioRelay:
    def __init__(
        self,
        store: EntityStore,
        registry: ConnectionRegistry,
        clock: Callable[[], float] = time.monotonic,
        wall_clock_ms: Callable[[], float] = _wall_clock_ms,
    ):
        self.store = store
        self.registry = registry
        self.clock = clock
        self.wall_clock_ms = wall_clock_ms
        self.stats = AudioStats()
        # Packets seen since the last stats aggregation
        self.window_packets = 0

    @property
    def config(self) -> GameConfig:
        return self.store.config

    def on_audio_frame(self, player_id: int, payload: bytes | AudioFrame) -> int:
        """Relay one compressed frame. Returns the number of recipients.

        Accepts raw AUDIO_STREAM bytes or an already parsed frame. Malformed
        frames are logged and dropped; this never raises.
        """
        if isinstance(payload, AudioFrame):
            frame = payload
        else:
            try:
                frame = deserialize_audio_frame(payload)
            except (ProtocolError, ValueError, struct.error) as e:
                logger.debug(f"Dropping malformed audio frame from {player_id}: {e}")
                return 0

        self.stats.total_packets += 1
        self.window_packets += 1

        player = self.store.players.get(player_id)
        if player is None:
            return 0

        player.audio_enabled = True
        player.last_audio_packet = self.clock()

        if frame.timestamp_ms:
            latency = self.wall_clock_ms() - frame.timestamp_ms
            self.stats.average_latency = (self.stats.average_latency + latency) / 2

        recipients, spatial = get_audio_recipients(
            player, self.store.players, self.config.audio_radius
        )
        if not recipients:
            return 0

        frame.player_id = player.id
        frame.player_name = player.name
        relayed = serialize_audio_frame(frame)
        if spatial:
            self.registry.send_many(recipients, MessageType.AUDIO_STREAM, relayed)
        else:
            self.registry.broadcast(
                MessageType.AUDIO_STREAM, relayed, exclude=player.id
            )
        return len(recipients)

    def on_audio_state_changed(self, player_id: int, enabled: bool) -> None:
        """Record the user's mic intent and tell everyone else."""
        player = self.store.players.get(player_id)
        if player is None:
            return
        player.audio_enabled = enabled
        self.registry.broadcast(
            MessageType.PLAYER_AUDIO_STATE,
            serialize_player_audio_state(player_id, enabled),
            exclude=player_id,
        )

    def expire_stale_audio(self, now: float | None = None) -> list[int]:
        """Flag players whose audio went quiet past the timeout."""
        if now is None:
            now = self.clock()
        expired = []
        for player in list(self.store.players.values()):
            if (
                player.audio_enabled
                and now - player.last_audio_packet > self.config.audio_timeout
            ):
                player.audio_enabled = False
                expired.append(player.id)
                self.registry.broadcast(
                    MessageType.PLAYER_AUDIO_STATE,
                    serialize_player_audio_state(player.id, False),
                    exclude=player.id,
                )
                logger.info(f"Audio timeout for {player.name} (id={player.id})")
        return expired

    def aggregate_stats(self, interval: float) -> AudioStats:
        """Recompute derived counters over the last interval."""
        players = self.store.players.values()
        self.stats.active_streams = sum(1 for p in players if p.audio_enabled)
        self.stats.peak_concurrent_users = max(
            self.stats.peak_concurrent_users, len(self.store.players)
        )
        self.stats.packets_per_second = (
            self.window_packets / interval if interval > 0 else 0.0
        )
        self.window_packets = 0
        return self.stats
