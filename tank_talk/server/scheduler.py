"""Periodic server tasks: combat ticks, liveness sweeps and stats."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from .audio_relay import AudioRelay, AudioStats
from .combat import CombatEngine
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class TickScheduler:
    def __init__(
        self,
        combat: CombatEngine,
        relay: AudioRelay,
        registry: ConnectionRegistry,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.combat = combat
        self.relay = relay
        self.registry = registry
        self.clock = clock
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        config = self.combat.config
        self._tasks = [
            asyncio.create_task(
                self._loop("combat", config.tick_step, self.run_combat_tick)
            ),
            asyncio.create_task(
                self._loop(
                    "liveness", config.liveness_interval, self.run_liveness_sweep
                )
            ),
            asyncio.create_task(
                self._loop("stats", config.stats_interval, self.run_stats_aggregation)
            ),
        ]

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.combat.cancel_all()

    async def _loop(self, name: str, interval: float, work: Callable[[], object]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                work()
            except Exception:
                logger.exception(f"Error in {name} tick")

    def run_combat_tick(self) -> None:
        self.combat.tick()

    def run_liveness_sweep(self) -> list[int]:
        """Expire silent audio streams and evict idle players.

        Returns the ids of evicted players.
        """
        now = self.clock()
        self.relay.expire_stale_audio(now)

        timeout = self.combat.config.inactivity_timeout
        evicted = []
        for player in list(self.registry.store.players.values()):
            idle = now - player.last_activity
            if idle > timeout:
                logger.info(
                    f"Evicting {player.name} (id={player.id}) after {idle:.0f}s idle"
                )
                self.registry.evict(player.id, "Inactivity timeout")
                evicted.append(player.id)
        return evicted

    def run_stats_aggregation(self) -> AudioStats:
        stats = self.relay.aggregate_stats(self.combat.config.stats_interval)
        logger.info(
            f"Audio stats: {stats.packets_per_second:.1f} pkt/s, "
            f"{stats.active_streams} active streams, "
            f"{len(self.registry.connections)} players (peak "
            f"{stats.peak_concurrent_users}), avg latency "
            f"{stats.average_latency:.1f}ms"
        )
        return stats
