"""Tests for movement, shooting and the bullet simulation."""

from __future__ import annotations

import asyncio
import math
from dataclasses import replace

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from tank_talk.common.config import ArenaConfig, GameConfig
from tank_talk.common.protocol import (
    MessageType,
    deserialize_bullet_destroyed,
    deserialize_bullet_info,
    deserialize_player_damaged,
    deserialize_player_moved,
    deserialize_player_respawned,
)

from tests.conftest import FakeClock, ServerParts, build_server


class TestApplyMove:
    def test_clamps_into_arena_and_notifies_others(self, server: ServerParts) -> None:
        a = server.join()
        b = server.join()
        assert a.player_id is not None

        server.combat.apply_move(a.player_id, -100.0, 50.0, 0.0)

        player = server.store.players[a.player_id]
        assert (player.x, player.y, player.angle) == (20.0, 50.0, 0.0)
        [payload] = b.of_type(MessageType.PLAYER_MOVED)
        assert deserialize_player_moved(payload) == (a.player_id, 20.0, 50.0, 0.0)
        assert a.of_type(MessageType.PLAYER_MOVED) == []

    def test_updates_activity(self, server: ServerParts) -> None:
        a = server.join()
        assert a.player_id is not None
        server.clock.advance(30)
        server.combat.apply_move(a.player_id, 100.0, 100.0, 90.0)
        assert server.store.players[a.player_id].last_activity == server.clock()

    @pytest.mark.parametrize("bad", [math.nan, math.inf])
    def test_non_finite_ignored(self, server: ServerParts, bad: float) -> None:
        a = server.join(100.0, 100.0)
        b = server.join()
        assert a.player_id is not None

        server.combat.apply_move(a.player_id, bad, 10.0, 0.0)

        player = server.store.players[a.player_id]
        assert (player.x, player.y) == (100.0, 100.0)
        assert b.of_type(MessageType.PLAYER_MOVED) == []

    def test_unknown_player_ignored(self, server: ServerParts) -> None:
        b = server.join()
        server.combat.apply_move(999, 10.0, 10.0, 0.0)
        assert b.of_type(MessageType.PLAYER_MOVED) == []

    @given(
        preset=st.sampled_from(["small", "large"]),
        x=st.floats(allow_nan=False, allow_infinity=False),
        y=st.floats(allow_nan=False, allow_infinity=False),
        angle=st.floats(-360.0, 360.0),
    )
    @settings(max_examples=200)
    def test_any_finite_move_lands_inside_margin(
        self, preset: str, x: float, y: float, angle: float
    ) -> None:
        arena = ArenaConfig.preset(preset)
        parts = build_server(FakeClock(), GameConfig(arena=arena))
        a = parts.join()
        assert a.player_id is not None

        parts.combat.apply_move(a.player_id, x, y, angle)

        player = parts.store.players[a.player_id]
        assert arena.margin <= player.x <= arena.width - arena.margin
        assert arena.margin <= player.y <= arena.height - arena.margin
        if arena.margin <= x <= arena.width - arena.margin:
            assert player.x == x


class TestApplyShoot:
    def test_bullet_created_for_everyone(self, server: ServerParts) -> None:
        a = server.join(100.0, 100.0)
        b = server.join()
        assert a.player_id is not None

        bullet = server.combat.apply_shoot(a.player_id)

        assert bullet is not None
        for conn in (a, b):
            [payload] = conn.of_type(MessageType.BULLET_CREATED)
            info = deserialize_bullet_info(payload)
            assert info.bullet_id == bullet.id
            assert info.owner_id == a.player_id
            assert (info.x, info.y) == (100.0, 100.0)
            assert info.speed == 300.0
            assert info.created_at_ms == 5000

    def test_cooldown(self, server: ServerParts) -> None:
        a = server.join()
        assert a.player_id is not None

        assert server.combat.apply_shoot(a.player_id) is not None
        server.clock.advance(0.1)
        assert server.combat.apply_shoot(a.player_id) is None
        server.clock.advance(0.1)
        assert server.combat.apply_shoot(a.player_id) is not None
        assert len(a.of_type(MessageType.BULLET_CREATED)) == 2

    def test_bullet_ids_increase(self, server: ServerParts) -> None:
        a = server.join()
        assert a.player_id is not None
        first = server.combat.apply_shoot(a.player_id)
        server.clock.advance(1)
        second = server.combat.apply_shoot(a.player_id)
        assert first is not None and second is not None
        assert second.id > first.id


class TestTick:
    def test_bullet_advances_along_heading(self, server: ServerParts) -> None:
        a = server.join(100.0, 100.0)
        assert a.player_id is not None
        server.store.players[a.player_id].angle = 90.0
        bullet = server.combat.apply_shoot(a.player_id)
        assert bullet is not None

        server.combat.tick()

        assert bullet.x == pytest.approx(100.0)
        assert bullet.y == pytest.approx(105.0)

    def test_out_of_bounds_destroys(self, server: ServerParts) -> None:
        a = server.join(795.0, 300.0)
        b = server.join()
        assert a.player_id is not None
        server.store.players[a.player_id].x = 799.0
        bullet = server.combat.apply_shoot(a.player_id)
        assert bullet is not None

        server.combat.tick()

        assert bullet.id not in server.store.bullets
        [payload] = b.of_type(MessageType.BULLET_DESTROYED)
        assert deserialize_bullet_destroyed(payload) == bullet.id

    def test_hit_damages_and_destroys_once(self, server: ServerParts) -> None:
        shooter = server.join(100.0, 300.0)
        target = server.join(110.0, 300.0)
        assert shooter.player_id is not None and target.player_id is not None
        bullet = server.combat.apply_shoot(shooter.player_id)
        assert bullet is not None

        server.combat.tick()
        server.combat.tick()

        [damaged] = shooter.of_type(MessageType.PLAYER_DAMAGED)
        assert deserialize_player_damaged(damaged) == (target.player_id, 10)
        assert len(shooter.of_type(MessageType.BULLET_DESTROYED)) == 1
        assert server.store.players[target.player_id].health == 90
        assert server.store.bullets == {}

    def test_owner_is_never_hit(self, server: ServerParts) -> None:
        shooter = server.join(100.0, 300.0)
        assert shooter.player_id is not None
        server.combat.apply_shoot(shooter.player_id)

        server.combat.tick()

        assert shooter.of_type(MessageType.PLAYER_DAMAGED) == []
        assert server.store.players[shooter.player_id].health == 100

    def test_nearest_target_wins(self, server: ServerParts) -> None:
        shooter = server.join(100.0, 300.0)
        far = server.join(120.0, 300.0)
        near = server.join(108.0, 300.0)
        assert shooter.player_id is not None
        server.combat.apply_shoot(shooter.player_id)

        server.combat.tick()

        [damaged] = shooter.of_type(MessageType.PLAYER_DAMAGED)
        assert deserialize_player_damaged(damaged)[0] == near.player_id
        assert far.player_id is not None
        assert server.store.players[far.player_id].health == 100

    def test_equidistant_targets_lowest_id_wins(self, server: ServerParts) -> None:
        shooter = server.join(100.0, 300.0)
        first = server.join(105.0, 290.0)
        second = server.join(105.0, 310.0)
        assert shooter.player_id is not None
        server.combat.apply_shoot(shooter.player_id)

        server.combat.tick()

        [damaged] = shooter.of_type(MessageType.PLAYER_DAMAGED)
        assert deserialize_player_damaged(damaged)[0] == first.player_id
        assert second.player_id is not None
        assert server.store.players[second.player_id].health == 100

    def test_lethal_hit_respawns(self, server: ServerParts) -> None:
        shooter = server.join(100.0, 300.0)
        target = server.join(110.0, 300.0)
        assert shooter.player_id is not None and target.player_id is not None
        server.store.players[target.player_id].health = 10
        server.combat.apply_shoot(shooter.player_id)

        server.combat.tick()

        player = server.store.players[target.player_id]
        assert player.health == 100
        [payload] = shooter.of_type(MessageType.PLAYER_RESPAWNED)
        player_id, x, y, health = deserialize_player_respawned(payload)
        assert (player_id, x, y, health) == (player.id, player.x, player.y, 100)
        assert 20 <= x <= 780 and 20 <= y <= 580

    def test_damage_never_goes_negative(self, server: ServerParts) -> None:
        shooter = server.join(100.0, 300.0)
        target = server.join(110.0, 300.0)
        assert shooter.player_id is not None and target.player_id is not None
        server.store.players[target.player_id].health = 5
        server.combat.apply_shoot(shooter.player_id)

        server.combat.tick()

        # Reached zero and was respawned
        assert server.store.players[target.player_id].health == 100
        assert len(shooter.of_type(MessageType.PLAYER_RESPAWNED)) == 1

    def test_lifetime_expiry(self, server: ServerParts) -> None:
        shooter = server.join(100.0, 300.0)
        assert shooter.player_id is not None
        # A stationary bullet stays in bounds until its lifetime runs out
        bullet = server.combat.apply_shoot(shooter.player_id)
        assert bullet is not None
        bullet.speed = 0.0

        server.clock.advance(2.9)
        server.combat.tick()
        assert bullet.id in server.store.bullets

        server.clock.advance(0.2)
        server.combat.tick()
        assert bullet.id not in server.store.bullets
        assert len(shooter.of_type(MessageType.BULLET_DESTROYED)) == 1


class TestDestroyBullet:
    def test_double_destroy_is_noop(self, server: ServerParts) -> None:
        a = server.join()
        assert a.player_id is not None
        bullet = server.combat.apply_shoot(a.player_id)
        assert bullet is not None

        assert server.combat.destroy_bullet(bullet.id)
        assert not server.combat.destroy_bullet(bullet.id)
        assert len(a.of_type(MessageType.BULLET_DESTROYED)) == 1


class TestExpiryTimer:
    @pytest.mark.asyncio
    async def test_timer_scheduled_and_cancelled(self, server: ServerParts) -> None:
        a = server.join()
        assert a.player_id is not None
        bullet = server.combat.apply_shoot(a.player_id)
        assert bullet is not None

        handle = server.combat._expiry_handles[bullet.id]
        assert isinstance(handle, asyncio.TimerHandle)

        server.combat.destroy_bullet(bullet.id, "hit")
        assert handle.cancelled()
        assert bullet.id not in server.combat._expiry_handles

    @pytest.mark.asyncio
    async def test_timer_fires(self, server: ServerParts) -> None:
        server.store.config = replace(server.store.config, bullet_lifetime=0.01)
        a = server.join()
        assert a.player_id is not None
        bullet = server.combat.apply_shoot(a.player_id)
        assert bullet is not None

        await asyncio.sleep(0.05)

        assert bullet.id not in server.store.bullets
        assert len(a.of_type(MessageType.BULLET_DESTROYED)) == 1

    @pytest.mark.asyncio
    async def test_cancel_all(self, server: ServerParts) -> None:
        a = server.join()
        assert a.player_id is not None
        bullet = server.combat.apply_shoot(a.player_id)
        assert bullet is not None
        handle = server.combat._expiry_handles[bullet.id]

        server.combat.cancel_all()

        assert handle.cancelled()
        assert server.combat._expiry_handles == {}
