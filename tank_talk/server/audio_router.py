"""Proximity-based audio routing."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol


class Positioned(Protocol):
    id: int
    x: float
    y: float


def in_range(source: Positioned, other: Positioned, radius: float) -> bool:
    """Check if two players are within radius of each other (inclusive)."""
    dx = other.x - source.x
    dy = other.y - source.y
    return dx * dx + dy * dy <= radius * radius


def get_nearby_players(
    source: Positioned, players: Mapping[int, Positioned], radius: float
) -> list[int]:
    """Ids of the other players within radius of the source."""
    return [
        player_id
        for player_id, player in players.items()
        if player_id != source.id and in_range(source, player, radius)
    ]


def get_audio_recipients(
    source: Positioned, players: Mapping[int, Positioned], radius: float
) -> tuple[list[int], bool]:
    """Pick who hears the source.

    Returns (recipient_ids, spatial). When nobody is in range the frame
    falls back to every other player so sparse arenas stay audible.
    """
    nearby = get_nearby_players(source, players, radius)
    if nearby:
        return nearby, True
    return [player_id for player_id in players if player_id != source.id], False
