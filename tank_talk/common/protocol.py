"""Wire protocol for client-server communication."""

from __future__ import annotations

import enum
import math
import struct
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass
from typing import Union

import numpy as np
import numpy.typing as npt

MAX_AUDIO_SAMPLES = 16384
MAX_SAMPLE_RATE = 192000
# Largest frame body (type byte + payload) accepted off a stream
MAX_MESSAGE_SIZE = 1 << 20


class MessageType(enum.IntEnum):
    GAME_STATE = 0x01  # Server -> new client: initial snapshot
    PLAYER_JOINED = 0x02  # Server -> others
    PLAYER_MOVE = 0x03  # Client -> Server
    PLAYER_MOVED = 0x04  # Server -> others
    PLAYER_SHOOT = 0x05  # Client -> Server
    BULLET_CREATED = 0x06  # Server -> all
    BULLET_DESTROYED = 0x07  # Server -> all
    PLAYER_DAMAGED = 0x08  # Server -> all
    PLAYER_RESPAWNED = 0x09  # Server -> all
    PLAYER_LEFT = 0x0A  # Server -> others
    AUDIO_STREAM = 0x10  # Bidirectional (relayed with sender filled in)
    AUDIO_STATE_CHANGED = 0x11  # Client -> Server
    PLAYER_AUDIO_STATE = 0x12  # Server -> others
    SERVER_DISCONNECT = 0x20  # Server -> Client: you are being dropped
    PING = 0x30  # Server -> Client: keepalive ping (stream transport)
    PONG = 0x31  # Client -> Server: keepalive pong


class ProtocolError(ValueError):
    """Raised when a payload cannot be decoded or fails validation."""


class FramingError(ProtocolError):
    """The length prefix itself is unusable, so the stream cannot be resynced."""


@dataclass
class PlayerInfo:
    player_id: int
    x: float
    y: float
    angle: float
    health: int
    audio_enabled: bool
    name: str
    color: str


@dataclass
class BulletInfo:
    bullet_id: int
    owner_id: int
    x: float
    y: float
    angle: float
    speed: float
    created_at_ms: int


@dataclass
class ServerInfo:
    transport: str
    ping_interval: float
    ping_timeout: float


@dataclass
class GameState:
    player_id: int  # The receiving client's own id
    arena_width: float
    arena_height: float
    players: list[PlayerInfo]
    bullets: list[BulletInfo]
    server_info: ServerInfo


@dataclass(eq=False)
class AudioFrame:
    samples: npt.NDArray[np.int16]
    timestamp_ms: int = 0  # 0 when the sender did not stamp the frame
    sample_rate: int = 16000
    # Filled in by the relay; left empty by the sending client
    player_id: int = 0
    player_name: str = ""


# Tagged client messages
@dataclass(frozen=True)
class MoveRequest:
    x: float
    y: float
    angle: float


@dataclass(frozen=True)
class ShootRequest:
    pass


@dataclass(frozen=True)
class AudioStateChange:
    enabled: bool


@dataclass(frozen=True)
class Pong:
    pass


ClientMessage = Union[MoveRequest, ShootRequest, AudioFrame, AudioStateChange, Pong]


async def read_message(reader: StreamReader) -> tuple[MessageType, bytes]:
    """Read a length-prefixed message from the stream."""
    length_data = await reader.readexactly(4)
    length = struct.unpack(">I", length_data)[0]
    if length < 1:
        raise ProtocolError("Invalid message length")
    if length > MAX_MESSAGE_SIZE:
        raise FramingError(f"Message length {length} exceeds {MAX_MESSAGE_SIZE}")
    msg_type = struct.unpack("B", await reader.readexactly(1))[0]
    payload = await reader.readexactly(length - 1) if length > 1 else b""
    try:
        return MessageType(msg_type), payload
    except ValueError:
        raise ProtocolError(f"Unknown message type: {msg_type:#x}") from None


async def write_message(
    writer: StreamWriter, msg_type: MessageType, payload: bytes = b""
) -> None:
    """Write a length-prefixed message to the stream."""
    length = 1 + len(payload)
    writer.write(struct.pack(">I", length))
    writer.write(struct.pack("B", msg_type))
    writer.write(payload)
    await writer.drain()


def encode_packet(msg_type: MessageType, payload: bytes = b"") -> bytes:
    """Frame a message for the WebSocket transport: type byte + payload."""
    return bytes([msg_type]) + payload


def decode_packet(data: bytes) -> tuple[MessageType, bytes]:
    """Split a WebSocket frame into message type and payload."""
    if len(data) < 1:
        raise ProtocolError("Empty packet")
    try:
        return MessageType(data[0]), data[1:]
    except ValueError:
        raise ProtocolError(f"Unknown message type: {data[0]:#x}") from None


def _pack_str(value: str, length_fmt: str = ">H") -> bytes:
    encoded = value.encode("utf-8")
    return struct.pack(length_fmt, len(encoded)) + encoded


def _unpack_str(data: bytes, offset: int, length_fmt: str = ">H") -> tuple[str, int]:
    size = struct.calcsize(length_fmt)
    if offset + size > len(data):
        raise ProtocolError("String length prefix runs past end of payload")
    (str_len,) = struct.unpack(length_fmt, data[offset : offset + size])
    offset += size
    if offset + str_len > len(data):
        raise ProtocolError("String runs past end of payload")
    return data[offset : offset + str_len].decode("utf-8"), offset + str_len


def _check_finite(*values: float) -> None:
    if not all(math.isfinite(v) for v in values):
        raise ProtocolError("Non-finite number in payload")


# PlayerInfo: id, x, y, angle, health, audio_enabled, name, color
_PLAYER_FMT = ">IdddBB"
_PLAYER_SIZE = struct.calcsize(_PLAYER_FMT)


def serialize_player_info(p: PlayerInfo) -> bytes:
    health = max(0, min(255, p.health))
    return (
        struct.pack(
            _PLAYER_FMT,
            p.player_id,
            p.x,
            p.y,
            p.angle,
            health,
            1 if p.audio_enabled else 0,
        )
        + _pack_str(p.name)
        + _pack_str(p.color, ">B")
    )


def _read_player_info(data: bytes, offset: int) -> tuple[PlayerInfo, int]:
    player_id, x, y, angle, health, audio_enabled = struct.unpack(
        _PLAYER_FMT, data[offset : offset + _PLAYER_SIZE]
    )
    offset += _PLAYER_SIZE
    name, offset = _unpack_str(data, offset)
    color, offset = _unpack_str(data, offset, ">B")
    info = PlayerInfo(player_id, x, y, angle, health, bool(audio_enabled), name, color)
    return info, offset


def deserialize_player_info(data: bytes) -> PlayerInfo:
    return _read_player_info(data, 0)[0]


# BulletInfo: id, owner_id, x, y, angle, speed, created_at_ms
_BULLET_FMT = ">IIddddQ"
_BULLET_SIZE = struct.calcsize(_BULLET_FMT)


def serialize_bullet_info(b: BulletInfo) -> bytes:
    return struct.pack(
        _BULLET_FMT,
        b.bullet_id,
        b.owner_id,
        b.x,
        b.y,
        b.angle,
        b.speed,
        b.created_at_ms,
    )


def deserialize_bullet_info(data: bytes) -> BulletInfo:
    return BulletInfo(*struct.unpack(_BULLET_FMT, data[:_BULLET_SIZE]))


# GAME_STATE: player_id, arena w/h, players, bullets, server info
def serialize_game_state(state: GameState) -> bytes:
    result = struct.pack(
        ">Idd", state.player_id, state.arena_width, state.arena_height
    )
    result += struct.pack(">I", len(state.players))
    for p in state.players:
        result += serialize_player_info(p)
    result += struct.pack(">I", len(state.bullets))
    for b in state.bullets:
        result += serialize_bullet_info(b)
    info = state.server_info
    result += _pack_str(info.transport, ">B")
    result += struct.pack(">dd", info.ping_interval, info.ping_timeout)
    return result


def deserialize_game_state(data: bytes) -> GameState:
    player_id, width, height = struct.unpack(">Idd", data[:20])
    offset = 20
    (num_players,) = struct.unpack(">I", data[offset : offset + 4])
    offset += 4
    players = []
    for _ in range(num_players):
        player, offset = _read_player_info(data, offset)
        players.append(player)
    (num_bullets,) = struct.unpack(">I", data[offset : offset + 4])
    offset += 4
    bullets = []
    for _ in range(num_bullets):
        bullets.append(deserialize_bullet_info(data[offset : offset + _BULLET_SIZE]))
        offset += _BULLET_SIZE
    transport, offset = _unpack_str(data, offset, ">B")
    ping_interval, ping_timeout = struct.unpack(">dd", data[offset : offset + 16])
    return GameState(
        player_id,
        width,
        height,
        players,
        bullets,
        ServerInfo(transport, ping_interval, ping_timeout),
    )


# PLAYER_MOVE: x, y, angle
def serialize_player_move(x: float, y: float, angle: float) -> bytes:
    return struct.pack(">ddd", x, y, angle)


def deserialize_player_move(data: bytes) -> MoveRequest:
    if len(data) != 24:
        raise ProtocolError(f"PLAYER_MOVE payload must be 24 bytes, got {len(data)}")
    x, y, angle = struct.unpack(">ddd", data)
    _check_finite(x, y, angle)
    return MoveRequest(x, y, angle)


# PLAYER_MOVED: id, x, y, angle
def serialize_player_moved(player_id: int, x: float, y: float, angle: float) -> bytes:
    return struct.pack(">Iddd", player_id, x, y, angle)


def deserialize_player_moved(data: bytes) -> tuple[int, float, float, float]:
    return struct.unpack(">Iddd", data[:28])


# BULLET_DESTROYED: bullet_id
def serialize_bullet_destroyed(bullet_id: int) -> bytes:
    return struct.pack(">I", bullet_id)


def deserialize_bullet_destroyed(data: bytes) -> int:
    result: int = struct.unpack(">I", data[:4])[0]
    return result


# PLAYER_DAMAGED: id, damage
def serialize_player_damaged(player_id: int, damage: int) -> bytes:
    return struct.pack(">IH", player_id, damage)


def deserialize_player_damaged(data: bytes) -> tuple[int, int]:
    return struct.unpack(">IH", data[:6])


# PLAYER_RESPAWNED: id, x, y, health
def serialize_player_respawned(player_id: int, x: float, y: float, health: int) -> bytes:
    return struct.pack(">IddB", player_id, x, y, health)


def deserialize_player_respawned(data: bytes) -> tuple[int, float, float, int]:
    return struct.unpack(">IddB", data[:21])


# PLAYER_LEFT: player_id
def serialize_player_left(player_id: int) -> bytes:
    return struct.pack(">I", player_id)


def deserialize_player_left(data: bytes) -> int:
    result: int = struct.unpack(">I", data[:4])[0]
    return result


# AUDIO_STREAM: player_id, timestamp_ms, sample_rate, name, samples (int16)
_AUDIO_HEADER_FMT = ">IQI"
_AUDIO_HEADER_SIZE = struct.calcsize(_AUDIO_HEADER_FMT)


def serialize_audio_frame(frame: AudioFrame) -> bytes:
    samples = np.asarray(frame.samples, dtype=">i2")
    return (
        struct.pack(
            _AUDIO_HEADER_FMT, frame.player_id, frame.timestamp_ms, frame.sample_rate
        )
        + _pack_str(frame.player_name, ">B")
        + struct.pack(">I", len(samples))
        + samples.tobytes()
    )


def deserialize_audio_frame(data: bytes) -> AudioFrame:
    if len(data) < _AUDIO_HEADER_SIZE + 5:
        raise ProtocolError("AUDIO_STREAM payload too short")
    player_id, timestamp_ms, sample_rate = struct.unpack(
        _AUDIO_HEADER_FMT, data[:_AUDIO_HEADER_SIZE]
    )
    name, offset = _unpack_str(data, _AUDIO_HEADER_SIZE, ">B")
    if offset + 4 > len(data):
        raise ProtocolError("AUDIO_STREAM payload truncated before sample count")
    (num_samples,) = struct.unpack(">I", data[offset : offset + 4])
    offset += 4
    if num_samples == 0 or num_samples > MAX_AUDIO_SAMPLES:
        raise ProtocolError(f"Bad audio sample count: {num_samples}")
    if not 0 < sample_rate <= MAX_SAMPLE_RATE:
        raise ProtocolError(f"Bad sample rate: {sample_rate}")
    if len(data) - offset != num_samples * 2:
        raise ProtocolError("Audio sample block length mismatch")
    samples = np.frombuffer(data[offset:], dtype=">i2").astype(np.int16)
    return AudioFrame(samples, timestamp_ms, sample_rate, player_id, name)


# AUDIO_STATE_CHANGED: enabled
def serialize_audio_state_changed(enabled: bool) -> bytes:
    return struct.pack("B", 1 if enabled else 0)


def deserialize_audio_state_changed(data: bytes) -> AudioStateChange:
    if len(data) != 1 or data[0] > 1:
        raise ProtocolError("AUDIO_STATE_CHANGED payload must be a single 0/1 byte")
    return AudioStateChange(bool(data[0]))


# PLAYER_AUDIO_STATE: player_id, enabled
def serialize_player_audio_state(player_id: int, enabled: bool) -> bytes:
    return struct.pack(">IB", player_id, 1 if enabled else 0)


def deserialize_player_audio_state(data: bytes) -> tuple[int, bool]:
    player_id, enabled = struct.unpack(">IB", data[:5])
    return player_id, bool(enabled)


# SERVER_DISCONNECT: reason
def serialize_server_disconnect(reason: str) -> bytes:
    return _pack_str(reason)


def deserialize_server_disconnect(data: bytes) -> str:
    return _unpack_str(data, 0)[0]


def parse_client_message(msg_type: MessageType, payload: bytes) -> ClientMessage:
    """Decode and validate a client -> server message.

    Raises ProtocolError for unexpected types and malformed payloads.
    """
    try:
        if msg_type == MessageType.PLAYER_MOVE:
            return deserialize_player_move(payload)
        elif msg_type == MessageType.PLAYER_SHOOT:
            return ShootRequest()
        elif msg_type == MessageType.AUDIO_STREAM:
            return deserialize_audio_frame(payload)
        elif msg_type == MessageType.AUDIO_STATE_CHANGED:
            return deserialize_audio_state_changed(payload)
        elif msg_type == MessageType.PONG:
            return Pong()
    except (struct.error, UnicodeDecodeError) as e:
        raise ProtocolError(f"Malformed {msg_type.name} payload: {e}") from e
    raise ProtocolError(f"Unexpected client message: {msg_type.name}")
