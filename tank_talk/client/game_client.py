"""Main game client handling network, audio and UI."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from blessed import Terminal
from blessed.keyboard import Keystroke

from ..common.config import GameConfig
from ..common.protocol import (
    MessageType,
    ProtocolError,
    deserialize_audio_frame,
    deserialize_game_state,
    deserialize_player_left,
    deserialize_server_disconnect,
    serialize_player_move,
)
from .audio_manager import AudioManager
from .connection import ConnectionState, ServerConnection
from .input_handler import (
    HeldKeys,
    get_movement,
    get_volume_change,
    is_mic_key,
    is_mute_key,
    is_quit_key,
    is_retry_key,
    is_shoot_key,
)
from .mirror import ClientMirror
from .terminal_ui import TerminalUI

logger = logging.getLogger(__name__)

FRAME_INTERVAL = 1 / 60


class GameClient:
    def __init__(
        self,
        host: str,
        port: int,
        stream_port: int | None = None,
        enable_audio: bool = True,
        config: GameConfig | None = None,
    ) -> None:
        self.config = config or GameConfig()
        self.mirror = ClientMirror(self.config)
        self.connection = ServerConnection(
            host,
            port,
            on_message=self.handle_server_message,
            stream_port=stream_port,
            on_state_change=self._on_state_change,
        )
        self.audio: AudioManager | None = (
            AudioManager(self.connection.send) if enable_audio else None
        )
        self.held = HeldKeys()
        self.running = False
        self.message = ""
        self.term: Any = Terminal()
        self.ui = TerminalUI(self.term)

    async def connect(self) -> bool:
        return await self.connection.connect()

    async def run(self) -> None:
        """Main client loop."""
        self.running = True
        network_task = asyncio.create_task(self.connection.run())
        try:
            if self.audio is not None:
                self.audio.init()
            with self.term.fullscreen(), self.term.cbreak(), self.term.hidden_cursor():
                self._render()
                while self.running:
                    # Drain all pending input
                    while True:
                        key = self.term.inkey(timeout=0)
                        if not key:
                            break
                        self._handle_input(key)

                    self._update()
                    self._render()
                    await asyncio.sleep(FRAME_INTERVAL)
        finally:
            self.running = False
            if self.audio is not None:
                self.audio.destroy()
            await self.connection.close()
            network_task.cancel()
            try:
                await network_task
            except asyncio.CancelledError:
                pass
            self.ui.cleanup()

    def handle_server_message(self, msg_type: MessageType, payload: bytes) -> None:
        """Apply a server message to the mirror and the audio pipeline."""
        if msg_type == MessageType.GAME_STATE:
            self.mirror.apply_game_state(deserialize_game_state(payload))
            self.message = ""
        elif msg_type == MessageType.AUDIO_STREAM:
            if self.audio is not None:
                try:
                    frame = deserialize_audio_frame(payload)
                except ProtocolError as e:
                    logger.debug(f"Dropping audio frame: {e}")
                    return
                self.audio.on_audio_stream(frame)
        elif msg_type == MessageType.SERVER_DISCONNECT:
            self.message = f"Disconnected by server: {deserialize_server_disconnect(payload)}"
        else:
            if msg_type == MessageType.PLAYER_LEFT and self.audio is not None:
                self.audio.on_player_left(deserialize_player_left(payload))
            self.mirror.handle_message(msg_type, payload)

    def _on_state_change(self, state: ConnectionState) -> None:
        if state == ConnectionState.FAILED:
            self.message = "Connection lost. Press r to reconnect"
        elif state == ConnectionState.RECONNECTING:
            self.message = "Reconnecting..."

    def _handle_input(self, key: Keystroke) -> None:
        if is_quit_key(key):
            self.running = False
            return

        movement = get_movement(key)
        if movement is not None:
            self.held.press(movement, time.monotonic())
            return

        if is_shoot_key(key):
            if self.connection.connected and self.mirror.try_shoot():
                self.connection.send(MessageType.PLAYER_SHOOT)
        elif is_retry_key(key):
            if self.connection.state == ConnectionState.FAILED:
                self.connection.reconnect()
            elif self.audio is not None and self.audio.error is not None:
                self.audio.retry()
        elif self.audio is None:
            return
        elif is_mic_key(key):
            self.audio.toggle_microphone()
        elif is_mute_key(key):
            self.audio.toggle_mute()
        else:
            change = get_volume_change(key)
            if change:
                self.audio.set_output_volume(self.audio.output_volume + change)

    def _update(self) -> None:
        """Advance local prediction by one frame."""
        dx, dy = self.held.direction(time.monotonic())
        moved = self.mirror.predict_move(dx, dy)
        if moved is not None:
            self.connection.send(MessageType.PLAYER_MOVE, serialize_player_move(*moved))
        self.mirror.advance_bullets()

    def _status_fields(self) -> dict[str, str]:
        fields = {
            "Players": str(len(self.mirror.players)),
            "Link": self.connection.state.value,
            "Transport": self.connection.transport or "-",
        }
        if self.audio is None:
            fields["Audio"] = "off"
        else:
            fields["Audio"] = self.audio.status
            fields["Vol"] = f"{self.audio.output_volume:.1f}"
            latency = self.audio.latency_ms
            fields["Latency"] = f"{latency:.0f}ms" if latency is not None else "-"
            fields["Pkt/s"] = str(self.audio.packets_per_second)
        return fields

    def _render(self) -> None:
        self.ui.render(
            self.mirror.arena,
            list(self.mirror.players.values()),
            list(self.mirror.bullets.values()),
            self.mirror.local_id,
            self._status_fields(),
            self.message,
        )
