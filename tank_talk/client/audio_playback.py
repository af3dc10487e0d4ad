"""Immediate audio playback with one output stream per remote player."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

import numpy as np

from ..audio.backend import AudioOutputStream, create_output_stream
from ..common.audio import decompress, resample
from ..common.constants import SAMPLE_RATE
from ..common.protocol import AudioFrame

logger = logging.getLogger(__name__)


class AudioPlayback:
    """Writes each received frame straight to the player's output stream.

    There is no jitter buffer: a frame is decoded and played as soon as it
    arrives. Per-player streams let the system mixer combine voices.
    """

    def __init__(
        self,
        device_rate: int = SAMPLE_RATE,
        stream_factory: Callable[..., AudioOutputStream] = create_output_stream,
    ) -> None:
        self.device_rate = device_rate
        self._stream_factory = stream_factory
        self._streams: dict[int, AudioOutputStream] = {}
        self._lock = threading.Lock()
        self.volume = 1.0
        self.frames_played = 0
        self.frames_failed = 0

    def set_volume(self, volume: float) -> None:
        """Set output volume, clamped to 0..2."""
        self.volume = max(0.0, min(2.0, volume))

    def play(self, frame: AudioFrame) -> bool:
        """Decode and play one frame. Failures are logged, never raised."""
        try:
            pcm = decompress(frame.samples)
            if frame.sample_rate != self.device_rate:
                pcm = resample(pcm, frame.sample_rate, self.device_rate)
            pcm = np.clip(pcm * self.volume, -1.0, 1.0).astype(np.float32)
            self._get_stream(frame.player_id, frame.player_name).write(pcm)
        except Exception as e:
            self.frames_failed += 1
            logger.warning(
                f"Failed to play audio frame from player {frame.player_id}: "
                f"{type(e).__name__}: {e}"
            )
            return False
        self.frames_played += 1
        return True

    def _get_stream(self, player_id: int, player_name: str) -> AudioOutputStream:
        with self._lock:
            stream = self._streams.get(player_id)
            if stream is None:
                stream = self._stream_factory(
                    stream_name=f"player:{player_name or player_id}",
                    samplerate=self.device_rate,
                    channels=1,
                )
                stream.start()
                self._streams[player_id] = stream
            return stream

    def remove_player(self, player_id: int) -> None:
        """Close the output stream of a player who left."""
        with self._lock:
            stream = self._streams.pop(player_id, None)
        if stream is not None:
            stream.stop()

    def close(self) -> None:
        """Close every output stream."""
        with self._lock:
            streams = list(self._streams.values())
            self._streams.clear()
        for stream in streams:
            stream.stop()
