"""Client voice chat: microphone lifecycle, transmission state and playback."""

from __future__ import annotations

import asyncio
import enum
import errno
import logging
import time
from collections.abc import Callable

import numpy as np
import numpy.typing as npt

from ..common.constants import SAMPLE_RATE
from ..common.protocol import (
    AudioFrame,
    MessageType,
    serialize_audio_frame,
    serialize_audio_state_changed,
)
from .audio_capture import AudioCapture
from .audio_playback import AudioPlayback

logger = logging.getLogger(__name__)


class MicrophoneErrorKind(enum.Enum):
    PERMISSION_DENIED = "permission_denied"
    NO_DEVICE = "no_device"
    DEVICE_BUSY = "device_busy"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


_KIND_MESSAGES = {
    MicrophoneErrorKind.PERMISSION_DENIED: "Microphone permission denied",
    MicrophoneErrorKind.NO_DEVICE: "No microphone found",
    MicrophoneErrorKind.DEVICE_BUSY: "Microphone is in use by another application",
    MicrophoneErrorKind.UNSUPPORTED: "Audio configuration not supported by device",
    MicrophoneErrorKind.UNKNOWN: "Audio error",
}

_ERRNO_KINDS = {
    errno.EACCES: MicrophoneErrorKind.PERMISSION_DENIED,
    errno.EPERM: MicrophoneErrorKind.PERMISSION_DENIED,
    errno.ENOENT: MicrophoneErrorKind.NO_DEVICE,
    errno.ENODEV: MicrophoneErrorKind.NO_DEVICE,
    errno.ENXIO: MicrophoneErrorKind.NO_DEVICE,
    errno.EBUSY: MicrophoneErrorKind.DEVICE_BUSY,
    errno.EINVAL: MicrophoneErrorKind.UNSUPPORTED,
}

# Substrings of backend error messages (PortAudio, ffmpeg) by cause
_MESSAGE_KINDS = [
    ("permission", MicrophoneErrorKind.PERMISSION_DENIED),
    ("access denied", MicrophoneErrorKind.PERMISSION_DENIED),
    ("no default input", MicrophoneErrorKind.NO_DEVICE),
    ("no such", MicrophoneErrorKind.NO_DEVICE),
    ("invalid device", MicrophoneErrorKind.NO_DEVICE),
    ("querying device", MicrophoneErrorKind.NO_DEVICE),
    ("device unavailable", MicrophoneErrorKind.DEVICE_BUSY),
    ("busy", MicrophoneErrorKind.DEVICE_BUSY),
    ("invalid sample rate", MicrophoneErrorKind.UNSUPPORTED),
    ("invalid number of channels", MicrophoneErrorKind.UNSUPPORTED),
    ("not supported", MicrophoneErrorKind.UNSUPPORTED),
]


class MicrophoneError(Exception):
    """A microphone could not be opened, with its classified cause."""

    def __init__(self, kind: MicrophoneErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(self.message)

    @property
    def message(self) -> str:
        base = _KIND_MESSAGES[self.kind]
        if self.kind == MicrophoneErrorKind.UNKNOWN and self.detail:
            return f"{base}: {self.detail}"
        return base


def classify_device_error(exc: BaseException) -> MicrophoneError:
    """Map a backend exception onto a MicrophoneError by cause."""
    if isinstance(exc, MicrophoneError):
        return exc
    detail = str(exc)
    if isinstance(exc, PermissionError):
        return MicrophoneError(MicrophoneErrorKind.PERMISSION_DENIED, detail)
    if isinstance(exc, FileNotFoundError):
        return MicrophoneError(MicrophoneErrorKind.NO_DEVICE, detail)
    code = getattr(exc, "errno", None)
    if isinstance(code, int):
        # ffmpeg reports negated errno values
        kind = _ERRNO_KINDS.get(abs(code))
        if kind is not None:
            return MicrophoneError(kind, detail)
    lowered = detail.lower()
    for needle, kind in _MESSAGE_KINDS:
        if needle in lowered:
            return MicrophoneError(kind, detail)
    return MicrophoneError(MicrophoneErrorKind.UNKNOWN, detail)


class AudioManager:
    """Owns the microphone and speakers for one GameClient.

    Outgoing frames and state changes go through ``send``, which is called
    on the event loop thread.
    """

    def __init__(
        self,
        send: Callable[[MessageType, bytes], None],
        capture: AudioCapture | None = None,
        playback: AudioPlayback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.send = send
        self.capture = capture or AudioCapture(self._on_captured)
        # A capture built by the caller still reports to this manager
        self.capture.on_frame = self._on_captured
        self.playback = playback or AudioPlayback()
        self.clock = clock
        self._loop: asyncio.AbstractEventLoop | None = None

        self.is_initialized = False
        self.is_transmitting = False
        self.is_muted = False
        self.error: MicrophoneError | None = None
        self.status = "Not started"

        self.latency_ms: float | None = None
        self.packets_per_second = 0
        self._packet_count = 0
        self._window_start = clock()

    @property
    def mic_volume(self) -> float:
        return self.capture.gain

    @property
    def output_volume(self) -> float:
        return self.playback.volume

    def init(self) -> bool:
        """Open the microphone and start transmitting.

        Returns False (with ``error`` and ``status`` set) on device failure.
        """
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        try:
            self.capture.start()
        except Exception as e:
            self.error = classify_device_error(e)
            self.status = f"Error: {self.error.message} (r to retry)"
            logger.warning(f"Microphone init failed ({self.error.kind.value}): {e}")
            return False

        self.error = None
        self.is_initialized = True
        logger.info("Audio initialized")
        self.start_transmitting()
        return True

    def retry(self) -> bool:
        """User-triggered retry after a device failure."""
        self.capture.stop()
        self.is_initialized = False
        return self.init()

    def start_transmitting(self) -> None:
        if not self.is_initialized:
            logger.warning("Audio not initialized")
            return
        self.is_transmitting = True
        self._update_status()
        self.send(MessageType.AUDIO_STATE_CHANGED, serialize_audio_state_changed(True))

    def stop_transmitting(self) -> None:
        self.is_transmitting = False
        self._update_status()
        self.send(
            MessageType.AUDIO_STATE_CHANGED, serialize_audio_state_changed(False)
        )

    def toggle_microphone(self) -> None:
        if self.is_transmitting:
            self.stop_transmitting()
        else:
            self.start_transmitting()

    def toggle_mute(self) -> None:
        self.is_muted = not self.is_muted
        self.capture.set_muted(self.is_muted)
        self._update_status()

    def set_mic_volume(self, volume: float) -> None:
        self.capture.set_gain(volume)

    def set_output_volume(self, volume: float) -> None:
        self.playback.set_volume(volume)

    def _update_status(self) -> None:
        if self.error is not None:
            return
        if self.is_muted:
            self.status = "Muted"
        elif self.is_transmitting:
            self.status = "Transmitting"
        else:
            self.status = "Paused"

    def _on_captured(self, samples: npt.NDArray[np.int16], timestamp_ms: int) -> None:
        """Capture-thread callback; forwards the frame to the event loop."""
        if not self.is_transmitting:
            return
        payload = serialize_audio_frame(
            AudioFrame(samples, timestamp_ms=timestamp_ms, sample_rate=SAMPLE_RATE)
        )
        if self._loop is not None:
            try:
                self._loop.call_soon_threadsafe(
                    self.send, MessageType.AUDIO_STREAM, payload
                )
            except RuntimeError:
                pass  # Loop already closed during shutdown
        else:
            self.send(MessageType.AUDIO_STREAM, payload)

    def on_audio_stream(self, frame: AudioFrame) -> None:
        """Handle a relayed frame: update stats and play it immediately."""
        if frame.timestamp_ms:
            self.latency_ms = time.time() * 1000 - frame.timestamp_ms
        self._packet_count += 1
        now = self.clock()
        if now - self._window_start >= 1.0:
            self.packets_per_second = self._packet_count
            self._packet_count = 0
            self._window_start = now
        self.playback.play(frame)

    def on_player_left(self, player_id: int) -> None:
        self.playback.remove_player(player_id)

    def destroy(self) -> None:
        """Stop the microphone and close all playback streams."""
        logger.info("Releasing audio resources")
        self.is_transmitting = False
        self.is_initialized = False
        self.capture.stop()
        self.playback.close()
