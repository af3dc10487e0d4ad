"""Microphone capture with silence suppression."""

import threading
import time
from collections.abc import Callable

import numpy as np
import numpy.typing as npt

from ..audio.backend import AudioInputStream, create_input_stream
from ..common.audio import compress, rms
from ..common.constants import CHANNELS, FRAME_SIZE, SAMPLE_RATE, SILENCE_RMS_THRESHOLD


class AudioCapture:
    """Captures microphone audio in fixed blocks and hands them to a callback.

    Blocks whose energy is below the silence threshold are not sent at all.
    Sent blocks are already compressed to int16.
    """

    def __init__(
        self,
        on_frame: Callable[[npt.NDArray[np.int16], int], None],
        silence_threshold: float = SILENCE_RMS_THRESHOLD,
        stream_factory: Callable[..., AudioInputStream] = create_input_stream,
    ) -> None:
        """
        Args:
            on_frame: Called from the capture thread with
                (compressed_samples, timestamp_ms) for each voiced block
            silence_threshold: RMS below which a block is suppressed
            stream_factory: Builds the input stream (swapped out in tests)
        """
        self.on_frame = on_frame
        self.silence_threshold = silence_threshold
        self._stream_factory = stream_factory
        self._stream: AudioInputStream | None = None
        self.gain = 1.0
        self.is_muted = False
        self.last_level = 0.0
        self.frames_sent = 0
        self.frames_suppressed = 0
        self._pending = np.zeros(0, dtype=np.float32)
        self._running = False
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Open the microphone and start the capture thread.

        Device errors from the backend propagate to the caller.
        """
        if self._running:
            return
        self._stream = self._stream_factory(
            stream_name="microphone",
            samplerate=SAMPLE_RATE,
            channels=CHANNELS,
        )
        try:
            self._stream.start()
        except BaseException:
            self._stream = None
            raise
        self._pending = np.zeros(0, dtype=np.float32)
        self._running = True
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop capturing and release the device. Safe to call repeatedly."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._stream:
            self._stream.stop()
            self._stream = None

    def set_muted(self, muted: bool) -> None:
        self.is_muted = muted

    def set_gain(self, gain: float) -> None:
        """Set microphone gain, clamped to 0..2."""
        self.gain = max(0.0, min(2.0, gain))

    def process_block(self, pcm: npt.NDArray[np.float32]) -> bool:
        """Apply gain and silence suppression to one block; send if voiced.

        Returns True when the block was sent.
        """
        pcm = pcm.astype(np.float32) * self.gain
        self.last_level = rms(pcm)
        if self.is_muted or self.last_level < self.silence_threshold:
            self.frames_suppressed += 1
            return False
        timestamp_ms = int(time.time() * 1000)
        self.on_frame(compress(pcm), timestamp_ms)
        self.frames_sent += 1
        return True

    def _capture_loop(self) -> None:
        """Background thread that reads audio and slices it into blocks."""
        while self._running and self._stream is not None:
            pcm = self._stream.read(FRAME_SIZE)
            if pcm is None:
                time.sleep(0.001)
                continue

            if pcm.ndim > 1:
                pcm = pcm[:, 0]
            self._pending = np.concatenate([self._pending, pcm.flatten()])

            while len(self._pending) >= FRAME_SIZE:
                block = self._pending[:FRAME_SIZE]
                self._pending = self._pending[FRAME_SIZE:]
                self.process_block(block)
