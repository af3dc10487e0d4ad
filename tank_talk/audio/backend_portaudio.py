"""PortAudio streams via sounddevice, for platforms without PulseAudio."""

from __future__ import annotations

import collections
import logging
import os
from typing import Any

import numpy as np
import numpy.typing as npt
import sounddevice as sd

from .backend import AudioInputStream, AudioOutputStream, LatestFrameWriter, Samples

logger = logging.getLogger(__name__)

# Names the client when PortAudio itself routes through PulseAudio/PipeWire
os.environ.setdefault("PULSE_PROP_application.name", "tank_talk")


class PortAudioOutputStream(AudioOutputStream):
    """Blocking device writes moved off the caller's thread."""

    def __init__(self, stream_name: str, samplerate: int = 16000, channels: int = 1):
        self.stream_name = stream_name
        self.samplerate = samplerate
        self.channels = channels
        self._stream: sd.OutputStream | None = None
        self._writer: LatestFrameWriter | None = None

    @property
    def replaced(self) -> int:
        return self._writer.replaced if self._writer is not None else 0

    def start(self) -> None:
        if self._stream is not None:
            return
        self._stream = sd.OutputStream(
            samplerate=self.samplerate, channels=self.channels, dtype=np.float32
        )
        self._stream.start()
        self._writer = LatestFrameWriter(self.stream_name, self._play)
        self._writer.start()

    def stop(self) -> None:
        if self._stream is None:
            return
        if self._writer is not None:
            self._writer.close()
            self._writer = None
        try:
            self._stream.stop()
            self._stream.close()
        except sd.PortAudioError as e:
            logger.debug(f"Error closing output {self.stream_name}: {e}")
        self._stream = None

    def write(self, data: Samples) -> None:
        if self._writer is not None:
            self._writer.offer(np.array(data, dtype=np.float32))

    def _play(self, data: Samples) -> None:
        stream = self._stream
        if stream is None:
            return
        block = np.repeat(data.reshape(-1, 1), self.channels, axis=1)
        try:
            if stream.write(block):
                logger.debug(f"Output underflow on {self.stream_name}")
        except sd.PortAudioError as e:
            logger.debug(f"Dropping frame on {self.stream_name}: {e}")


class PortAudioInputStream(AudioInputStream):
    """Callback-driven capture keeping only the newest few blocks."""

    def __init__(
        self,
        stream_name: str,
        samplerate: int = 16000,
        channels: int = 1,
        blocksize: int = 1024,
    ):
        self.stream_name = stream_name
        self.samplerate = samplerate
        self.channels = channels
        self.blocksize = blocksize
        self._stream: sd.InputStream | None = None
        self._blocks: collections.deque[Samples] = collections.deque(maxlen=4)

    def start(self) -> None:
        """Open the default input device.

        Raises sd.PortAudioError when the device cannot be opened.
        """
        if self._stream is not None:
            return
        self._stream = sd.InputStream(
            samplerate=self.samplerate,
            channels=self.channels,
            dtype=np.float32,
            blocksize=self.blocksize,
            callback=self._on_block,
        )
        self._stream.start()

    def stop(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        except sd.PortAudioError as e:
            logger.debug(f"Error closing input {self.stream_name}: {e}")
        self._stream = None
        self._blocks.clear()

    def read(self, num_samples: int) -> Samples | None:
        try:
            return self._blocks.popleft()
        except IndexError:
            return None

    def _on_block(
        self,
        indata: npt.NDArray[np.float32],
        frames: int,
        time_info: Any,
        status: sd.CallbackFlags,
    ) -> None:
        if status:
            logger.debug(f"Input status on {self.stream_name}: {status}")
        self._blocks.append(indata[:, 0].copy())


STREAMS = {"output": PortAudioOutputStream, "input": PortAudioInputStream}
