"""PulseAudio/PipeWire streams opened through ffmpeg's pulse device (PyAV)."""

from __future__ import annotations

import collections
import logging
import threading
from typing import Any

import av
import numpy as np

from .backend import (
    AudioInputStream,
    AudioOutputStream,
    LatestFrameWriter,
    Samples,
    to_float32,
)

logger = logging.getLogger(__name__)

APPLICATION_NAME = "tank_talk"

# Errors ffmpeg raises on a device that went away or rejected a frame
DEVICE_ERRORS = (av.FFmpegError, OSError, ValueError)


def _device_options(stream_name: str, **settings: int) -> dict[str, str]:
    options = {"name": f"{APPLICATION_NAME}:{stream_name}"}
    options.update((key, str(value)) for key, value in settings.items())
    return options


def _layout(channels: int) -> str:
    return "mono" if channels == 1 else "stereo"


def _close(container: Any, stream_name: str) -> None:
    if container is None:
        return
    try:
        container.close()
    except (av.FFmpegError, OSError) as e:
        logger.debug(f"Error closing {stream_name}: {e}")


class PulseOutputStream(AudioOutputStream):
    """One named sink input per remote speaker, muxed as raw float PCM."""

    def __init__(self, stream_name: str, samplerate: int = 16000, channels: int = 1):
        self.stream_name = stream_name
        self.samplerate = samplerate
        self.channels = channels
        self._sink_container: Any = None
        self._pcm: Any = None
        self._writer: LatestFrameWriter | None = None
        self._pts = 0

    @property
    def replaced(self) -> int:
        return self._writer.replaced if self._writer is not None else 0

    def start(self) -> None:
        if self._writer is not None:
            return
        self._sink_container = av.open(
            "default", mode="w", format="pulse",
            options=_device_options(self.stream_name),
        )
        self._pcm = self._sink_container.add_stream(
            "pcm_f32le", rate=self.samplerate, layout=_layout(self.channels)
        )
        self._pts = 0
        self._writer = LatestFrameWriter(self.stream_name, self._mux)
        self._writer.start()

    def stop(self) -> None:
        if self._writer is None:
            return
        self._writer.close()
        self._writer = None
        _close(self._sink_container, self.stream_name)
        self._sink_container = self._pcm = None

    def write(self, data: Samples) -> None:
        if self._writer is not None:
            self._writer.offer(np.array(data, dtype=np.float32))

    def _mux(self, data: Samples) -> None:
        if self._sink_container is None or self._pcm is None:
            return
        # Packed float: a single row of interleaved samples
        interleaved = np.repeat(data, self.channels).reshape(1, -1)
        frame = av.AudioFrame.from_ndarray(
            interleaved, format="flt", layout=_layout(self.channels)
        )
        frame.sample_rate = self.samplerate
        frame.pts = self._pts
        self._pts += len(data)
        try:
            for packet in self._pcm.encode(frame):
                self._sink_container.mux(packet)
        except DEVICE_ERRORS as e:
            logger.debug(f"Dropping frame on {self.stream_name}: {e}")


class PulseInputStream(AudioInputStream):
    """Named source output decoded on a reader thread.

    Only the newest few blocks are kept; a caller that falls behind loses
    the oldest audio rather than hearing it late.
    """

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
        self._source_container: Any = None
        self._reader: threading.Thread | None = None
        self._stopping = threading.Event()
        self._blocks: collections.deque[Samples] = collections.deque(maxlen=4)

    def start(self) -> None:
        """Open the default source. Device errors propagate to the caller."""
        if self._reader is not None:
            return
        self._source_container = av.open(
            "default", mode="r", format="pulse",
            options=_device_options(
                self.stream_name,
                sample_rate=self.samplerate,
                channels=self.channels,
                # In bytes, for int16 samples
                fragment_size=self.blocksize * 2 * self.channels,
            ),
        )
        self._stopping.clear()
        self._reader = threading.Thread(
            target=self._pump, name=f"audio-in:{self.stream_name}", daemon=True
        )
        self._reader.start()

    def stop(self) -> None:
        if self._reader is None:
            return
        self._stopping.set()
        self._reader.join(timeout=1.0)
        self._reader = None
        _close(self._source_container, self.stream_name)
        self._source_container = None
        self._blocks.clear()

    def read(self, num_samples: int) -> Samples | None:
        try:
            return self._blocks.popleft()
        except IndexError:
            return None

    def _pump(self) -> None:
        try:
            for frame in self._source_container.decode(audio=0):
                if self._stopping.is_set():
                    return
                self._blocks.append(to_float32(frame.to_ndarray(), self.channels))
        except DEVICE_ERRORS as e:
            if not self._stopping.is_set():
                logger.warning(f"Capture on {self.stream_name} ended: {e}")


STREAMS = {"output": PulseOutputStream, "input": PulseInputStream}
