"""Audio device streams and the per-platform choice between them.

Linux goes through PulseAudio (PyAV) so every remote speaker shows up as
its own named entry in the mixer. Other platforms use PortAudio.

Playback keeps no jitter buffer: an output stream holds at most the frame
the device is currently taking plus the newest one waiting behind it.
"""

from __future__ import annotations

import importlib
import logging
import sys
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import numpy as np
import numpy.typing as npt

logger = logging.getLogger(__name__)

Samples = npt.NDArray[np.float32]

# Full-scale magnitude of the integer sample formats devices hand back
_FULL_SCALE = {np.dtype(np.int16): 32768.0, np.dtype(np.int32): 2147483648.0}


class AudioOutputStream(ABC):
    samplerate: int

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def write(self, data: Samples) -> None:
        """Hand float32 samples in [-1.0, 1.0] to the device without blocking."""


class AudioInputStream(ABC):
    samplerate: int

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def read(self, num_samples: int) -> Samples | None:
        """Next captured block, or None if the device has nothing yet.

        ``num_samples`` is a hint; backends return whatever block size the
        device delivered.
        """


class LatestFrameWriter:
    """Feeds frames to a blocking device write on its own thread.

    ``offer`` never blocks. A frame offered while an older one is still
    waiting replaces it, so a slow device drops audio instead of letting
    delay build up.
    """

    def __init__(self, name: str, sink: Callable[[Samples], None]) -> None:
        self.name = name
        self.replaced = 0
        self._sink = sink
        self._pending: Samples | None = None
        self._closed = False
        self._wakeup = threading.Condition()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._closed = False
        self._thread = threading.Thread(
            target=self._run, name=f"audio-out:{self.name}", daemon=True
        )
        self._thread.start()

    def offer(self, data: Samples) -> None:
        with self._wakeup:
            if self._closed:
                return
            if self._pending is not None:
                self.replaced += 1
                if self.replaced % 100 == 1:
                    logger.debug(f"Output {self.name} replaced={self.replaced}")
            self._pending = data
            self._wakeup.notify()

    def close(self, timeout: float = 1.0) -> None:
        with self._wakeup:
            self._closed = True
            self._pending = None
            self._wakeup.notify()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while True:
            with self._wakeup:
                while self._pending is None and not self._closed:
                    self._wakeup.wait()
                if self._closed:
                    return
                data, self._pending = self._pending, None
            self._sink(data)


def to_float32(block: npt.NDArray[Any], channels: int = 1) -> Samples:
    """First channel of a decoded block, scaled into [-1.0, 1.0].

    Accepts planar ``(channels, samples)`` blocks as well as packed ones,
    where every row holds interleaved samples.
    """
    if block.ndim > 1 and block.shape[0] > 1:
        first = block[0]
    else:
        first = block.reshape(-1)[::channels]
    return first.astype(np.float32) / _FULL_SCALE.get(first.dtype, 1.0)


def get_backend() -> str:
    """Name of the backend module used on this platform."""
    return "pulse" if sys.platform == "linux" else "portaudio"


def _stream_type(kind: str) -> type[Any]:
    # Imported on first use so only the platform's audio library is loaded
    module = importlib.import_module(f"{__package__}.backend_{get_backend()}")
    return module.STREAMS[kind]


def create_output_stream(
    stream_name: str, samplerate: int = 16000, channels: int = 1
) -> AudioOutputStream:
    """Unstarted playback stream; ``stream_name`` is what the mixer shows."""
    return _stream_type("output")(stream_name, samplerate, channels)


def create_input_stream(
    stream_name: str, samplerate: int = 16000, channels: int = 1
) -> AudioInputStream:
    """Unstarted capture stream; ``stream_name`` is what the mixer shows."""
    return _stream_type("input")(stream_name, samplerate, channels)
