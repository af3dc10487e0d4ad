"""Tests for microphone capture and per-player playback."""

from __future__ import annotations

from typing import Any

import numpy as np
import numpy.typing as npt
import pytest

from tank_talk.audio.backend import AudioInputStream, AudioOutputStream
from tank_talk.client.audio_capture import AudioCapture
from tank_talk.client.audio_playback import AudioPlayback
from tank_talk.common.protocol import AudioFrame


class FakeOutputStream(AudioOutputStream):
    def __init__(self, stream_name: str, samplerate: int = 16000, channels: int = 1):
        self.stream_name = stream_name
        self.samplerate = samplerate
        self.started = False
        self.stopped = False
        self.written: list[npt.NDArray[np.float32]] = []

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def write(self, data: npt.NDArray[np.float32]) -> None:
        self.written.append(data)


class FailingInputStream(AudioInputStream):
    samplerate = 16000

    def start(self) -> None:
        raise PermissionError("Permission denied")

    def stop(self) -> None:
        pass

    def read(self, num_samples: int) -> npt.NDArray[np.float32] | None:
        return None


def tone(level: float, size: int = 1024) -> npt.NDArray[np.float32]:
    return np.full(size, level, dtype=np.float32)


class TestProcessBlock:
    def setup_method(self) -> None:
        self.frames: list[tuple[npt.NDArray[np.int16], int]] = []
        self.capture = AudioCapture(lambda s, ts: self.frames.append((s, ts)))

    def test_voiced_block_is_sent(self) -> None:
        assert self.capture.process_block(tone(0.5))
        [(samples, timestamp_ms)] = self.frames
        assert samples.dtype == np.int16
        assert len(samples) == 1024
        assert samples[0] == 16383
        assert timestamp_ms > 0
        assert self.capture.frames_sent == 1

    def test_silence_is_suppressed(self) -> None:
        assert not self.capture.process_block(tone(0.005))
        assert self.frames == []
        assert self.capture.frames_suppressed == 1
        assert self.capture.last_level == pytest.approx(0.005)

    def test_gain_applies_before_threshold(self) -> None:
        self.capture.set_gain(2.0)
        assert self.capture.process_block(tone(0.006))

    def test_gain_is_clamped(self) -> None:
        self.capture.set_gain(5.0)
        assert self.capture.gain == 2.0
        self.capture.set_gain(-1.0)
        assert self.capture.gain == 0.0

    def test_muted_sends_nothing(self) -> None:
        self.capture.set_muted(True)
        assert not self.capture.process_block(tone(0.5))
        assert self.frames == []


class TestCaptureStart:
    def test_device_error_propagates(self) -> None:
        capture = AudioCapture(
            lambda s, ts: None, stream_factory=lambda **kw: FailingInputStream()
        )
        with pytest.raises(PermissionError):
            capture.start()
        assert not capture.running
        capture.stop()


class TestPlayback:
    def setup_method(self) -> None:
        self.streams: list[FakeOutputStream] = []

        def factory(**kwargs: Any) -> FakeOutputStream:
            stream = FakeOutputStream(**kwargs)
            self.streams.append(stream)
            return stream

        self.playback = AudioPlayback(stream_factory=factory)

    def frame(self, player_id: int, sample_rate: int = 16000) -> AudioFrame:
        return AudioFrame(
            np.full(256, 16384, dtype=np.int16),
            sample_rate=sample_rate,
            player_id=player_id,
            player_name=f"Tank{player_id}",
        )

    def test_one_stream_per_player(self) -> None:
        assert self.playback.play(self.frame(1))
        assert self.playback.play(self.frame(1))
        assert self.playback.play(self.frame(2))

        assert [s.stream_name for s in self.streams] == ["player:Tank1", "player:Tank2"]
        assert all(s.started for s in self.streams)
        assert len(self.streams[0].written) == 2
        assert self.playback.frames_played == 3

    def test_volume(self) -> None:
        self.playback.set_volume(0.5)
        self.playback.play(self.frame(1))
        [pcm] = self.streams[0].written
        assert pcm[0] == pytest.approx(0.25, abs=1e-4)

    def test_volume_clipped(self) -> None:
        self.playback.set_volume(2.0)
        frame = self.frame(1)
        frame.samples = np.full(16, 32767, dtype=np.int16)
        self.playback.play(frame)
        assert self.streams[0].written[0].max() == 1.0

    def test_resampled_to_device_rate(self) -> None:
        self.playback.play(self.frame(1, sample_rate=8000))
        assert len(self.streams[0].written[0]) == 512

    def test_failure_is_not_raised(self) -> None:
        def broken(**kwargs: Any) -> FakeOutputStream:
            raise OSError("no output device")

        playback = AudioPlayback(stream_factory=broken)
        assert not playback.play(self.frame(1))
        assert playback.frames_failed == 1

    def test_remove_player_and_close(self) -> None:
        self.playback.play(self.frame(1))
        self.playback.play(self.frame(2))
        self.playback.remove_player(1)
        assert self.streams[0].stopped
        assert not self.streams[1].stopped
        self.playback.close()
        assert self.streams[1].stopped
