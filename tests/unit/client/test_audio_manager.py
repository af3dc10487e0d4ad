"""Tests for microphone error classification and the voice chat flows."""

from __future__ import annotations

import errno

import numpy as np
import pytest

from tank_talk.client.audio_capture import AudioCapture
from tank_talk.client.audio_manager import (
    AudioManager,
    MicrophoneError,
    MicrophoneErrorKind,
    classify_device_error,
)
from tank_talk.client.audio_playback import AudioPlayback
from tank_talk.common.protocol import (
    AudioFrame,
    MessageType,
    deserialize_audio_frame,
)

from tests.conftest import FakeClock


class FakeCapture(AudioCapture):
    def __init__(self, error: BaseException | None = None) -> None:
        super().__init__(lambda s, ts: None)
        self.error = error
        self.starts = 0

    def start(self) -> None:
        self.starts += 1
        if self.error is not None:
            raise self.error

    def stop(self) -> None:
        pass


class FakePlayback(AudioPlayback):
    def __init__(self) -> None:
        super().__init__()
        self.played: list[AudioFrame] = []
        self.removed: list[int] = []
        self.closed = False

    def play(self, frame: AudioFrame) -> bool:
        self.played.append(frame)
        return True

    def remove_player(self, player_id: int) -> None:
        self.removed.append(player_id)

    def close(self) -> None:
        self.closed = True


class TestClassifyDeviceError:
    @pytest.mark.parametrize(
        "exc,kind",
        [
            (PermissionError("nope"), MicrophoneErrorKind.PERMISSION_DENIED),
            (FileNotFoundError("/dev/snd"), MicrophoneErrorKind.NO_DEVICE),
            (OSError(errno.EBUSY, "busy"), MicrophoneErrorKind.DEVICE_BUSY),
            (OSError(-errno.ENODEV, "x"), MicrophoneErrorKind.NO_DEVICE),
            (OSError(errno.EINVAL, "x"), MicrophoneErrorKind.UNSUPPORTED),
            (RuntimeError("Error querying device -1"), MicrophoneErrorKind.NO_DEVICE),
            (
                RuntimeError("Device unavailable [PaErrorCode -9985]"),
                MicrophoneErrorKind.DEVICE_BUSY,
            ),
            (RuntimeError("Invalid sample rate"), MicrophoneErrorKind.UNSUPPORTED),
            (RuntimeError("something odd"), MicrophoneErrorKind.UNKNOWN),
        ],
    )
    def test_kinds(self, exc: BaseException, kind: MicrophoneErrorKind) -> None:
        assert classify_device_error(exc).kind == kind

    def test_messages(self) -> None:
        error = MicrophoneError(MicrophoneErrorKind.PERMISSION_DENIED, "x")
        assert error.message == "Microphone permission denied"
        unknown = MicrophoneError(MicrophoneErrorKind.UNKNOWN, "odd")
        assert unknown.message == "Audio error: odd"

    def test_already_classified(self) -> None:
        error = MicrophoneError(MicrophoneErrorKind.NO_DEVICE)
        assert classify_device_error(error) is error


class TestAudioManager:
    def setup_method(self) -> None:
        self.sent: list[tuple[MessageType, bytes]] = []
        self.clock = FakeClock()

    def make(self, error: BaseException | None = None) -> AudioManager:
        return AudioManager(
            lambda t, p: self.sent.append((t, p)),
            capture=FakeCapture(error),
            playback=FakePlayback(),
            clock=self.clock,
        )

    def test_init_starts_transmitting(self) -> None:
        manager = self.make()
        assert manager.init()
        assert manager.is_initialized
        assert manager.is_transmitting
        assert manager.status == "Transmitting"
        assert self.sent == [(MessageType.AUDIO_STATE_CHANGED, b"\x01")]

    def test_init_failure_sets_error(self) -> None:
        manager = self.make(PermissionError("denied"))
        assert not manager.init()
        assert manager.error is not None
        assert manager.error.kind == MicrophoneErrorKind.PERMISSION_DENIED
        assert manager.status == "Error: Microphone permission denied (r to retry)"
        assert not manager.is_transmitting
        assert self.sent == []

    def test_retry_after_failure(self) -> None:
        manager = self.make(PermissionError("denied"))
        manager.init()
        assert isinstance(manager.capture, FakeCapture)
        manager.capture.error = None
        assert manager.retry()
        assert manager.error is None
        assert manager.is_transmitting

    def test_toggle_microphone(self) -> None:
        manager = self.make()
        manager.init()
        manager.toggle_microphone()
        assert not manager.is_transmitting
        assert manager.status == "Paused"
        assert self.sent[-1] == (MessageType.AUDIO_STATE_CHANGED, b"\x00")
        manager.toggle_microphone()
        assert manager.is_transmitting

    def test_toggle_mute(self) -> None:
        manager = self.make()
        manager.init()
        manager.toggle_mute()
        assert manager.is_muted
        assert manager.capture.is_muted
        assert manager.status == "Muted"

    def test_captured_frames_sent_only_while_transmitting(self) -> None:
        manager = self.make()
        samples = np.ones(8, dtype=np.int16)

        manager.capture.on_frame(samples, 1234)
        assert self.sent == []

        manager.init()
        self.sent.clear()
        manager.capture.on_frame(samples, 1234)
        [(msg_type, payload)] = self.sent
        assert msg_type == MessageType.AUDIO_STREAM
        frame = deserialize_audio_frame(payload)
        assert frame.timestamp_ms == 1234
        assert frame.sample_rate == 16000

    def test_incoming_frames_played(self) -> None:
        manager = self.make()
        frame = AudioFrame(np.ones(8, dtype=np.int16), player_id=3)
        for _ in range(5):
            manager.on_audio_stream(frame)
        self.clock.advance(1.0)
        manager.on_audio_stream(frame)

        assert isinstance(manager.playback, FakePlayback)
        assert len(manager.playback.played) == 6
        assert manager.packets_per_second == 6
        assert manager.latency_ms is None

    def test_volumes(self) -> None:
        manager = self.make()
        manager.set_output_volume(3.0)
        manager.set_mic_volume(0.5)
        assert manager.output_volume == 2.0
        assert manager.mic_volume == 0.5

    def test_player_left_and_destroy(self) -> None:
        manager = self.make()
        manager.init()
        manager.on_player_left(3)
        manager.destroy()
        assert isinstance(manager.playback, FakePlayback)
        assert manager.playback.removed == [3]
        assert manager.playback.closed
        assert not manager.is_transmitting
