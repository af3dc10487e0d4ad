"""Tests for voice sample quantization and resampling."""

from __future__ import annotations

import numpy as np
from hypothesis import given, settings
from hypothesis import strategies as st

from tank_talk.common.audio import compress, decompress, resample, rms

STEP = 1 / 32767


class TestCompress:
    def test_full_scale(self) -> None:
        data = compress(np.array([1.0, -1.0, 0.0], dtype=np.float32))
        assert data.dtype == np.int16
        assert list(data) == [32767, -32767, 0]

    def test_floor_not_round(self) -> None:
        # 0.9999 * 32767 = 32763.7 -> 32763
        assert compress(np.array([0.9999], dtype=np.float32))[0] == 32763

    def test_out_of_range_is_clamped(self) -> None:
        data = compress(np.array([2.0, -2.0], dtype=np.float32))
        assert list(data) == [32767, -32768]

    def test_decompress_scale(self) -> None:
        pcm = decompress(np.array([32767, -32767, 0], dtype=np.int16))
        assert pcm.dtype == np.float32
        np.testing.assert_allclose(pcm, [1.0, -1.0, 0.0])

    @given(
        st.lists(
            st.floats(min_value=-1.0, max_value=1.0, allow_nan=False, width=32),
            min_size=1,
            max_size=256,
        )
    )
    @settings(max_examples=100)
    def test_roundtrip_within_one_step(self, values: list[float]) -> None:
        pcm = np.array(values, dtype=np.float32)
        restored = decompress(compress(pcm))
        assert np.all(np.abs(restored - pcm) <= STEP + 1e-6)


class TestRms:
    def test_silence(self) -> None:
        assert rms(np.zeros(1024, dtype=np.float32)) == 0.0

    def test_empty(self) -> None:
        assert rms(np.zeros(0, dtype=np.float32)) == 0.0

    def test_constant(self) -> None:
        assert abs(rms(np.full(100, 0.5, dtype=np.float32)) - 0.5) < 1e-6

    def test_sine(self) -> None:
        t = np.arange(16000) / 16000
        pcm = np.sin(2 * np.pi * 440 * t).astype(np.float32)
        assert abs(rms(pcm) - 1 / np.sqrt(2)) < 1e-3


class TestResample:
    def test_same_rate_is_identity(self) -> None:
        pcm = np.ones(10, dtype=np.float32)
        assert resample(pcm, 16000, 16000) is pcm

    def test_length_scales_with_rate(self) -> None:
        pcm = np.zeros(1024, dtype=np.float32)
        assert len(resample(pcm, 16000, 48000)) == 3072
        assert len(resample(pcm, 16000, 8000)) == 512

    def test_linear_interpolation(self) -> None:
        pcm = np.array([0.0, 1.0], dtype=np.float32)
        out = resample(pcm, 1, 2)
        np.testing.assert_allclose(out[:3], [0.0, 0.5, 1.0])
