"""Linear int16 quantization for voice frames.

This is a plain float32 -> int16 scaling, not a perceptual codec. Frames
are small enough that the 2x size reduction is all we need.
"""

import numpy as np
import numpy.typing as npt

from .constants import INT16_SCALE


def compress(pcm: npt.NDArray[np.float32]) -> npt.NDArray[np.int16]:
    """Quantize float samples in [-1.0, 1.0] to int16.

    Each sample becomes floor(sample * 32767), clamped to [-32768, 32767].
    """
    scaled = np.floor(np.asarray(pcm, dtype=np.float64) * INT16_SCALE)
    return np.clip(scaled, -32768, 32767).astype(np.int16)


def decompress(data: npt.NDArray[np.int16]) -> npt.NDArray[np.float32]:
    """Inverse of compress: scale int16 samples back by 1/32767."""
    return (np.asarray(data, dtype=np.float32) / INT16_SCALE).astype(np.float32)


def rms(pcm: npt.NDArray[np.float32]) -> float:
    """Root-mean-square energy of a block (0.0 for an empty block)."""
    if len(pcm) == 0:
        return 0.0
    samples = np.asarray(pcm, dtype=np.float64)
    return float(np.sqrt(np.mean(samples * samples)))


def resample(
    pcm: npt.NDArray[np.float32], from_rate: int, to_rate: int
) -> npt.NDArray[np.float32]:
    """Linear resampling, used when a frame's rate differs from the device."""
    if from_rate == to_rate or len(pcm) == 0:
        return pcm
    out_len = max(1, int(round(len(pcm) * to_rate / from_rate)))
    src_t = np.arange(len(pcm), dtype=np.float64) / from_rate
    dst_t = np.arange(out_len, dtype=np.float64) / to_rate
    return np.interp(dst_t, src_t, pcm).astype(np.float32)
