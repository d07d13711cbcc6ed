"""
Framing and spectral analysis.

The sample buffer is cut into overlapping frames, each frame is
Hann-windowed and transformed with a real FFT. Frames are computed in
vectorized blocks but handed out lazily, one (time_offset_ms, spectrum)
pair at a time, in time order.
"""

from functools import lru_cache
from typing import Iterator, Optional, Tuple

import numpy as np
import scipy.fft
import scipy.signal

from .config import FingerprintConfig

# Frames transformed per FFT call.
BLOCK_FRAMES = 256


@lru_cache(maxsize=8)
def hann_window(n: int) -> np.ndarray:
    """Symmetric Hann window: w[i] = 0.5 * (1 - cos(2*pi*i / (n - 1)))."""
    window = scipy.signal.get_window("hann", n, fftbins=False).astype(np.float32)
    window.setflags(write=False)
    return window


def frame_count(num_samples: int, frame_size: int, hop: int) -> int:
    if num_samples < frame_size:
        return 0
    return 1 + (num_samples - frame_size) // hop


def frame_time_ms(start_sample: int, sample_rate: int) -> int:
    return int(round(start_sample * 1000.0 / sample_rate))


def bin_to_hz(frequency_bin: int, config: FingerprintConfig) -> float:
    return frequency_bin * config.bin_hz


def analyze(
    samples: np.ndarray,
    sample_rate: int,
    config: FingerprintConfig,
    hop: Optional[int] = None,
) -> Iterator[Tuple[int, np.ndarray]]:
    """
    Yield (time_offset_ms, magnitude_spectrum) for every full frame.

    Args:
        samples: mono sample buffer
        sample_rate: rate of ``samples``; offsets are computed from it
        config: provides frame_size
        hop: hop size in samples (defaults to ``config.ingest_hop``)

    The spectra have ``frame_size // 2`` bins. A buffer shorter than one
    frame yields nothing.
    """
    frame_size = config.frame_size
    hop = hop or config.ingest_hop
    samples = np.asarray(samples, dtype=np.float32)

    n_frames = frame_count(len(samples), frame_size, hop)
    if n_frames == 0:
        return

    window = hann_window(frame_size)
    n_bins = frame_size // 2
    frames = np.lib.stride_tricks.sliding_window_view(samples, frame_size)[::hop]

    for block_start in range(0, n_frames, BLOCK_FRAMES):
        block = frames[block_start:block_start + BLOCK_FRAMES] * window
        spectra = np.abs(scipy.fft.rfft(block, axis=1))[:, :n_bins].astype(np.float32)
        for i, spectrum in enumerate(spectra):
            frame_index = block_start + i
            yield frame_time_ms(frame_index * hop, sample_rate), spectrum
