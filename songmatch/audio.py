"""
PCM decoding adapters and sample-buffer helpers.

Decoders are injected into the recognizer, so the core can run on an
in-memory synthetic decoder in tests and on ffmpeg in production.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import librosa
import numpy as np
import soundfile as sf

from .base import DecodedAudio, Decoder
from .config import DEFAULT_SAMPLE_RATE
from .errors import DecodeError, EmptyAudioError

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ('.mp3', '.wav', '.m4a', '.ogg', '.aac', '.flac', '.webm', '.mp4', '.aiff')


def to_mono(signal: np.ndarray) -> np.ndarray:
    """Fold (num_samples, num_channels) audio down to one float32 channel."""
    signal = np.asarray(signal)
    if signal.ndim > 1:
        signal = np.mean(signal, axis=1)
    return signal.astype(np.float32, copy=False)


def resample(signal: np.ndarray, orig_sr: int, target_sr: int) -> np.ndarray:
    """Only resample if needed."""
    if orig_sr == target_sr or len(signal) == 0:
        return signal.astype(np.float32, copy=False)
    return librosa.resample(signal.astype(np.float32), orig_sr=orig_sr, target_sr=target_sr).astype(np.float32)


def _finish(samples: np.ndarray, sample_rate: int, source: str) -> DecodedAudio:
    if samples.size == 0:
        raise EmptyAudioError(f"No audio samples decoded from {source}")
    return DecodedAudio(samples, sample_rate, len(samples) / float(sample_rate))


# ============================================================================
# Decoders
# ============================================================================

def find_ffmpeg() -> Optional[str]:
    """Return the ffmpeg binary path, checking PATH and common locations."""
    found = shutil.which("ffmpeg")
    if found:
        return found
    for candidate in (
        "/usr/local/bin/ffmpeg",
        "/opt/homebrew/bin/ffmpeg",
        "/usr/bin/ffmpeg",
    ):
        if os.path.isfile(candidate):
            return candidate
    return None


class FFmpegDecoder(Decoder):
    """Decode any format ffmpeg understands to mono f32le at ``sample_rate``."""

    def __init__(self, sample_rate: int = DEFAULT_SAMPLE_RATE, ffmpeg_path: Optional[str] = None,
                 timeout: float = 120.0):
        self.sample_rate = sample_rate
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout

    def decode(self, file_path: Union[str, Path]) -> DecodedAudio:
        ffmpeg_bin = self.ffmpeg_path or find_ffmpeg()
        if not ffmpeg_bin:
            raise DecodeError("ffmpeg not found, cannot decode audio")
        if not Path(file_path).is_file():
            raise DecodeError(f"Audio file not found: {file_path}")

        cmd = [
            ffmpeg_bin,
            "-nostdin",
            "-v", "error",
            "-i", str(file_path),
            "-ar", str(self.sample_rate),
            "-ac", "1",
            "-f", "f32le",
            "-",
        ]
        try:
            proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                  timeout=self.timeout, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise DecodeError(f"ffmpeg failed on {file_path}: {e}") from e

        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            raise DecodeError(f"ffmpeg exited with {proc.returncode} on {file_path}: {stderr}")

        samples = np.frombuffer(proc.stdout, dtype="<f4").astype(np.float32)
        return _finish(samples, self.sample_rate, str(file_path))


class SoundFileDecoder(Decoder):
    """Decode with libsndfile (wav/flac/ogg/mp3) and resample with librosa."""

    def __init__(self, sample_rate: int = DEFAULT_SAMPLE_RATE):
        self.sample_rate = sample_rate

    def decode(self, file_path: Union[str, Path]) -> DecodedAudio:
        try:
            signal, sr = sf.read(str(file_path), dtype="float32", always_2d=False)
        except (RuntimeError, OSError, sf.SoundFileError) as e:
            raise DecodeError(f"Could not decode {file_path}: {e}") from e

        samples = resample(to_mono(signal), sr, self.sample_rate)
        return _finish(samples, self.sample_rate, str(file_path))


class InMemoryDecoder(Decoder):
    """Serves pre-registered sample buffers, keyed by path."""

    def __init__(self, sample_rate: int = DEFAULT_SAMPLE_RATE):
        self.sample_rate = sample_rate
        self._buffers: Dict[str, np.ndarray] = {}

    def register(self, file_path: Union[str, Path], samples: np.ndarray, sample_rate: Optional[int] = None) -> None:
        sr = sample_rate or self.sample_rate
        self._buffers[str(file_path)] = resample(to_mono(samples), sr, self.sample_rate)

    def decode(self, file_path: Union[str, Path]) -> DecodedAudio:
        try:
            samples = self._buffers[str(file_path)]
        except KeyError:
            raise DecodeError(f"No in-memory audio registered for {file_path}") from None
        return _finish(samples, self.sample_rate, str(file_path))


def default_decoder(sample_rate: int = DEFAULT_SAMPLE_RATE) -> Decoder:
    """ffmpeg when it is installed, libsndfile otherwise."""
    if find_ffmpeg():
        return FFmpegDecoder(sample_rate)
    logger.info("ffmpeg not found, falling back to soundfile decoding")
    return SoundFileDecoder(sample_rate)


# ============================================================================
# Sample buffer helpers
# ============================================================================

def select_segments(samples: np.ndarray, sample_rate: int,
                    max_seconds: Optional[float]) -> List[Tuple[int, np.ndarray]]:
    """
    Reduce a long track to beginning + middle + end segments.

    Returns:
        List of (start_sample, segment). A track no longer than
        ``max_seconds`` (or any track when ``max_seconds`` is None) comes
        back as a single segment starting at 0.
    """
    total = len(samples)
    if max_seconds is None or total <= int(max_seconds * sample_rate):
        return [(0, samples)]

    seg_len = int(max_seconds * sample_rate / 3)
    starts = [0, (total - seg_len) // 2, total - seg_len]
    return [(start, samples[start:start + seg_len]) for start in starts]


def cut_audio(signal: np.ndarray, sample_rate: int, clip_length_sec: float,
              start_sec: Optional[float] = None, seed: int = 42) -> np.ndarray:
    """Cut a clip; a random (seeded) start is used when ``start_sec`` is None."""
    total_samples = len(signal)
    clip_samples = int(clip_length_sec * sample_rate)
    if clip_samples >= total_samples:
        return signal
    if start_sec is None:
        rng = np.random.default_rng(seed)
        start = int(rng.integers(0, total_samples - clip_samples))
    else:
        start = min(int(start_sec * sample_rate), total_samples - clip_samples)
    return signal[start:start + clip_samples]


def inject_noise(signal: np.ndarray, snr_db: float, seed: Optional[int] = None) -> np.ndarray:
    """
    Add white Gaussian noise to `signal` to get the desired SNR in dB.
    Assumes `signal` is a 1D float numpy array.
    """
    signal = signal.astype(np.float32)
    signal_power = np.mean(signal ** 2)

    if signal_power == 0:
        return signal

    noise_power = signal_power / (10 ** (snr_db / 10))
    rng = np.random.default_rng(seed)
    noise = rng.normal(0.0, np.sqrt(noise_power), size=signal.shape)
    return (signal + noise).astype(np.float32)
