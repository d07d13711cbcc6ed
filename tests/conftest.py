import io

import numpy as np
import pytest
import soundfile as sf
from scipy.signal import chirp

from songmatch import DEFAULT_CONFIG, InMemoryFingerprintStore, SongRecognizer, TrackMetadata
from songmatch.audio import InMemoryDecoder

SR = 44100


def make_sweep(f0: float, f1: float, duration: float = 10.0, sr: int = SR) -> np.ndarray:
    """Linear sweep plus its second harmonic at half amplitude."""
    t = np.arange(int(duration * sr)) / sr
    y = 0.5 * chirp(t, f0=f0, t1=duration, f1=f1) + 0.25 * chirp(t, f0=2 * f0, t1=duration, f1=2 * f1)
    return y.astype(np.float32)


def excerpt(samples: np.ndarray, start_sec: float, end_sec: float, sr: int = SR) -> np.ndarray:
    return samples[int(start_sec * sr):int(end_sec * sr)]


def wav_bytes(samples: np.ndarray, sr: int = SR) -> bytes:
    buf = io.BytesIO()
    sf.write(buf, samples, sr, format="WAV", subtype="FLOAT")
    return buf.getvalue()


@pytest.fixture
def config():
    return DEFAULT_CONFIG


@pytest.fixture(scope="session")
def track_a():
    """10 s sweep 300 -> 3500 Hz."""
    return make_sweep(300.0, 3500.0)


@pytest.fixture(scope="session")
def track_b():
    """10 s sweep 2500 -> 500 Hz."""
    return make_sweep(2500.0, 500.0)


@pytest.fixture
def store():
    return InMemoryFingerprintStore()


@pytest.fixture
def recognizer(store):
    """Recognizer with an empty in-memory catalog."""
    return SongRecognizer(config=DEFAULT_CONFIG, store=store, decoder=InMemoryDecoder(SR))


@pytest.fixture
def catalog(recognizer, track_a, track_b):
    """Recognizer with Track A and Track B ingested; returns (recognizer, {title: track_id})."""
    ids = {}
    for title, samples in (("Track A", track_a), ("Track B", track_b)):
        record = recognizer.ingest_track(TrackMetadata(title=title, artist="Test"), samples, SR)
        ids[title] = record.track_id
    return recognizer, ids
