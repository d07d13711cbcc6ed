"""
SongMatch - acoustic fingerprinting and song recognition.

The pipeline follows the classic Shazam algorithm:
1. Cut the audio into Hann-windowed frames and take their magnitude spectra
2. Pick the most prominent spectral peaks of every frame
3. Pair peaks into hashed landmarks (anchor, target, time delta)
4. Match query landmarks against the catalog by offset-histogram alignment
"""

from .config import DEFAULT_CONFIG, PIPELINE_VERSION, FingerprintConfig, load_config
from .db import InMemoryFingerprintStore, SQLiteFingerprintStore
from .errors import (
    ConfigError,
    DecodeError,
    EmptyAudioError,
    InsufficientDataError,
    SongMatchError,
    StorageError,
    TrackNotFoundError,
)
from .models import Landmark, MatchCandidate, RecognitionResult, SpectralPeak, TrackMetadata, TrackRecord
from .recognizer import SongRecognizer

__all__ = [
    'DEFAULT_CONFIG', 'PIPELINE_VERSION', 'FingerprintConfig', 'load_config',
    'InMemoryFingerprintStore', 'SQLiteFingerprintStore',
    'ConfigError', 'DecodeError', 'EmptyAudioError', 'InsufficientDataError',
    'SongMatchError', 'StorageError', 'TrackNotFoundError',
    'Landmark', 'MatchCandidate', 'RecognitionResult', 'SpectralPeak', 'TrackMetadata', 'TrackRecord',
    'SongRecognizer',
]
