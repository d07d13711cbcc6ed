"""
Narrow contracts between the fingerprinting core and its collaborators.

The core depends on three interfaces only:

- ``Decoder`` turns a file into mono PCM samples.
- ``FingerprintStore`` keeps ``hash -> [(track_id, offset)]`` plus track metadata.
- ``BaseSongRecognizer`` is what callers (HTTP service, scripts) talk to.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, NamedTuple, Optional, Tuple, Union

import numpy as np

from .models import Landmark, TrackRecord, RecognitionResult, TrackMetadata

# (track_id, time_offset_ms, hash)
HashHit = Tuple[str, int, int]


class DecodedAudio(NamedTuple):
    samples: np.ndarray
    sample_rate: int
    duration: float


class Decoder(ABC):
    """Produces mono float32 PCM at a fixed sample rate."""

    @abstractmethod
    def decode(self, file_path: Union[str, Path]) -> DecodedAudio:
        """
        Decode an audio file.

        Raises:
            DecodeError: the decoder is unavailable or the input is not audio
            EmptyAudioError: decoding produced zero samples
        """
        pass


class FingerprintStore(ABC):
    """
    Catalog of fingerprinted tracks.

    Implementations must publish a track and its landmarks atomically and
    drop landmarks no later than the track metadata on removal, so the
    matcher never sees a partial or dangling track.
    """

    @abstractmethod
    def add_track(self, record: TrackRecord) -> None:
        """Store ``record`` together with ``record.fingerprints`` in one step."""
        pass

    @abstractmethod
    def lookup_by_hashes(self, hashes: Iterable[int]) -> List[HashHit]:
        """Batch lookup of every stored landmark whose hash is in ``hashes``."""
        pass

    @abstractmethod
    def remove_track(self, track_id: str) -> bool:
        """Remove a track and all of its landmarks. Returns False if unknown."""
        pass

    @abstractmethod
    def get_track(self, track_id: str) -> Optional[TrackRecord]:
        """Track metadata (without landmarks), or None."""
        pass

    @abstractmethod
    def list_tracks(self) -> List[TrackRecord]:
        pass

    @abstractmethod
    def get_fingerprints(self, track_id: str, limit: Optional[int] = None) -> List[Landmark]:
        """Landmarks of a track ordered by time offset."""
        pass

    def count_tracks(self) -> int:
        return len(self.list_tracks())

    def close(self) -> None:
        pass


class BaseSongRecognizer(ABC):
    """
    Abstract base class for song recognition systems.
    """

    @abstractmethod
    def ingest(self, metadata: TrackMetadata, samples: np.ndarray, sample_rate: int,
               track_id: Optional[str] = None) -> int:
        """
        Fingerprint samples and add them to the catalog as one track.

        Returns:
            Number of landmarks stored
        """
        pass

    @abstractmethod
    def recognize(self, samples: np.ndarray, sample_rate: int) -> RecognitionResult:
        """
        Recognize a song from query samples.

        Returns:
            RecognitionResult with a ranked (possibly empty) candidate list
        """
        pass

    @abstractmethod
    def remove_track(self, track_id: str) -> bool:
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of this recognition approach."""
        pass

    @property
    @abstractmethod
    def num_indexed_songs(self) -> int:
        """Return the number of songs currently indexed."""
        pass
