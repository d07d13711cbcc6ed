from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class SpectralPeak:
    """A local maximum of one frame's magnitude spectrum."""
    frequency_bin: int
    frequency_hz: float
    magnitude: float
    time_offset_ms: int
    frame_index: int


@dataclass(frozen=True)
class Landmark:
    """
    A hashed anchor/target peak pair.

    Attributes:
        hash: unsigned 32-bit hash of the pair
        time_offset_ms: absolute position of the anchor in the source audio
        anchor_freq: frequency bin of the (earlier) anchor peak
        target_freq: frequency bin of the (later) target peak
        delta_time: target time minus anchor time, in milliseconds
        strength: anchor magnitude + target magnitude
    """
    hash: int
    time_offset_ms: int
    anchor_freq: int
    target_freq: int
    delta_time: float
    strength: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TrackMetadata:
    title: str
    artist: str = "Unknown Artist"
    album: str = ""
    duration_seconds: float = 0.0
    filename: str = ""


@dataclass(frozen=True)
class TrackRecord:
    track_id: str
    title: str
    artist: str
    album: str
    duration_seconds: float
    filename: str
    fingerprint_count: int
    fingerprint_version: str
    date_added: str
    fingerprints: Tuple[Landmark, ...] = ()

    def to_dict(self, include_fingerprints: bool = False) -> Dict[str, Any]:
        data = {
            "track_id": self.track_id,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "duration": self.duration_seconds,
            "filename": self.filename,
            "fingerprint_count": self.fingerprint_count,
            "fingerprint_version": self.fingerprint_version,
            "date_added": self.date_added,
        }
        if include_fingerprints:
            data["fingerprints"] = [lm.to_dict() for lm in self.fingerprints]
        return data


@dataclass
class MatchCandidate:
    track_id: str
    aligned_count: int
    total_hash_matches: int
    confidence: float
    best_offset_ms: int
    title: Optional[str] = None
    artist: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


STATUS_MATCH = "match"
STATUS_NO_MATCH = "no_match"
STATUS_INSUFFICIENT_DATA = "insufficient_data"
STATUS_EMPTY_AUDIO = "empty_audio"


@dataclass
class RecognitionResult:
    candidates: List[MatchCandidate]
    status: str
    sample_duration: float
    fingerprint_count: int
    hash_matches: int = 0
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def best(self) -> Optional[MatchCandidate]:
        return self.candidates[0] if self.candidates else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "candidates": [c.to_dict() for c in self.candidates],
            "sample_duration": self.sample_duration,
            "fingerprint_count": self.fingerprint_count,
            "hash_matches": self.hash_matches,
            "timings": dict(self.timings),
        }
