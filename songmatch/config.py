"""
Fingerprinting configuration.

Every tunable of the pipeline lives on one immutable ``FingerprintConfig``
value that is passed explicitly to each stage. Hash values are only
comparable between fingerprints produced with the same ``version``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigError

# ---------- CONFIG ---------- #

# Bump whenever the hashing scheme itself changes.
PIPELINE_VERSION = 1

DEFAULT_SAMPLE_RATE = 44100
DEFAULT_FRAME_SIZE = 1024

# Fields that change the landmark hashes or their time offsets.
# Matching thresholds are deliberately left out: they can be retuned
# without re-ingesting the catalog.
_FINGERPRINT_FIELDS = (
    "sample_rate", "frame_size", "ingest_hop", "query_hop",
    "min_freq_hz", "max_freq_hz", "peaks_per_frame", "min_separation",
    "min_prominence", "prominence_neighborhood", "min_magnitude",
    "relative_floor", "fanout", "min_time_delta_ms", "max_time_delta_ms",
    "time_quantum_ms", "use_magnitude_ratio", "magnitude_ratio_levels",
    "dedup_bucket_ms",
)


@dataclass(frozen=True)
class FingerprintConfig:
    # audio
    sample_rate: int = DEFAULT_SAMPLE_RATE
    frame_size: int = DEFAULT_FRAME_SIZE
    ingest_hop: int = 512
    query_hop: int = 512
    ingest_max_seconds: Optional[float] = None  # None -> fingerprint the full track

    # peaks
    min_freq_hz: float = 40.0
    max_freq_hz: float = 4000.0
    peaks_per_frame: int = 5
    min_separation: int = 2
    min_prominence: float = 1.5
    prominence_neighborhood: int = 5
    min_magnitude: float = 1e-3
    relative_floor: float = 0.05

    # landmarks
    fanout: int = 10
    min_time_delta_ms: float = 10.0
    max_time_delta_ms: float = 2000.0
    time_quantum_ms: float = 10.0
    use_magnitude_ratio: bool = False
    magnitude_ratio_levels: int = 4
    dedup_bucket_ms: int = 100

    # matching
    min_hash_matches: int = 10
    min_hash_match_ratio: float = 0.01
    offset_bucket_ms: int = 100
    min_aligned_count: int = 5
    min_confidence: float = 0.1
    spread_weight: float = 0.25
    count_bonus_weight: float = 0.1
    count_bonus_saturation: int = 500
    relative_confidence_floor: float = 0.7
    relative_aligned_floor: float = 0.5
    max_results: int = 3

    _version: str = field(default="", init=False, repr=False, compare=False)

    def __post_init__(self):
        self._validate()
        object.__setattr__(self, "_version", self._compute_version())

    def _validate(self) -> None:
        if self.sample_rate <= 0:
            raise ConfigError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.frame_size < 4 or self.frame_size & (self.frame_size - 1):
            raise ConfigError(f"frame_size must be a power of two, got {self.frame_size}")
        for name in ("ingest_hop", "query_hop"):
            hop = getattr(self, name)
            if hop <= 0 or hop > self.frame_size:
                raise ConfigError(f"{name} must be in (0, frame_size], got {hop}")
        nyquist = self.sample_rate / 2
        if not 0 <= self.min_freq_hz < self.max_freq_hz <= nyquist:
            raise ConfigError(
                f"frequency band {self.min_freq_hz}-{self.max_freq_hz} Hz "
                f"must lie inside 0-{nyquist} Hz"
            )
        if self.peaks_per_frame < 1 or self.fanout < 1:
            raise ConfigError("peaks_per_frame and fanout must be >= 1")
        if not 0 < self.min_time_delta_ms <= self.max_time_delta_ms:
            raise ConfigError("time-delta window must satisfy 0 < min <= max")
        if self.time_quantum_ms <= 0 or self.dedup_bucket_ms <= 0 or self.offset_bucket_ms <= 0:
            raise ConfigError("quantization steps must be positive")
        if self.ingest_max_seconds is not None and self.ingest_max_seconds <= 0:
            raise ConfigError("ingest_max_seconds must be positive or None")
        if self.min_hash_matches < 0 or self.min_aligned_count < 0:
            raise ConfigError("match-count thresholds must be >= 0")
        for name in ("min_confidence", "min_hash_match_ratio",
                     "relative_confidence_floor", "relative_aligned_floor"):
            if not 0 <= getattr(self, name) <= 1:
                raise ConfigError(f"{name} must be in [0, 1], got {getattr(self, name)}")
        if self.spread_weight < 0 or self.count_bonus_weight < 0:
            raise ConfigError("confidence weights must be >= 0")
        if self.count_bonus_saturation < 1:
            raise ConfigError(f"count_bonus_saturation must be >= 1, got {self.count_bonus_saturation}")
        if self.max_results < 1:
            raise ConfigError("max_results must be >= 1")

    def _compute_version(self) -> str:
        payload = {}
        for name in _FINGERPRINT_FIELDS:
            value = getattr(self, name)
            # 40 and 40.0 from YAML must give the same tag
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                value = float(value)
            payload[name] = value
        digest = hashlib.sha1(json.dumps(payload, sort_keys=True).encode()).hexdigest()
        return f"v{PIPELINE_VERSION}-{digest[:8]}"

    @property
    def version(self) -> str:
        """Tag stored with every fingerprinted track."""
        return self._version

    @property
    def hash_seed(self) -> int:
        return PIPELINE_VERSION

    @property
    def bin_hz(self) -> float:
        return self.sample_rate / self.frame_size

    @property
    def min_bin(self) -> int:
        return max(1, int(round(self.min_freq_hz / self.bin_hz)))

    @property
    def max_bin(self) -> int:
        return min(self.frame_size // 2 - 1, int(round(self.max_freq_hz / self.bin_hz)))

    def replace(self, **overrides) -> "FingerprintConfig":
        return dataclasses.replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in dataclasses.fields(self) if f.init}


DEFAULT_CONFIG = FingerprintConfig()


def load_config(config_path: Union[str, Path, None]) -> FingerprintConfig:
    """Build a config from a YAML file; missing keys keep their defaults."""
    if config_path is None:
        return DEFAULT_CONFIG
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read config {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config {config_path} must be a mapping")

    known = {f.name for f in dataclasses.fields(FingerprintConfig) if f.init}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys in {config_path}: {', '.join(unknown)}")
    try:
        return FingerprintConfig(**data)
    except TypeError as e:
        raise ConfigError(str(e)) from e
