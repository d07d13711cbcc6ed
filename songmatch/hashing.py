import math
from typing import Dict, Iterable, List, Optional, Tuple

import mmh3
import numpy as np

from .config import FingerprintConfig
from .models import Landmark, SpectralPeak
from .peaks import extract_peaks
from .spectral import analyze

# magnitude ratios are bucketed over +-_RATIO_RANGE_DB
_RATIO_RANGE_DB = 24.0


def _quantize_delta(delta_ms: float, quantum_ms: float) -> int:
    """Round half up to the nearest multiple of the time quantum."""
    return int(math.floor(delta_ms / quantum_ms + 0.5))


def _quantize_ratio(mag_low: float, mag_high: float, same_bin: bool, levels: int) -> int:
    """
    Bucket the level difference between the lower- and higher-frequency peak.

    When both peaks share a bin there is no frequency order to rely on, so
    the absolute difference is used.
    """
    ratio_db = 20.0 * math.log10(max(mag_low, 1e-12) / max(mag_high, 1e-12))
    if same_bin:
        ratio_db = abs(ratio_db)
    step = 2 * _RATIO_RANGE_DB / levels
    return int(min(max((ratio_db + _RATIO_RANGE_DB) // step, 0), levels - 1))


def hash_landmark(freq_a: int, freq_b: int, delta_ms: float, config: FingerprintConfig,
                  magnitude_bucket: Optional[int] = None) -> int:
    """
    Unsigned 32-bit MurmurHash3 of one peak pair.

    The two frequencies are ordered (min, max) first, so the hash does not
    depend on which peak acted as anchor.
    """
    lo, hi = (freq_a, freq_b) if freq_a <= freq_b else (freq_b, freq_a)
    key = f"{lo}:{hi}:{_quantize_delta(delta_ms, config.time_quantum_ms)}"
    if magnitude_bucket is not None:
        key += f":{magnitude_bucket}"
    return mmh3.hash(key, seed=config.hash_seed, signed=False)


def generate(peaks: Iterable[SpectralPeak], config: FingerprintConfig,
             hop: Optional[int] = None, sample_rate: Optional[int] = None,
             offset_ms: int = 0) -> List[Landmark]:
    """
    Pair peaks into landmarks.

    Every peak is an anchor. Its targets are the later peaks whose time
    delta lies in [min_time_delta_ms, max_time_delta_ms]; the ``fanout``
    nearest (by delta, then bin) are paired. Pairing is forward-only:
    the anchor is always strictly earlier than the target, on both the
    ingest and the query path, otherwise the two sides would never share
    hashes.

    Args:
        peaks: spectral peaks of one contiguous buffer, any order
        config: fingerprint configuration
        hop: hop size the peaks were analyzed with (default ``config.ingest_hop``)
        sample_rate: rate the peaks were analyzed at (default ``config.sample_rate``)
        offset_ms: added to every anchor offset, for buffers cut out of a longer track

    Returns:
        Deduplicated landmarks sorted by (time_offset_ms, hash)
    """
    hop = hop or config.ingest_hop
    sample_rate = sample_rate or config.sample_rate
    frame_ms = hop * 1000.0 / sample_rate

    ordered = sorted(peaks, key=lambda p: (p.frame_index, p.frequency_bin))
    n_peaks = len(ordered)
    if n_peaks < 2:
        return []

    min_dt, max_dt = config.min_time_delta_ms, config.max_time_delta_ms
    fanout = config.fanout
    use_ratio = config.use_magnitude_ratio
    levels = config.magnitude_ratio_levels

    hash_cache: Dict[Tuple[int, int, float, Optional[int]], int] = {}
    landmarks: List[Landmark] = []
    append = landmarks.append  # local binding is a tiny speed win

    for i in range(n_peaks):
        anchor = ordered[i]
        paired = 0
        j = i + 1
        while j < n_peaks and paired < fanout:
            target = ordered[j]
            j += 1
            delta_ms = (target.frame_index - anchor.frame_index) * frame_ms
            if delta_ms < min_dt:
                continue
            if delta_ms > max_dt:
                break

            f_a, f_b = anchor.frequency_bin, target.frequency_bin
            bucket = None
            if use_ratio:
                if f_a <= f_b:
                    bucket = _quantize_ratio(anchor.magnitude, target.magnitude, f_a == f_b, levels)
                else:
                    bucket = _quantize_ratio(target.magnitude, anchor.magnitude, False, levels)

            key = (f_a, f_b, delta_ms, bucket)
            h = hash_cache.get(key)
            if h is None:
                h = hash_landmark(f_a, f_b, delta_ms, config, bucket)
                hash_cache[key] = h

            append(Landmark(
                hash=h,
                time_offset_ms=anchor.time_offset_ms + offset_ms,
                anchor_freq=f_a,
                target_freq=f_b,
                delta_time=delta_ms,
                strength=anchor.magnitude + target.magnitude,
            ))
            paired += 1

    return deduplicate(landmarks, config.dedup_bucket_ms)


def deduplicate(landmarks: Iterable[Landmark], bucket_ms: int = 100) -> List[Landmark]:
    """
    Collapse landmarks sharing (hash, time bucket) to the strongest one.

    Ties keep the earliest landmark. The result is sorted by
    (time_offset_ms, hash).
    """
    best: Dict[Tuple[int, int], Landmark] = {}
    for lm in landmarks:
        key = (lm.hash, lm.time_offset_ms // bucket_ms)
        kept = best.get(key)
        if kept is None or lm.strength > kept.strength:
            best[key] = lm
    return sorted(best.values(), key=lambda lm: (lm.time_offset_ms, lm.hash))


def fingerprint(samples: np.ndarray, sample_rate: int, config: FingerprintConfig,
                hop: Optional[int] = None, offset_ms: int = 0) -> List[Landmark]:
    """Full pipeline for one contiguous buffer: frames -> peaks -> landmarks."""
    hop = hop or config.ingest_hop
    frames = analyze(samples, sample_rate, config, hop)
    peaks = extract_peaks(frames, config)
    return generate(peaks, config, hop=hop, sample_rate=sample_rate, offset_ms=offset_ms)
