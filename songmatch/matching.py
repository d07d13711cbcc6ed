"""
Query-to-catalog alignment.

All aggregation happens here, in-process, after a single batched
``lookup_by_hashes`` call: the store only has to answer an indexed
lookup.

A genuine match shows up as one dominant bucket in the per-track
histogram of ``catalog_offset - query_offset``: the query is a
contiguous excerpt, so its landmarks agree on a single relative offset.
Spurious hash collisions scatter over many buckets.
"""

import logging
import math
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

import numpy as np

from .base import FingerprintStore, HashHit
from .config import FingerprintConfig
from .models import Landmark, MatchCandidate

logger = logging.getLogger(__name__)

# bucket key -> [(delta_ms, query_time_ms)]
Histogram = Dict[int, List[Tuple[int, int]]]


def _query_index(query_landmarks: Iterable[Landmark]) -> Dict[int, List[int]]:
    """hash -> query anchor times, in time order."""
    index: Dict[int, List[int]] = defaultdict(list)
    for lm in sorted(query_landmarks, key=lambda lm: (lm.time_offset_ms, lm.hash)):
        index[lm.hash].append(lm.time_offset_ms)
    return index


def _group_by_track(rows: Iterable[HashHit]) -> Dict[str, List[Tuple[int, int]]]:
    """track_id -> [(time_offset, hash)], iterated in a fixed order."""
    by_track: Dict[str, List[Tuple[int, int]]] = defaultdict(list)
    for track_id, time_offset, h in sorted(rows):
        by_track[track_id].append((time_offset, h))
    return by_track


def _build_histogram(hits: Sequence[Tuple[int, int]], query_index: Mapping[int, List[int]],
                     bucket_ms: int) -> Histogram:
    histogram: Histogram = {}
    for catalog_time, h in hits:
        for query_time in query_index.get(h, ()):
            delta = catalog_time - query_time
            key = int(math.floor(delta / bucket_ms + 0.5))
            histogram.setdefault(key, []).append((delta, query_time))
    return histogram


def offset_histogram(hits: Sequence[Tuple[int, int]], query_landmarks: Iterable[Landmark],
                     bucket_ms: int = 100) -> Dict[int, int]:
    """
    Diagnostic view of one track's alignment.

    Args:
        hits: (catalog_time_offset, hash) pairs of a single track
        query_landmarks: landmarks of the query
        bucket_ms: histogram bucket width

    Returns:
        bucket centre in ms -> number of agreeing landmark pairs
    """
    histogram = _build_histogram(hits, _query_index(query_landmarks), bucket_ms)
    return {key * bucket_ms: len(pairs) for key, pairs in histogram.items()}


def _confidence(aligned: int, n_query: int, spread: float, config: FingerprintConfig) -> float:
    base = min(1.0, aligned / n_query)
    count_bonus = min(1.0, aligned / config.count_bonus_saturation)
    score = base * (1.0 + config.spread_weight * spread) + config.count_bonus_weight * count_bonus
    return float(min(max(score, 0.0), 1.0))


def score_track(track_id: str, hits: Sequence[Tuple[int, int]], query_index: Mapping[int, List[int]],
                n_query: int, query_span: int, config: FingerprintConfig) -> MatchCandidate:
    """Find the best alignment of one track and score it."""
    histogram = _build_histogram(hits, query_index, config.offset_bucket_ms)
    if not histogram:
        return MatchCandidate(track_id, 0, len(hits), 0.0, 0)

    # max() keeps the first bucket on ties; iteration order is fixed by the
    # sorted catalog rows, so the choice is reproducible.
    _, pairs = max(histogram.items(), key=lambda kv: len(kv[1]))
    aligned = len(pairs)
    deltas = [d for d, _ in pairs]
    query_times = [q for _, q in pairs]

    spread = (max(query_times) - min(query_times)) / query_span if query_span > 0 else 0.0
    return MatchCandidate(
        track_id=track_id,
        aligned_count=aligned,
        total_hash_matches=len(hits),
        confidence=_confidence(aligned, n_query, spread, config),
        best_offset_ms=int(np.median(deltas)),
    )


def rank(candidates: Iterable[MatchCandidate], config: FingerprintConfig) -> List[MatchCandidate]:
    """Threshold, sort, prune trailing candidates relative to the leader, cap."""
    kept = [
        c for c in candidates
        if c.aligned_count >= config.min_aligned_count and c.confidence >= config.min_confidence
    ]
    kept.sort(key=lambda c: (-c.confidence, -c.aligned_count, c.track_id))
    if not kept:
        return []

    leader = kept[0]
    kept = [
        c for c in kept
        if c.confidence >= config.relative_confidence_floor * leader.confidence
        and c.aligned_count >= config.relative_aligned_floor * leader.aligned_count
    ]
    return kept[:config.max_results]


def match(query_landmarks: Sequence[Landmark], catalog: FingerprintStore,
          config: FingerprintConfig) -> List[MatchCandidate]:
    """
    Align query landmarks against the catalog.

    Returns:
        Ranked candidates, best first. Empty when nothing aligns; that is
        a normal "no match" outcome, not an error.
    """
    n_query = len(query_landmarks)
    if n_query == 0:
        return []

    query_index = _query_index(query_landmarks)
    rows = catalog.lookup_by_hashes(set(query_index))
    if not rows:
        return []

    times = [lm.time_offset_ms for lm in query_landmarks]
    query_span = max(times) - min(times)
    floor = max(config.min_hash_matches, math.ceil(config.min_hash_match_ratio * n_query))

    candidates = []
    for track_id, hits in _group_by_track(rows).items():
        # cheap noise filter before building the histogram
        if len(hits) < floor:
            continue
        candidates.append(score_track(track_id, hits, query_index, n_query, query_span, config))

    logger.debug("matched %d query landmarks: %d catalog hits, %d candidate tracks",
                 n_query, len(rows), len(candidates))
    return rank(candidates, config)
