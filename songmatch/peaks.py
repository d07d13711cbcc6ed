from typing import Iterable, List, Tuple

import numpy as np

from .config import FingerprintConfig
from .models import SpectralPeak
from .spectral import bin_to_hz

_EPS = 1e-12


def find_peaks(
    spectrum: np.ndarray,
    min_bin: int,
    max_bin: int,
    target_count: int,
    min_separation: int = 2,
    min_prominence: float = 1.0,
    neighborhood: int = 5,
    min_magnitude: float = 0.0,
    relative_floor: float = 0.0,
) -> List[Tuple[int, float]]:
    """
    Pick the strongest local maxima of one magnitude spectrum.

    A bin is a candidate if it is strictly greater than both neighbours,
    lies inside [min_bin, max_bin], reaches ``min_magnitude`` and
    ``relative_floor`` times the strongest candidate, and its prominence
    (magnitude over the mean of the surrounding ``neighborhood`` bins on
    each side) is at least ``min_prominence``.

    Candidates are ranked by (prominence, magnitude) descending and kept
    greedily while they are at least ``min_separation`` bins away from
    every peak kept so far.

    Returns:
        Up to ``target_count`` (bin, magnitude) pairs, ordered by bin.
    """
    spectrum = np.asarray(spectrum, dtype=np.float32)
    n = len(spectrum)
    if target_count <= 0 or n < max(3, 2 * min_separation + 1):
        return []

    lo = max(min_bin, 1)
    hi = min(max_bin, n - 2)
    if hi < lo:
        return []

    band = spectrum[lo:hi + 1]
    is_max = (band > spectrum[lo - 1:hi]) & (band > spectrum[lo + 1:hi + 2]) & (band >= min_magnitude)
    bins = np.nonzero(is_max)[0] + lo
    if bins.size == 0:
        return []

    mags = spectrum[bins].astype(np.float64)
    keep = mags >= relative_floor * mags.max()
    bins, mags = bins[keep], mags[keep]

    # mean of the neighbourhood excluding the peak itself
    csum = np.concatenate(([0.0], np.cumsum(spectrum, dtype=np.float64)))
    start = np.maximum(bins - neighborhood, 0)
    stop = np.minimum(bins + neighborhood + 1, n)
    neighbours = np.maximum(stop - start - 1, 1)
    local_avg = (csum[stop] - csum[start] - mags) / neighbours
    prominence = mags / np.maximum(local_avg, _EPS)

    keep = prominence >= min_prominence
    bins, mags, prominence = bins[keep], mags[keep], prominence[keep]
    if bins.size == 0:
        return []

    # primary key: prominence, secondary: magnitude (both descending)
    order = np.lexsort((-mags, -prominence))
    selected: List[Tuple[int, float]] = []
    for k in order:
        b = int(bins[k])
        if all(abs(b - s) >= min_separation for s, _ in selected):
            selected.append((b, float(mags[k])))
            if len(selected) == target_count:
                break

    selected.sort()
    return selected


def extract_peaks(
    frames: Iterable[Tuple[int, np.ndarray]],
    config: FingerprintConfig,
) -> List[SpectralPeak]:
    """Run ``find_peaks`` over analyzed frames and tag peaks with their frame."""
    peaks: List[SpectralPeak] = []
    min_bin, max_bin = config.min_bin, config.max_bin

    for frame_index, (time_offset_ms, spectrum) in enumerate(frames):
        for b, magnitude in find_peaks(
            spectrum,
            min_bin,
            max_bin,
            config.peaks_per_frame,
            min_separation=config.min_separation,
            min_prominence=config.min_prominence,
            neighborhood=config.prominence_neighborhood,
            min_magnitude=config.min_magnitude,
            relative_floor=config.relative_floor,
        ):
            peaks.append(SpectralPeak(
                frequency_bin=b,
                frequency_hz=bin_to_hz(b, config),
                magnitude=magnitude,
                time_offset_ms=time_offset_ms,
                frame_index=frame_index,
            ))
    return peaks
