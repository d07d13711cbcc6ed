import numpy as np

from songmatch.peaks import extract_peaks, find_peaks


def make_spectrum(peaks, n=512, floor=0.1):
    spectrum = np.full(n, floor, dtype=np.float32)
    for b, mag in peaks.items():
        spectrum[b] = mag
    return spectrum


def test_finds_isolated_peaks_ordered_by_bin():
    spectrum = make_spectrum({80: 5.0, 20: 10.0, 50: 8.0})
    assert find_peaks(spectrum, 1, 500, 5) == [(20, 10.0), (50, 8.0), (80, 5.0)]


def test_target_count_keeps_most_prominent():
    spectrum = make_spectrum({20: 10.0, 50: 8.0, 80: 5.0})
    bins = [b for b, _ in find_peaks(spectrum, 1, 500, 2)]
    assert bins == [20, 50]


def test_min_separation():
    spectrum = make_spectrum({30: 10.0, 32: 9.0})
    assert [b for b, _ in find_peaks(spectrum, 1, 500, 5, min_separation=2)] == [30, 32]
    assert [b for b, _ in find_peaks(spectrum, 1, 500, 5, min_separation=3)] == [30]


def test_band_restriction():
    spectrum = make_spectrum({5: 10.0, 50: 8.0, 300: 9.0})
    assert [b for b, _ in find_peaks(spectrum, 10, 100, 5)] == [50]


def test_relative_floor():
    spectrum = make_spectrum({20: 10.0, 80: 5.0})
    assert [b for b, _ in find_peaks(spectrum, 1, 500, 5, relative_floor=0.6)] == [20]


def test_min_magnitude():
    spectrum = make_spectrum({20: 10.0, 80: 0.5}, floor=0.01)
    assert [b for b, _ in find_peaks(spectrum, 1, 500, 5, min_magnitude=1.0)] == [20]


def test_low_prominence_bump_is_rejected():
    spectrum = make_spectrum({40: 1.2}, floor=1.0)
    assert find_peaks(spectrum, 1, 500, 5, min_prominence=1.5) == []
    assert find_peaks(spectrum, 1, 500, 5, min_prominence=1.1) == [(40, 1.2000000476837158)]


def test_plateau_is_not_a_peak():
    spectrum = make_spectrum({40: 5.0, 41: 5.0})
    assert find_peaks(spectrum, 1, 500, 5) == []


def test_degenerate_inputs_return_empty():
    assert find_peaks(np.zeros(512, dtype=np.float32), 1, 500, 5) == []
    assert find_peaks(np.array([1.0, 2.0], dtype=np.float32), 0, 1, 5) == []
    assert find_peaks(np.array([0.0, 5.0, 0.0, 0.0], dtype=np.float32), 0, 3, 5, min_separation=2) == []
    assert find_peaks(make_spectrum({20: 10.0}), 100, 50, 5) == []
    assert find_peaks(make_spectrum({20: 10.0}), 1, 500, 0) == []


def test_extract_peaks_tags_frames(config):
    spectrum = make_spectrum({20: 10.0, 50: 8.0})
    peaks = extract_peaks([(0, spectrum), (12, spectrum)], config)

    assert [(p.frame_index, p.time_offset_ms, p.frequency_bin) for p in peaks] == [
        (0, 0, 20), (0, 0, 50), (1, 12, 20), (1, 12, 50),
    ]
    assert peaks[0].frequency_hz == 20 * config.bin_hz
    assert peaks[0].magnitude == 10.0


def test_extract_peaks_respects_frequency_band(config):
    above_band = config.max_bin + 20
    spectrum = make_spectrum({20: 10.0, above_band: 50.0})
    assert [p.frequency_bin for p in extract_peaks([(0, spectrum)], config)] == [20]
