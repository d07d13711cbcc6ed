import inspect

import numpy as np
import pytest

from songmatch.spectral import analyze, frame_count, frame_time_ms, hann_window, bin_to_hz

SR = 44100


def test_hann_window_is_symmetric_and_matches_formula():
    n = 1024
    w = hann_window(n)
    i = np.arange(n)
    expected = 0.5 * (1 - np.cos(2 * np.pi * i / (n - 1)))
    np.testing.assert_allclose(w, expected, atol=1e-6)
    assert w[0] == pytest.approx(0.0, abs=1e-7)
    assert w[-1] == pytest.approx(0.0, abs=1e-7)
    np.testing.assert_allclose(w, w[::-1], atol=1e-7)


def test_hann_window_is_read_only():
    w = hann_window(256)
    with pytest.raises(ValueError):
        w[0] = 1.0


def test_frame_count():
    assert frame_count(1023, 1024, 512) == 0
    assert frame_count(1024, 1024, 512) == 1
    assert frame_count(1024 + 512 * 3, 1024, 512) == 4
    assert frame_count(1024 + 512 * 3 + 511, 1024, 512) == 4


def test_frame_time_ms_rounds():
    assert frame_time_ms(0, SR) == 0
    assert frame_time_ms(512, SR) == 12
    assert frame_time_ms(1024, SR) == 23
    assert frame_time_ms(1536, SR) == 35


def test_short_buffer_yields_nothing(config):
    assert list(analyze(np.zeros(config.frame_size - 1, dtype=np.float32), SR, config)) == []


def test_analyze_is_lazy(config):
    frames = analyze(np.zeros(SR, dtype=np.float32), SR, config)
    assert inspect.isgenerator(frames)


def test_frames_are_in_time_order_and_sized(config):
    samples = np.zeros(config.frame_size + 512 * 3, dtype=np.float32)
    frames = list(analyze(samples, SR, config, hop=512))
    assert [t for t, _ in frames] == [0, 12, 23, 35]
    assert all(s.shape == (config.frame_size // 2,) for _, s in frames)


def test_pure_tone_peaks_at_its_bin(config):
    target_bin = 100
    freq = bin_to_hz(target_bin, config)
    t = np.arange(SR) / SR
    tone = np.sin(2 * np.pi * freq * t).astype(np.float32)

    for _, spectrum in analyze(tone, SR, config):
        assert int(np.argmax(spectrum)) == target_bin


def test_bin_to_hz(config):
    assert bin_to_hz(0, config) == 0.0
    assert bin_to_hz(config.min_bin, config) == pytest.approx(43.06640625)


def test_reinvoking_restarts(config, track_a):
    first = [t for t, _ in analyze(track_a[:SR], SR, config)]
    second = [t for t, _ in analyze(track_a[:SR], SR, config)]
    assert first == second


def test_query_hop_changes_frame_rate(config, track_a):
    coarse = config.replace(query_hop=1024)
    n_default = sum(1 for _ in analyze(track_a[:SR], SR, coarse, hop=coarse.ingest_hop))
    n_coarse = sum(1 for _ in analyze(track_a[:SR], SR, coarse, hop=coarse.query_hop))
    assert n_coarse < n_default
