#!/usr/bin/env python3
"""
Benchmark script: recognition accuracy and latency across clip length and SNR.

Two sources of queries:
    - an indexed folder, where the expected answer is the file stem
    - a synthetic catalog of random chirp "songs" (no audio files needed)

Usage:
    python scripts/benchmark.py --db fingerprints/songmatch.sqlite \
                                --test_dir ~/datasets/fma_small \
                                --aug_dir ~/datasets/aug \
                                --n_test 100

    python scripts/benchmark.py --synthetic 20
"""

import sys
import json
import time
import random
import argparse
from pathlib import Path
from dataclasses import dataclass, asdict, field
from typing import List, Optional, Dict, Tuple

sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import soundfile as sf
from scipy.signal import chirp, fftconvolve
from tqdm import tqdm

from songmatch import DecodeError, InMemoryFingerprintStore, SongRecognizer, TrackMetadata, load_config
from songmatch.audio import cut_audio, inject_noise, resample, to_mono
from songmatch.db import open_store


@dataclass
class TestCondition:
    name: str
    clip_length_sec: float
    snr_db: Optional[float] = None
    use_ir: bool = False


@dataclass
class BenchmarkResults:
    approach: str
    n_db_songs: int
    n_queries: int
    db_load_time_ms: float
    pipeline_version: str = ""
    conditions: Dict[str, dict] = field(default_factory=dict)


# Test conditions to evaluate
TEST_CONDITIONS = [
    TestCondition("clean_10s", clip_length_sec=10.0),
    TestCondition("clean_5s", clip_length_sec=5.0),
    TestCondition("clean_3s", clip_length_sec=3.0),
    TestCondition("snr_10db", clip_length_sec=10.0, snr_db=10.0),
    TestCondition("snr_5db", clip_length_sec=10.0, snr_db=5.0),
    TestCondition("snr_0db", clip_length_sec=10.0, snr_db=0.0),
    TestCondition("ir_10s", clip_length_sec=10.0, use_ir=True),
    TestCondition("ir_snr_5db", clip_length_sec=10.0, snr_db=5.0, use_ir=True),
]


def load_noise_files(aug_dir: Path) -> List[Path]:
    """Load noise files from augmentation directory."""
    if not aug_dir.exists():
        return []
    noise_dir = aug_dir / "noise" if (aug_dir / "noise").exists() else aug_dir
    return list(noise_dir.rglob("*.wav"))


def load_ir_files(aug_dir: Path) -> List[Path]:
    """Load impulse response files from augmentation directory."""
    if not aug_dir.exists():
        return []
    ir_dir = aug_dir / "ir" if (aug_dir / "ir").exists() else aug_dir / "rir"
    if not ir_dir.exists():
        ir_dir = aug_dir
    return list(ir_dir.rglob("*.wav"))


def _read_mono(path: Path, sr: int) -> np.ndarray:
    signal, file_sr = sf.read(str(path), dtype="float32", always_2d=False)
    return resample(to_mono(signal), file_sr, sr)


def add_noise(signal: np.ndarray, snr_db: float, noise_files: List[Path], sr: int) -> np.ndarray:
    """Add noise to signal at specified SNR (white noise when no noise files are given)."""
    if not noise_files:
        return inject_noise(signal, snr_db)

    noise = _read_mono(random.choice(noise_files), sr)
    if len(noise) == 0:
        return inject_noise(signal, snr_db)

    # Tile or truncate to match signal length
    if len(noise) < len(signal):
        noise = np.tile(noise, int(np.ceil(len(signal) / len(noise))))
    noise = noise[:len(signal)]

    # Scale noise to desired SNR
    signal_power = np.mean(signal ** 2) + 1e-10
    noise_power = np.mean(noise ** 2) + 1e-10
    target_noise_power = signal_power / (10 ** (snr_db / 10))
    noise = noise * np.sqrt(target_noise_power / noise_power)
    return (signal + noise).astype(np.float32)


def apply_ir(signal: np.ndarray, ir_files: List[Path], sr: int) -> np.ndarray:
    """Apply impulse response convolution."""
    if not ir_files:
        return signal

    ir = _read_mono(random.choice(ir_files), sr)
    if len(ir) == 0:
        return signal

    # Convolve and normalize
    convolved = fftconvolve(signal, ir, mode='same')
    convolved = convolved / (np.max(np.abs(convolved)) + 1e-10) * np.max(np.abs(signal))
    return convolved.astype(np.float32)


def create_query(signal: np.ndarray, sr: int, condition: TestCondition,
                 noise_files: List[Path], ir_files: List[Path], seed: int) -> np.ndarray:
    """Create a query audio with specified augmentation."""
    query = cut_audio(signal, sr, condition.clip_length_sec, seed=seed)
    if condition.use_ir:
        query = apply_ir(query, ir_files, sr)
    if condition.snr_db is not None:
        query = add_noise(query, condition.snr_db, noise_files, sr)
    return query


def synthetic_song(rng: np.random.Generator, sr: int, duration: float = 30.0) -> np.ndarray:
    """A random sequence of chirps with a harmonic; distinct per seed."""
    t = np.arange(int(sr * 2.0)) / sr
    pieces = []
    while sum(len(p) for p in pieces) < duration * sr:
        f0, f1 = rng.uniform(200, 3500, size=2)
        piece = chirp(t, f0=f0, t1=t[-1], f1=f1) + 0.5 * chirp(t, f0=min(2 * f0, 3900), t1=t[-1], f1=min(2 * f1, 3900))
        pieces.append(piece.astype(np.float32) * 0.3)
    return np.concatenate(pieces)[:int(duration * sr)]


def build_synthetic_catalog(recognizer: SongRecognizer, n_songs: int, seed: int) -> List[Tuple[str, np.ndarray]]:
    rng = np.random.default_rng(seed)
    sr = recognizer.config.sample_rate
    songs = []
    for i in tqdm(range(n_songs), desc="Indexing synthetic songs", unit="song"):
        title = f"synthetic_{i:03d}"
        samples = synthetic_song(rng, sr)
        recognizer.ingest(TrackMetadata(title=title), samples, sr)
        songs.append((title, samples))
    return songs


def run_conditions(recognizer: SongRecognizer, queries: List[Tuple[str, np.ndarray]],
                   noise_files: List[Path], ir_files: List[Path],
                   conditions: List[TestCondition], results: BenchmarkResults, seed: int) -> None:
    sr = recognizer.config.sample_rate
    for condition in conditions:
        correct = 0
        total = 0
        query_times = []

        for i, (expected, signal) in enumerate(queries):
            query = create_query(signal, sr, condition, noise_files, ir_files, seed + i)

            start = time.perf_counter()
            result = recognizer.recognize(query, sr)
            query_times.append((time.perf_counter() - start) * 1000)

            if result.best is not None and result.best.title == expected:
                correct += 1
            total += 1

        accuracy = correct / total * 100 if total > 0 else 0
        avg_time = float(np.mean(query_times)) if query_times else 0

        results.conditions[condition.name] = {
            "accuracy": accuracy,
            "avg_query_time_ms": avg_time,
            "p95_query_time_ms": float(np.percentile(query_times, 95)) if query_times else 0,
            "correct": correct,
            "total": total,
        }

        print(f"  {condition.name}: {accuracy:.1f}% ({correct}/{total}), {avg_time:.1f}ms/query")


def main():
    parser = argparse.ArgumentParser(description='Benchmark SongMatch recognition')
    parser.add_argument('--db', type=str, default='fingerprints/songmatch.sqlite',
                        help='Catalog with the indexed test songs')
    parser.add_argument('--store', choices=['sqlite', 'memory'], default='sqlite')
    parser.add_argument('--config', type=str, default=None, help='YAML fingerprint config')
    parser.add_argument('--test_dir', type=str, default=None,
                        help='Directory with test audio files (already indexed)')
    parser.add_argument('--synthetic', type=int, default=0,
                        help='Benchmark on N synthetic songs instead of a folder')
    parser.add_argument('--aug_dir', type=str, default='~/datasets/aug',
                        help='Directory with noise/IR augmentation files')
    parser.add_argument('--n_test', type=int, default=50,
                        help='Number of test queries')
    parser.add_argument('--output', type=str, default='benchmark_results.json')
    parser.add_argument('--seed', type=int, default=42)
    args = parser.parse_args()

    if not args.test_dir and not args.synthetic:
        parser.error("one of --test_dir or --synthetic is required")

    random.seed(args.seed)
    config = load_config(args.config)
    aug_dir = Path(args.aug_dir).expanduser()

    start = time.perf_counter()
    if args.synthetic:
        recognizer = SongRecognizer(config=config, store=InMemoryFingerprintStore())
        songs = build_synthetic_catalog(recognizer, args.synthetic, args.seed)
        random.shuffle(songs)
        queries = songs[:args.n_test]
    else:
        recognizer = SongRecognizer(config=config, store=open_store(args.db, args.store))
        test_dir = Path(args.test_dir).expanduser()
        test_files = list(test_dir.rglob("*.mp3")) or list(test_dir.rglob("*.flac"))
        random.shuffle(test_files)
        queries = []
        for test_file in test_files[:args.n_test]:
            try:
                queries.append((test_file.stem, recognizer.decoder.decode(test_file).samples))
            except DecodeError as e:
                print(f"    Error {test_file.name}: {e}")
    db_load_time = (time.perf_counter() - start) * 1000

    noise_files = load_noise_files(aug_dir)
    ir_files = load_ir_files(aug_dir)
    print(f"Noise files: {len(noise_files)}, IR files: {len(ir_files)}")

    results = BenchmarkResults(
        approach=recognizer.name,
        n_db_songs=recognizer.num_indexed_songs,
        n_queries=len(queries),
        db_load_time_ms=db_load_time,
        pipeline_version=config.version,
    )
    print(f"\n=== {results.approach} Benchmark ===")
    print(f"Loaded {results.n_db_songs} songs in {db_load_time:.1f}ms")

    run_conditions(recognizer, queries, noise_files, ir_files, TEST_CONDITIONS, results, args.seed)

    # Save
    with open(args.output, 'w') as f:
        json.dump(asdict(results), f, indent=2)
    print(f"\nSaved to {args.output}")


if __name__ == '__main__':
    main()
