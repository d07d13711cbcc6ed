#!/usr/bin/env python3
"""
Song recognition CLI.

Usage:
    python scripts/recognize.py --query audio.mp3
    python scripts/recognize.py --query audio.mp3 --clip-length 10 --snr 5
"""

import argparse
import logging
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from songmatch import DecodeError, SongRecognizer, StorageError, load_config
from songmatch.db import open_store
from songmatch.log import setup_logging


def main():
    parser = argparse.ArgumentParser(description='SongMatch - Song Recognition')
    parser.add_argument('--query', '-q', type=str, required=True,
                        help='Path to query audio file')
    parser.add_argument('--db', type=str, default='fingerprints/songmatch.sqlite',
                        help='Catalog path')
    parser.add_argument('--store', choices=['sqlite', 'memory'], default='sqlite')
    parser.add_argument('--config', type=str, default=None, help='YAML fingerprint config')
    parser.add_argument('--clip-length', type=float, default=None,
                        help='Clip length in seconds (for testing with shorter clips)')
    parser.add_argument('--start', type=float, default=None,
                        help='Clip start in seconds (random when omitted)')
    parser.add_argument('--snr', type=float, default=None,
                        help='SNR in dB for noise injection (for testing robustness)')
    parser.add_argument('--debug', action='store_true', help='Log per-stage timings')

    args = parser.parse_args()
    setup_logging(logging.DEBUG if args.debug else logging.WARNING)
    query_path = Path(args.query)

    if not query_path.exists():
        print(f"Error: Query file not found: {query_path}")
        sys.exit(1)

    try:
        recognizer = SongRecognizer(config=load_config(args.config), store=open_store(args.db, args.store))
        print(f"Recognizing: {query_path.name}")
        print(f"Database: {recognizer.num_indexed_songs} songs indexed")

        result = recognizer.recognize_file(
            query_path,
            clip_length_sec=args.clip_length,
            snr_db=args.snr,
            start_sec=args.start,
            debug=args.debug,
        )
    except (DecodeError, StorageError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    best = result.best
    if best is not None:
        print(f"\n✓ Match found: {best.title} by {best.artist}")
        print(f"  Confidence: {best.confidence:.2%}")
        print(f"  Offset: {best.best_offset_ms / 1000:.2f}s")
        print(f"  Aligned landmarks: {best.aligned_count} / {result.fingerprint_count}")
        for other in result.candidates[1:]:
            print(f"  also: {other.title} ({other.confidence:.2%})")
    else:
        print(f"\n✗ No match found ({result.status})")
    print(f"  Total time: {sum(result.timings.values()):.4f}s")


if __name__ == '__main__':
    main()
