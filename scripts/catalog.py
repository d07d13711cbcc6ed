#!/usr/bin/env python3
"""
Inspect and maintain the fingerprint catalog.

Usage:
    python scripts/catalog.py list
    python scripts/catalog.py show <track_id>
    python scripts/catalog.py remove <track_id>
    python scripts/catalog.py stale
"""

import argparse
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from songmatch import SongRecognizer, StorageError, TrackNotFoundError, load_config
from songmatch.db import open_store
from songmatch.spectral import bin_to_hz


def print_tracks(records):
    if not records:
        print("(no tracks)")
        return
    print(f"{'ID':<34} {'Title':<30} {'Artist':<20} {'Prints':>7} {'Version':>14}")
    print("-" * 109)
    for r in records:
        print(f"{r.track_id:<34} {r.title[:30]:<30} {r.artist[:20]:<20} "
              f"{r.fingerprint_count:>7} {r.fingerprint_version:>14}")


def main():
    parser = argparse.ArgumentParser(description='SongMatch catalog maintenance')
    parser.add_argument('--db', type=str, default='fingerprints/songmatch.sqlite')
    parser.add_argument('--store', choices=['sqlite', 'memory'], default='sqlite')
    parser.add_argument('--config', type=str, default=None, help='YAML fingerprint config')
    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('list', help='List indexed tracks')
    show = sub.add_parser('show', help='Show one track and a sample of its landmarks')
    show.add_argument('track_id')
    show.add_argument('--limit', type=int, default=10)
    remove = sub.add_parser('remove', help='Remove a track')
    remove.add_argument('track_id')
    sub.add_parser('stale', help='List tracks fingerprinted with another pipeline version')
    args = parser.parse_args()

    try:
        recognizer = SongRecognizer(config=load_config(args.config), store=open_store(args.db, args.store))

        if args.command == 'list':
            print_tracks(recognizer.list_tracks())

        elif args.command == 'show':
            record = recognizer.get_track(args.track_id)
            for key, value in record.to_dict().items():
                print(f"{key:>20}: {value}")
            print("\nLandmarks:")
            for lm in recognizer.get_fingerprints(args.track_id, limit=args.limit):
                print(f"  t={lm.time_offset_ms:>8}ms  hash={lm.hash:>10}  "
                      f"f={bin_to_hz(lm.anchor_freq, recognizer.config):.0f}->"
                      f"{bin_to_hz(lm.target_freq, recognizer.config):.0f}Hz  dt={lm.delta_time:.1f}ms")

        elif args.command == 'remove':
            if not recognizer.remove_track(args.track_id):
                raise TrackNotFoundError(args.track_id)
            print(f"✓ Removed {args.track_id}")

        elif args.command == 'stale':
            stale = recognizer.stale_tracks()
            print(f"Current pipeline version: {recognizer.config.version}")
            print_tracks(stale)

        recognizer.store.close()

    except TrackNotFoundError as e:
        print(f"Error: no track with id {e.args[0]}")
        sys.exit(1)
    except StorageError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
