#!/usr/bin/env python3
"""
Index songs into the fingerprint catalog.

Usage:
    python scripts/index_songs.py --folder ~/datasets/fma_small
    python scripts/index_songs.py --folder ~/music --pattern "*.mp3" --jobs 4 \
                                  --db fingerprints/songmatch.sqlite
"""

import argparse
import logging
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from songmatch import SongRecognizer, StorageError, load_config
from songmatch.db import open_store
from songmatch.log import log_detail, log_section, log_success, setup_logging


def main():
    parser = argparse.ArgumentParser(description='Index songs for recognition')
    parser.add_argument('--folder', '-f', type=str, required=True)
    parser.add_argument('--db', type=str, default='fingerprints/songmatch.sqlite',
                        help='Catalog path (SQLite file, or pickle for --store memory)')
    parser.add_argument('--store', choices=['sqlite', 'memory'], default='sqlite')
    parser.add_argument('--pattern', '-p', type=str, default='*.flac')
    parser.add_argument('--jobs', '-j', type=int, default=1,
                        help='Parallel fingerprinting workers (-1 = all cores)')
    parser.add_argument('--config', type=str, default=None, help='YAML fingerprint config')
    parser.add_argument('--verbose', '-v', action='store_true')
    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    folder = Path(args.folder).expanduser()
    if not folder.exists():
        print(f"Error: Folder not found: {folder}")
        sys.exit(1)

    log_section("🎵 Indexing")
    config = load_config(args.config)
    try:
        store = open_store(args.db, args.store)
    except StorageError as e:
        print(f"Error: {e}")
        sys.exit(1)

    recognizer = SongRecognizer(config=config, store=store)
    log_detail("Catalog", args.db)
    log_detail("Already indexed", str(recognizer.num_indexed_songs))
    log_detail("Pipeline version", config.version)

    added = recognizer.index_folder(folder, pattern=args.pattern, n_jobs=args.jobs)
    if added == 0 and args.pattern != "*.mp3":
        added = recognizer.index_folder(folder, pattern="*.mp3", n_jobs=args.jobs)
    log_success(f"Indexed {added} new songs ({recognizer.num_indexed_songs} in catalog)")
    store.close()


if __name__ == '__main__':
    main()
