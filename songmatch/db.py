"""
Fingerprint stores.

``InMemoryFingerprintStore`` keeps the classic ``hash -> [(track_id, t)]``
posting table in a dict and can be pickled to disk.
``SQLiteFingerprintStore`` keeps the same table in SQLite with an index on
the hash column.
"""

from __future__ import annotations

import dataclasses
import os
import pickle
import sqlite3
import threading
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .base import FingerprintStore, HashHit
from .errors import StorageError
from .models import Landmark, TrackRecord

# SQLite caps the number of host parameters per statement.
LOOKUP_CHUNK = 500


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def load_db(path: str):
    if os.path.exists(path):
        try:
            with open(path, "rb") as f:
                return pickle.load(f)
        except (OSError, pickle.UnpicklingError, EOFError, ValueError) as e:
            raise StorageError(f"Could not load catalog from {path}: {e}") from e
    return {}


def save_db(path: str, table):
    tmp_path = f"{path}.tmp"
    try:
        with open(tmp_path, "wb") as f:
            pickle.dump(table, f)
        os.replace(tmp_path, path)
    except (OSError, pickle.PicklingError) as e:
        raise StorageError(f"Could not save catalog to {path}: {e}") from e


# ============================================================================
# In-memory store
# ============================================================================

class InMemoryFingerprintStore(FingerprintStore):
    """
    Dict-backed catalog.

    All reads and writes take one re-entrant lock. A track's postings are
    built outside the lock and published together with its record.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.RLock()
        self._tracks: Dict[str, TrackRecord] = {}
        self._postings: Dict[int, List[Tuple[str, int]]] = defaultdict(list)
        if path:
            self.load()

    @staticmethod
    def _index(records: Iterable[TrackRecord]) -> Dict[int, List[Tuple[str, int]]]:
        postings: Dict[int, List[Tuple[str, int]]] = defaultdict(list)
        for record in records:
            for lm in record.fingerprints:
                postings[lm.hash].append((record.track_id, lm.time_offset_ms))
        return postings

    def add_track(self, record: TrackRecord) -> None:
        postings = self._index([record])

        with self._lock:
            if record.track_id in self._tracks:
                self._drop_postings(record.track_id)
            for h, entries in postings.items():
                self._postings[h].extend(entries)
            self._tracks[record.track_id] = record

    def _drop_postings(self, track_id: str) -> None:
        for lm in self._tracks[track_id].fingerprints:
            entries = self._postings.get(lm.hash)
            if entries is None:
                continue
            kept = [e for e in entries if e[0] != track_id]
            if kept:
                self._postings[lm.hash] = kept
            else:
                del self._postings[lm.hash]

    def lookup_by_hashes(self, hashes: Iterable[int]) -> List[HashHit]:
        hits: List[HashHit] = []
        with self._lock:
            for h in hashes:
                for track_id, t in self._postings.get(h, ()):
                    hits.append((track_id, t, h))
        return hits

    def remove_track(self, track_id: str) -> bool:
        with self._lock:
            if track_id not in self._tracks:
                return False
            self._drop_postings(track_id)
            del self._tracks[track_id]
            return True

    def get_track(self, track_id: str) -> Optional[TrackRecord]:
        with self._lock:
            record = self._tracks.get(track_id)
        if record is None:
            return None
        return dataclasses.replace(record, fingerprints=())

    def list_tracks(self) -> List[TrackRecord]:
        with self._lock:
            track_ids = sorted(self._tracks, key=lambda tid: (self._tracks[tid].date_added, tid))
        return [self.get_track(tid) for tid in track_ids]

    def get_fingerprints(self, track_id: str, limit: Optional[int] = None) -> List[Landmark]:
        with self._lock:
            record = self._tracks.get(track_id)
        if record is None:
            return []
        fingerprints = list(record.fingerprints)
        return fingerprints[:limit] if limit is not None else fingerprints

    def count_tracks(self) -> int:
        with self._lock:
            return len(self._tracks)

    def load(self, path: Optional[str] = None) -> None:
        """Load the catalog from disk."""
        path = path or self.path
        tracks = load_db(path)
        if not isinstance(tracks, dict):
            raise StorageError(f"Unexpected catalog format in {path}")
        postings = self._index(tracks.values())
        with self._lock:
            self._tracks = dict(tracks)
            self._postings = postings

    def save(self, path: Optional[str] = None) -> None:
        """Save the catalog to disk."""
        path = path or self.path
        if not path:
            raise StorageError("No path to save the catalog to")
        with self._lock:
            snapshot = dict(self._tracks)
        save_db(path, snapshot)

    def close(self) -> None:
        if self.path:
            self.save()


# ============================================================================
# SQLite store
# ============================================================================

class SQLiteFingerprintStore(FingerprintStore):
    """
    SQLite-backed catalog.

    One connection is shared behind a lock; every write is a single
    transaction, so a track and its hashes appear and disappear together.
    """

    def __init__(self, path: str = "fingerprints.sqlite", timeout: float = 5.0):
        self.path = path
        self.timeout = timeout
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                if self.path != ":memory:":
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(self.path, timeout=self.timeout, check_same_thread=False)
                conn.execute("PRAGMA foreign_keys = ON")
                self._init_schema(conn)
            except (sqlite3.Error, OSError) as e:
                raise StorageError(f"Could not open catalog {self.path}: {e}") from e
            self._conn = conn
        return self._conn

    @staticmethod
    def _init_schema(conn: sqlite3.Connection) -> None:
        with conn:
            conn.execute(
                """
            CREATE TABLE IF NOT EXISTS tracks(
              track_id TEXT PRIMARY KEY,
              title TEXT NOT NULL,
              artist TEXT NOT NULL,
              album TEXT NOT NULL,
              duration REAL NOT NULL,
              filename TEXT NOT NULL,
              fingerprint_count INTEGER NOT NULL,
              fingerprint_version TEXT NOT NULL,
              date_added TEXT NOT NULL
            )
            """
            )
            conn.execute(
                """
            CREATE TABLE IF NOT EXISTS hashes(
              hash32 INTEGER NOT NULL,
              track_id TEXT NOT NULL,
              t_ms INTEGER NOT NULL,
              anchor_freq INTEGER NOT NULL,
              target_freq INTEGER NOT NULL,
              delta_time REAL NOT NULL,
              strength REAL NOT NULL,
              FOREIGN KEY(track_id) REFERENCES tracks(track_id) ON DELETE CASCADE
            )
            """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_hash32 ON hashes(hash32)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_hashes_track ON hashes(track_id, t_ms)")

    def add_track(self, record: TrackRecord) -> None:
        rows = [
            (int(lm.hash), record.track_id, int(lm.time_offset_ms), int(lm.anchor_freq),
             int(lm.target_freq), float(lm.delta_time), float(lm.strength))
            for lm in record.fingerprints
        ]
        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    conn.execute("DELETE FROM hashes WHERE track_id=?", (record.track_id,))
                    conn.execute(
                        """
                      INSERT OR REPLACE INTO tracks(track_id, title, artist, album, duration, filename,
                                                    fingerprint_count, fingerprint_version, date_added)
                      VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                        (record.track_id, record.title, record.artist, record.album,
                         float(record.duration_seconds), record.filename, record.fingerprint_count,
                         record.fingerprint_version, record.date_added),
                    )
                    conn.executemany(
                        "INSERT INTO hashes(hash32, track_id, t_ms, anchor_freq, target_freq, delta_time, strength) "
                        "VALUES(?, ?, ?, ?, ?, ?, ?)",
                        rows,
                    )
            except (sqlite3.Error, OverflowError) as e:
                raise StorageError(f"Could not store track {record.track_id}: {e}") from e

    def lookup_by_hashes(self, hashes: Iterable[int]) -> List[HashHit]:
        values = [int(h) for h in hashes]
        if not values:
            return []
        hits: List[HashHit] = []
        with self._lock:
            conn = self._connection()
            try:
                for i in range(0, len(values), LOOKUP_CHUNK):
                    chunk = values[i:i + LOOKUP_CHUNK]
                    q_marks = ",".join("?" for _ in chunk)
                    sql = f"SELECT track_id, t_ms, hash32 FROM hashes WHERE hash32 IN ({q_marks})"
                    hits.extend(conn.execute(sql, chunk))
            except sqlite3.Error as e:
                raise StorageError(f"Hash lookup failed: {e}") from e
        return hits

    def remove_track(self, track_id: str) -> bool:
        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    conn.execute("DELETE FROM hashes WHERE track_id=?", (track_id,))
                    cur = conn.execute("DELETE FROM tracks WHERE track_id=?", (track_id,))
                    return cur.rowcount > 0
            except sqlite3.Error as e:
                raise StorageError(f"Could not remove track {track_id}: {e}") from e

    _TRACK_COLUMNS = ("track_id, title, artist, album, duration, filename, "
                      "fingerprint_count, fingerprint_version, date_added")

    def _query(self, sql: str, params: tuple = ()) -> list:
        with self._lock:
            conn = self._connection()
            try:
                return list(conn.execute(sql, params))
            except sqlite3.Error as e:
                raise StorageError(f"Catalog query failed: {e}") from e

    def get_track(self, track_id: str) -> Optional[TrackRecord]:
        rows = self._query(f"SELECT {self._TRACK_COLUMNS} FROM tracks WHERE track_id=?", (track_id,))
        return TrackRecord(*rows[0]) if rows else None

    def list_tracks(self) -> List[TrackRecord]:
        rows = self._query(f"SELECT {self._TRACK_COLUMNS} FROM tracks ORDER BY date_added, track_id")
        return [TrackRecord(*row) for row in rows]

    def get_fingerprints(self, track_id: str, limit: Optional[int] = None) -> List[Landmark]:
        sql = ("SELECT hash32, t_ms, anchor_freq, target_freq, delta_time, strength "
               "FROM hashes WHERE track_id=? ORDER BY t_ms, hash32")
        params: tuple = (track_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params += (int(limit),)
        return [Landmark(*row) for row in self._query(sql, params)]

    def count_tracks(self) -> int:
        return self._query("SELECT COUNT(*) FROM tracks")[0][0]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def open_store(path: Optional[str], kind: str = "sqlite") -> FingerprintStore:
    """
    Open a catalog by kind: ``"sqlite"`` or ``"memory"``.

    A memory store with a path is loaded from (and saved back to) a pickle.
    """
    kind = kind.lower()
    if kind == "memory":
        return InMemoryFingerprintStore(path)
    if kind == "sqlite":
        return SQLiteFingerprintStore(path or "fingerprints.sqlite")
    raise StorageError(f"Unknown store kind '{kind}', expected 'sqlite' or 'memory'")
