import dataclasses

import pytest

from songmatch.db import InMemoryFingerprintStore, SQLiteFingerprintStore, open_store
from songmatch.errors import StorageError
from songmatch.models import Landmark, TrackRecord


def landmarks(seed, n=20):
    return [
        Landmark(hash=seed * 1000 + i, time_offset_ms=i * 50, anchor_freq=10 + i, target_freq=30 + i,
                 delta_time=23.219954648526077, strength=1.5 + i)
        for i in range(n)
    ]


def record(track_id, prints, title="Song", date_added="2024-01-01T00:00:00+00:00"):
    return TrackRecord(
        track_id=track_id,
        title=title,
        artist="Artist",
        album="Album",
        duration_seconds=12.5,
        filename=f"{track_id}.wav",
        fingerprint_count=len(prints),
        fingerprint_version="v1-abcdef12",
        date_added=date_added,
        fingerprints=tuple(prints),
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Provide a fresh store of each kind."""
    if request.param == "memory":
        s = InMemoryFingerprintStore()
    else:
        s = SQLiteFingerprintStore(str(tmp_path / "catalog.sqlite"))
    yield s
    s.close()


def test_add_and_get(store):
    store.add_track(record("a", landmarks(1)))
    got = store.get_track("a")
    assert got.track_id == "a"
    assert got.title == "Song"
    assert got.duration_seconds == 12.5
    assert got.fingerprint_count == 20
    assert got.fingerprint_version == "v1-abcdef12"
    assert got.fingerprints == ()
    assert store.get_track("missing") is None


def test_list_and_count(store):
    store.add_track(record("b", landmarks(2), date_added="2024-01-02T00:00:00+00:00"))
    store.add_track(record("a", landmarks(1), date_added="2024-01-01T00:00:00+00:00"))
    assert [r.track_id for r in store.list_tracks()] == ["a", "b"]
    assert store.count_tracks() == 2


def test_lookup_by_hashes(store):
    store.add_track(record("a", landmarks(1)))
    store.add_track(record("b", landmarks(2)))
    hits = store.lookup_by_hashes([1000, 1005, 2003, 999_999])
    assert sorted(hits) == [("a", 0, 1000), ("a", 250, 1005), ("b", 150, 2003)]
    assert store.lookup_by_hashes([]) == []


def test_lookup_handles_large_batches(store):
    store.add_track(record("a", landmarks(1, n=1200)))
    hits = store.lookup_by_hashes(range(1000, 2200))
    assert len(hits) == 1200


def test_get_fingerprints_ordered_with_limit(store):
    prints = landmarks(1)
    store.add_track(record("a", prints))
    assert store.get_fingerprints("a") == prints
    assert store.get_fingerprints("a", limit=5) == prints[:5]
    assert store.get_fingerprints("missing") == []


def test_remove_track(store):
    store.add_track(record("a", landmarks(1)))
    store.add_track(record("b", landmarks(2)))

    assert store.remove_track("a") is True
    assert store.remove_track("a") is False
    assert store.get_track("a") is None
    assert store.lookup_by_hashes([1000, 1001]) == []
    assert store.get_fingerprints("a") == []
    assert store.get_track("b") is not None
    assert len(store.lookup_by_hashes([2000, 2001])) == 2


def test_shared_hash_survives_removal_of_other_track(store):
    shared = landmarks(1)
    store.add_track(record("a", shared))
    store.add_track(record("b", shared))
    store.remove_track("a")
    assert sorted(store.lookup_by_hashes([1000])) == [("b", 0, 1000)]


def test_readding_track_replaces_it(store):
    store.add_track(record("a", landmarks(1)))
    store.add_track(record("a", landmarks(3, n=5), title="New"))
    assert store.get_track("a").title == "New"
    assert store.count_tracks() == 1
    assert store.lookup_by_hashes([1000]) == []
    assert len(store.lookup_by_hashes(range(3000, 3005))) == 5


def test_memory_store_pickle_roundtrip(tmp_path):
    path = str(tmp_path / "catalog.pkl")
    s = InMemoryFingerprintStore(path)
    s.add_track(record("a", landmarks(1)))
    s.save()

    loaded = InMemoryFingerprintStore(path)
    assert loaded.count_tracks() == 1
    assert sorted(loaded.lookup_by_hashes([1000])) == [("a", 0, 1000)]


def test_memory_store_corrupt_pickle(tmp_path):
    path = tmp_path / "catalog.pkl"
    path.write_bytes(b"\xff\xfe not a pickle")
    with pytest.raises(StorageError):
        InMemoryFingerprintStore(str(path))


def test_memory_store_save_without_path():
    with pytest.raises(StorageError):
        InMemoryFingerprintStore().save()


def test_sqlite_persists_across_connections(tmp_path):
    path = str(tmp_path / "catalog.sqlite")
    s = SQLiteFingerprintStore(path)
    s.add_track(record("a", landmarks(1)))
    s.close()

    reopened = SQLiteFingerprintStore(path)
    assert reopened.get_track("a").title == "Song"
    assert reopened.get_fingerprints("a", limit=1)[0].hash == 1000
    reopened.close()


def test_sqlite_unavailable_raises_storage_error(tmp_path):
    blocker = tmp_path / "file.txt"
    blocker.write_text("x")
    s = SQLiteFingerprintStore(str(blocker / "catalog.sqlite"))
    with pytest.raises(StorageError):
        s.list_tracks()


def test_open_store(tmp_path):
    assert isinstance(open_store(None, "memory"), InMemoryFingerprintStore)
    assert isinstance(open_store(str(tmp_path / "x.sqlite"), "sqlite"), SQLiteFingerprintStore)
    with pytest.raises(StorageError):
        open_store(None, "redis")


def fail_hash_inserts(store, when="1"):
    """Make the catalog reject hash rows part-way through a write."""
    store._connection().execute(
        f"CREATE TRIGGER reject_hash BEFORE INSERT ON hashes WHEN {when} "
        "BEGIN SELECT RAISE(ABORT, 'disk full'); END"
    )


def test_sqlite_failed_write_leaves_nothing(tmp_path):
    s = SQLiteFingerprintStore(str(tmp_path / "catalog.sqlite"))
    fail_hash_inserts(s, when="NEW.hash32 = 1010")

    with pytest.raises(StorageError, match="disk full"):
        s.add_track(record("a", landmarks(1)))
    assert s.get_track("a") is None
    assert s.count_tracks() == 0
    assert s.lookup_by_hashes(range(1000, 1020)) == []
    s.close()


def test_sqlite_failed_rewrite_keeps_previous_track(tmp_path):
    s = SQLiteFingerprintStore(str(tmp_path / "catalog.sqlite"))
    s.add_track(record("a", landmarks(1)))
    fail_hash_inserts(s, when="NEW.hash32 = 3002")

    with pytest.raises(StorageError):
        s.add_track(record("a", landmarks(3), title="New"))
    assert s.get_track("a").title == "Song"
    assert len(s.lookup_by_hashes(range(1000, 1020))) == 20
    assert s.lookup_by_hashes(range(3000, 3020)) == []
    s.close()


def test_sqlite_out_of_range_hash_is_rolled_back(tmp_path):
    s = SQLiteFingerprintStore(str(tmp_path / "catalog.sqlite"))
    prints = landmarks(1)
    prints[5] = dataclasses.replace(prints[5], hash=2 ** 64)

    with pytest.raises(StorageError):
        s.add_track(record("a", prints))
    assert s.get_track("a") is None
    assert s.lookup_by_hashes([1000]) == []
    s.close()


def test_memory_store_failed_load_keeps_catalog(tmp_path, monkeypatch):
    s = InMemoryFingerprintStore()
    s.add_track(record("a", landmarks(1)))
    broken = record("b", landmarks(2))
    broken = dataclasses.replace(broken, fingerprints=broken.fingerprints + (None,))
    monkeypatch.setattr("songmatch.db.load_db", lambda path: {"b": broken})

    with pytest.raises(AttributeError):
        s.load(str(tmp_path / "catalog.pkl"))
    assert [r.track_id for r in s.list_tracks()] == ["a"]
    assert len(s.lookup_by_hashes([1000, 1001])) == 2
    assert s.lookup_by_hashes([2000]) == []


def test_memory_store_load_replaces_catalog(tmp_path):
    path = str(tmp_path / "catalog.pkl")
    saved = InMemoryFingerprintStore(path)
    saved.add_track(record("b", landmarks(2)))
    saved.save()

    s = InMemoryFingerprintStore()
    s.add_track(record("a", landmarks(1)))
    s.load(path)
    assert [r.track_id for r in s.list_tracks()] == ["b"]
    assert s.lookup_by_hashes([1000]) == []
    assert s.lookup_by_hashes([2000]) == [("b", 0, 2000)]
