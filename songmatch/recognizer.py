import logging
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
from joblib import Parallel, delayed
from tqdm import tqdm

from .audio import cut_audio, default_decoder, inject_noise, resample, select_segments, to_mono
from .base import BaseSongRecognizer, Decoder, FingerprintStore
from .config import DEFAULT_CONFIG, FingerprintConfig
from .db import InMemoryFingerprintStore, utc_now
from .errors import DecodeError, EmptyAudioError, InsufficientDataError, TrackNotFoundError
from .hashing import fingerprint
from .matching import match
from .models import (
    STATUS_EMPTY_AUDIO,
    STATUS_INSUFFICIENT_DATA,
    STATUS_MATCH,
    STATUS_NO_MATCH,
    Landmark,
    RecognitionResult,
    TrackMetadata,
    TrackRecord,
)
from .spectral import frame_time_ms

logger = logging.getLogger(__name__)


class Timer:
    """Context manager for timing code blocks; timings are logged at DEBUG."""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.timings: Dict[str, float] = {}

    @contextmanager
    def measure(self, label: str):
        """Time a block of code and record the result under ``label``."""
        start = time.perf_counter()
        yield
        elapsed = time.perf_counter() - start
        self.timings[label] = elapsed
        if self.debug:
            logger.debug("%s: %.4fs", label, elapsed)

    def log(self, message: str, *args):
        if self.debug:
            logger.debug(message, *args)

    @property
    def total(self) -> float:
        return sum(self.timings.values())


def fingerprint_track(samples: np.ndarray, sample_rate: int, config: FingerprintConfig) -> List[Landmark]:
    """
    Ingest-side fingerprinting.

    Long tracks are reduced to beginning/middle/end segments when
    ``config.ingest_max_seconds`` is set; every segment keeps absolute
    offsets.
    """
    landmarks: List[Landmark] = []
    for start, segment in select_segments(samples, sample_rate, config.ingest_max_seconds):
        landmarks.extend(fingerprint(
            segment, sample_rate, config,
            hop=config.ingest_hop,
            offset_ms=frame_time_ms(start, sample_rate),
        ))
    landmarks.sort(key=lambda lm: (lm.time_offset_ms, lm.hash))
    return landmarks


def _prepare(samples: np.ndarray, sample_rate: int, config: FingerprintConfig) -> np.ndarray:
    samples = to_mono(samples)
    if samples.size == 0:
        raise EmptyAudioError("Audio contains no samples")
    samples = resample(samples, sample_rate, config.sample_rate)
    if len(samples) < config.frame_size:
        raise InsufficientDataError(
            f"Audio is {len(samples)} samples long, shorter than one {config.frame_size}-sample frame"
        )
    return samples


def _decode_and_fingerprint(decoder: Decoder, config: FingerprintConfig,
                            path: Path) -> Tuple[Path, float, List[Landmark]]:
    """Worker for parallel folder indexing."""
    decoded = decoder.decode(path)
    samples = _prepare(decoded.samples, decoded.sample_rate, config)
    return path, decoded.duration, fingerprint_track(samples, config.sample_rate, config)


def _safe_decode_and_fingerprint(decoder: Decoder, config: FingerprintConfig, path: Path):
    try:
        return _decode_and_fingerprint(decoder, config, path)
    except (DecodeError, EmptyAudioError, InsufficientDataError) as e:
        return path, e


class SongRecognizer(BaseSongRecognizer):
    """
    Shazam-style audio fingerprinting and recognition.

    Uses spectral peak constellation hashing: landmark hashes are looked
    up in the catalog and candidates are scored by how many of them agree
    on a single time offset.
    """

    def __init__(self, config: FingerprintConfig = DEFAULT_CONFIG,
                 store: Optional[FingerprintStore] = None,
                 decoder: Optional[Decoder] = None):
        """
        Initialize the recognizer.

        Args:
            config: fingerprinting and matching configuration
            store: fingerprint catalog (defaults to an empty in-memory store)
            decoder: used by the ``*_file`` methods (defaults to ffmpeg, or
                soundfile when ffmpeg is missing)
        """
        self.config = config
        self.store = store if store is not None else InMemoryFingerprintStore()
        self.decoder = decoder if decoder is not None else default_decoder(config.sample_rate)

    @property
    def name(self) -> str:
        return "Shazam"

    @property
    def num_indexed_songs(self) -> int:
        return self.store.count_tracks()

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def _store_track(self, metadata: TrackMetadata, landmarks: List[Landmark],
                     track_id: Optional[str] = None) -> TrackRecord:
        if not landmarks:
            raise InsufficientDataError(f"No landmarks could be extracted from '{metadata.title}'")
        record = TrackRecord(
            track_id=track_id or uuid.uuid4().hex,
            title=metadata.title,
            artist=metadata.artist,
            album=metadata.album,
            duration_seconds=float(metadata.duration_seconds),
            filename=metadata.filename,
            fingerprint_count=len(landmarks),
            fingerprint_version=self.config.version,
            date_added=utc_now(),
            fingerprints=tuple(landmarks),
        )
        self.store.add_track(record)
        logger.info("Stored '%s' by %s as %s (%d landmarks)",
                    record.title, record.artist, record.track_id, record.fingerprint_count)
        return record

    def ingest_track(self, metadata: TrackMetadata, samples: np.ndarray, sample_rate: int,
                     track_id: Optional[str] = None) -> TrackRecord:
        """Like ``ingest`` but returns the stored record (without landmarks)."""
        samples = _prepare(samples, sample_rate, self.config)
        if not metadata.duration_seconds:
            metadata = TrackMetadata(
                title=metadata.title,
                artist=metadata.artist,
                album=metadata.album,
                duration_seconds=len(samples) / float(self.config.sample_rate),
                filename=metadata.filename,
            )
        landmarks = fingerprint_track(samples, self.config.sample_rate, self.config)
        record = self._store_track(metadata, landmarks, track_id)
        return self.store.get_track(record.track_id) or record

    def ingest(self, metadata: TrackMetadata, samples: np.ndarray, sample_rate: int,
               track_id: Optional[str] = None) -> int:
        return self.ingest_track(metadata, samples, sample_rate, track_id).fingerprint_count

    def ingest_file(self, audio_path: Union[str, Path], metadata: Optional[TrackMetadata] = None,
                    track_id: Optional[str] = None) -> TrackRecord:
        """Decode a file and add it to the catalog. Title defaults to the file stem."""
        audio_path = Path(audio_path)
        decoded = self.decoder.decode(audio_path)
        if metadata is None:
            metadata = TrackMetadata(title=audio_path.stem, filename=audio_path.name)
        return self.ingest_track(metadata, decoded.samples, decoded.sample_rate, track_id)

    def index_folder(self, folder: Path, pattern: str = "*.flac", n_jobs: int = 1) -> int:
        """
        Index all songs in a folder.

        Files whose name is already in the catalog are skipped. Decoding and
        fingerprinting run on ``n_jobs`` workers; writes to the catalog stay
        sequential.

        Returns:
            Number of newly indexed songs
        """
        known = {record.filename for record in self.store.list_tracks()}
        audio_paths = [p for p in sorted(Path(folder).glob(pattern)) if p.name not in known]
        if not audio_paths:
            return 0

        jobs = Parallel(n_jobs=n_jobs, return_as="generator")(
            delayed(_safe_decode_and_fingerprint)(self.decoder, self.config, p) for p in audio_paths
        )
        count = 0
        for result in tqdm(jobs, total=len(audio_paths), desc="Indexing songs", unit="song"):
            if isinstance(result[1], Exception):
                path, error = result
                logger.warning("Skipping %s: %s", path.name, error)
                continue
            path, duration, landmarks = result
            metadata = TrackMetadata(title=path.stem, duration_seconds=duration, filename=path.name)
            try:
                self._store_track(metadata, landmarks)
            except InsufficientDataError as e:
                logger.warning("Skipping %s: %s", path.name, e)
                continue
            count += 1
        return count

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def remove_track(self, track_id: str) -> bool:
        removed = self.store.remove_track(track_id)
        if removed:
            logger.info("Removed track %s", track_id)
        return removed

    def get_track(self, track_id: str) -> TrackRecord:
        record = self.store.get_track(track_id)
        if record is None:
            raise TrackNotFoundError(track_id)
        return record

    def get_fingerprints(self, track_id: str, limit: Optional[int] = None) -> List[Landmark]:
        self.get_track(track_id)
        return self.store.get_fingerprints(track_id, limit)

    def list_tracks(self) -> List[TrackRecord]:
        return self.store.list_tracks()

    def stale_tracks(self) -> List[TrackRecord]:
        """Tracks fingerprinted with a different pipeline version; they need re-ingesting."""
        return [r for r in self.store.list_tracks() if r.fingerprint_version != self.config.version]

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    def recognize(self, samples: np.ndarray, sample_rate: int, debug: bool = False) -> RecognitionResult:
        """
        Recognize a song from query samples.

        Short or empty input is not an error: it comes back as an empty
        result with status ``insufficient_data`` / ``empty_audio``.
        """
        timer = Timer(debug=debug)
        config = self.config

        with timer.measure("Prepare audio"):
            samples = to_mono(samples)
            if samples.size == 0:
                return RecognitionResult([], STATUS_EMPTY_AUDIO, 0.0, 0, timings=timer.timings)
            samples = resample(samples, sample_rate, config.sample_rate)
        duration = len(samples) / float(config.sample_rate)

        if len(samples) < config.frame_size:
            return RecognitionResult([], STATUS_INSUFFICIENT_DATA, duration, 0, timings=timer.timings)

        with timer.measure("Fingerprint query"):
            landmarks = fingerprint(samples, config.sample_rate, config, hop=config.query_hop)
        timer.log("  Query landmarks: %d", len(landmarks))

        with timer.measure("Match"):
            candidates = match(landmarks, self.store, config)

        with timer.measure("Lookup"):
            for candidate in candidates:
                record = self.store.get_track(candidate.track_id)
                if record is not None:
                    candidate.title = record.title
                    candidate.artist = record.artist

        timer.log("Total recognition time: %.4fs", timer.total)
        return RecognitionResult(
            candidates=candidates,
            status=STATUS_MATCH if candidates else STATUS_NO_MATCH,
            sample_duration=duration,
            fingerprint_count=len(landmarks),
            hash_matches=sum(c.total_hash_matches for c in candidates),
            timings=timer.timings,
        )

    def recognize_file(
        self,
        query_path: Union[str, Path],
        clip_length_sec: Optional[float] = None,
        snr_db: Optional[float] = None,
        start_sec: Optional[float] = None,
        debug: bool = False,
    ) -> RecognitionResult:
        """
        Recognize a song from an audio file.

        Args:
            query_path: Path to the audio file to recognize
            clip_length_sec: Optional clip length in seconds
            snr_db: Optional SNR for noise injection
            start_sec: Clip start; random (seeded) when omitted
            debug: If True, log timing information for each step

        Raises:
            DecodeError: the file could not be decoded
        """
        try:
            decoded = self.decoder.decode(query_path)
        except EmptyAudioError:
            return RecognitionResult([], STATUS_EMPTY_AUDIO, 0.0, 0)

        signal = decoded.samples
        if clip_length_sec is not None:
            signal = cut_audio(signal, decoded.sample_rate, clip_length_sec, start_sec=start_sec)
        if snr_db is not None:
            signal = inject_noise(signal, snr_db)
        return self.recognize(signal, decoded.sample_rate, debug=debug)
