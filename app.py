# !!!
# TO RUN THE SERVER: uvicorn app:app --host 0.0.0.0 --port 8000
# !!!

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

import config_app
from songmatch import (
    DecodeError,
    EmptyAudioError,
    InsufficientDataError,
    SongRecognizer,
    StorageError,
    TrackMetadata,
    TrackNotFoundError,
    load_config,
)
from songmatch.audio import SUPPORTED_EXTENSIONS
from songmatch.db import open_store
from songmatch.log import log_detail, log_section, log_step, log_success, setup_logging

log = logging.getLogger("songmatch.app")

CHUNK_BYTES = 1024 * 1024


# -----------------------------
# Recognizer Initialization
# -----------------------------

def build_recognizer() -> SongRecognizer:
    """Build the recognizer from the environment settings in ``config_app``."""
    log_section("📦 Loading Recognizer")

    log_step(1, "Loading fingerprint configuration...")
    config = load_config(config_app.CONFIG_PATH)
    log_detail("Config", config_app.CONFIG_PATH or "defaults")
    log_detail("Pipeline version", config.version)

    log_step(2, "Opening fingerprint catalog...")
    store = open_store(config_app.DB_PATH if config_app.STORE == "sqlite" else None, config_app.STORE)
    log_detail("Database path", config_app.DB_PATH)
    log_detail("Store", type(store).__name__)

    recognizer = SongRecognizer(config=config, store=store)
    log_success("Recognizer ready")
    return recognizer


# -----------------------------
# Upload helpers
# -----------------------------

async def _save_upload(upload: UploadFile, max_bytes: int) -> str:
    """Stream an upload to a temp file (the decoders want a path)."""
    filename = upload.filename or ""
    suffix = Path(filename).suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        log.warning("Rejected upload with unsupported extension '%s'", suffix)
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Allowed: {', '.join(SUPPORTED_EXTENSIONS)}",
        )

    total = 0
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        tmp_path = tmp.name
        while True:
            chunk = await upload.read(CHUNK_BYTES)
            if not chunk:
                break
            total += len(chunk)
            if total > max_bytes:
                break
            tmp.write(chunk)

    if total == 0 or total > max_bytes:
        _cleanup(tmp_path)
        if total == 0:
            log.warning("Empty file upload rejected")
            raise HTTPException(status_code=400, detail="Empty upload.")
        log.warning("Upload larger than %d bytes rejected", max_bytes)
        raise HTTPException(status_code=413, detail="File too large.")

    log_detail("File size", f"{total / 1024:.1f} KB")
    return tmp_path


def _cleanup(tmp_path: Optional[str]) -> None:
    if tmp_path and os.path.exists(tmp_path):
        os.remove(tmp_path)
        log.debug("Temporary file cleaned up")


def _song_summary(record) -> Dict[str, Any]:
    return {
        "track_id": record.track_id,
        "title": record.title,
        "artist": record.artist,
        "album": record.album,
        "duration": record.duration_seconds,
        "fingerprint_count": record.fingerprint_count,
    }


# -----------------------------
# App Initialization
# -----------------------------

def create_app(recognizer: Optional[SongRecognizer] = None,
               max_upload_bytes: int = config_app.MAX_UPLOAD_BYTES) -> FastAPI:
    if recognizer is None:
        setup_logging()
        log_section("🎵 SongMatch API Server")
        recognizer = build_recognizer()
        log_section("🚀 Server Ready")

    app = FastAPI(title="SongMatch API", version="1.0")
    app.state.recognizer = recognizer

    # -----------------------------
    # Error mapping
    # -----------------------------

    @app.exception_handler(TrackNotFoundError)
    async def track_not_found(request: Request, exc: TrackNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": f"Song {exc.args[0]} not found"})

    @app.exception_handler(DecodeError)
    async def decode_failed(request: Request, exc: DecodeError) -> JSONResponse:
        log.warning("Decoding failed: %s", exc)
        return JSONResponse(status_code=422, content={"detail": f"Could not decode audio: {exc}"})

    @app.exception_handler(EmptyAudioError)
    @app.exception_handler(InsufficientDataError)
    async def unusable_audio(request: Request, exc: Exception) -> JSONResponse:
        log.warning("Unusable audio: %s", exc)
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_failed(request: Request, exc: StorageError) -> JSONResponse:
        log.error("Catalog unavailable: %s", exc)
        return JSONResponse(status_code=503, content={"detail": "Fingerprint catalog unavailable"})

    # -----------------------------
    # API endpoints
    # -----------------------------

    @app.get("/health")
    def health() -> Dict[str, str]:
        log.debug("Health check requested")
        return {"status": "ok"}

    @app.post("/songs", status_code=201)
    async def add_song(
        audio: UploadFile = File(...),
        title: str = Form(...),
        artist: str = Form("Unknown Artist"),
        album: str = Form(""),
    ) -> Dict[str, Any]:
        log.info("🎼 New song upload received")
        log_detail("Title", title)
        log_detail("Filename", audio.filename or "unknown")

        tmp_path = None
        try:
            tmp_path = await _save_upload(audio, max_upload_bytes)
            metadata = TrackMetadata(title=title, artist=artist, album=album,
                                     filename=audio.filename or "")
            record = await run_in_threadpool(recognizer.ingest_file, tmp_path, metadata)
        finally:
            _cleanup(tmp_path)

        log_success(f"Added '{record.title}' ({record.fingerprint_count} fingerprints)")
        return _song_summary(record)

    @app.get("/songs")
    def list_songs() -> list:
        return [record.to_dict() for record in recognizer.list_tracks()]

    @app.get("/songs/{track_id}")
    def get_song(track_id: str) -> Dict[str, Any]:
        record = recognizer.get_track(track_id)
        data = record.to_dict()
        data["fingerprints"] = [lm.to_dict() for lm in recognizer.get_fingerprints(track_id, limit=5)]
        return data

    @app.get("/songs/{track_id}/fingerprints")
    def get_song_fingerprints(track_id: str) -> Dict[str, Any]:
        record = recognizer.get_track(track_id)
        sample = recognizer.get_fingerprints(track_id, limit=10)
        return {
            "track_id": track_id,
            "count": record.fingerprint_count,
            "sample": [lm.to_dict() for lm in sample],
        }

    @app.delete("/songs/{track_id}")
    def delete_song(track_id: str) -> Dict[str, str]:
        if not recognizer.remove_track(track_id):
            raise TrackNotFoundError(track_id)
        return {"message": f"Song {track_id} deleted"}

    @app.post("/recognize")
    async def recognize(audio: UploadFile = File(...)) -> Dict[str, Any]:
        log.info("🎧 New recognition request received")
        log_detail("Filename", audio.filename or "unknown")

        tmp_path = None
        try:
            tmp_path = await _save_upload(audio, max_upload_bytes)
            result = await run_in_threadpool(recognizer.recognize_file, tmp_path)
        finally:
            _cleanup(tmp_path)

        best = result.best
        if best is not None:
            log_success(f"Match found: '{best.title}' (confidence: {best.confidence:.2%})")
        else:
            log.warning("No match found (status: %s)", result.status)

        response: Dict[str, Any] = {
            "success": best is not None,
            "status": result.status,
            "candidates": [c.to_dict() for c in result.candidates],
            "sample_duration": result.sample_duration,
            "fingerprint_count": result.fingerprint_count,
        }
        if best is not None:
            response["match"] = best.to_dict()
        return response

    return app


app = create_app()
