import os
from pathlib import Path

# Service settings, read from the environment.

DB_PATH = os.environ.get("SONGMATCH_DB_PATH", str(Path("fingerprints") / "songmatch.sqlite"))
STORE = os.environ.get("SONGMATCH_STORE", "sqlite").lower()  # "sqlite" | "memory"
CONFIG_PATH = os.environ.get("SONGMATCH_CONFIG") or None
MAX_UPLOAD_MB = float(os.environ.get("SONGMATCH_MAX_UPLOAD_MB", "25"))
MAX_UPLOAD_BYTES = int(MAX_UPLOAD_MB * 1024 * 1024)
