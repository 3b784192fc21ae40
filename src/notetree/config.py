"""Configuration constants for notetree."""

import os
from pathlib import Path

# Directory with the notes database. First directory which is found is used.
DATA_DIRECTORIES: list[Path] = [
    Path("~/.local/share/notetree").expanduser(),
    Path("~/.notetree").expanduser(),
    Path("~/.config/notetree").expanduser(),
]

DB_FILENAME = "notes.db"

# Notepad server used by the HTTP store adapter.
API_BASE_URL: str = os.environ.get("NOTETREE_API_BASE", "http://127.0.0.1:27121")

# Seconds before an HTTP store request is abandoned.
REQUEST_TIMEOUT: float = 10.0

# Fixed distance between a drop target's sort key and the dropped node's key.
SORT_STEP: float = 1.0

# Undo stack bound. None keeps every entry.
MAX_HISTORY_DEPTH: int | None = (
    int(os.environ["NOTETREE_MAX_HISTORY"]) if os.environ.get("NOTETREE_MAX_HISTORY") else None
)

# Max nodes kept in the fallback cache used when the store is unreachable.
NODE_CACHE_SIZE: int = 5000

MAX_TITLE_LENGTH: int = 100
ILLEGAL_TITLE_CHARS: str = '\\/:*?"<>|'

# Soft-deleted nodes older than this are purged for good.
PURGE_AFTER_DAYS: int = 30


def resolve_data_directory() -> Path:
    """Return the first existing data directory, or the first candidate as fallback."""
    for candidate in DATA_DIRECTORIES:
        if candidate.is_dir():
            return candidate
    return DATA_DIRECTORIES[0]
