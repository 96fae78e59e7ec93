"""Persistent content-addressed cache of OCR results."""

from __future__ import annotations

import hashlib
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from .imaging import RasterImage
from .types import CacheEntry

CACHE_VERSION = "ppocr-v2"


def rolling_hash(text: str) -> int:
    """Cheap deterministic 32-bit string hash (``h = h * 31 + c``, wrapped signed)."""
    h = 0
    for ch in text:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def content_hash(data: Optional[bytes] = None, ref: Optional[str] = None) -> str:
    """Key for image content: SHA-1 of the bytes, else a hash of the reference."""
    if data:
        return "b:" + hashlib.sha1(data).hexdigest()
    if ref is None:
        raise ValueError("content_hash needs image bytes or a reference")
    return f"u:{rolling_hash(ref)}"


def image_hash(image: RasterImage, ref: Optional[str] = None) -> str:
    """Hash the encoded bytes if known, otherwise the reference or raw pixels."""
    if image.data:
        return content_hash(data=image.data)
    if ref is not None:
        return content_hash(ref=ref)
    shape = ("%dx%d:" % (image.width, image.height)).encode()
    return content_hash(data=shape + image.pixels.tobytes())


class ContentCache:
    """SQLite-backed store of OCR results, one row per content hash.

    Holds at most ``max_entries`` rows; the least recently read or written
    rows are evicted first. Entries written under another cache version read
    as misses.
    """

    def __init__(self, path: Path | str, max_entries: int = 2000, version: str = CACHE_VERSION) -> None:
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._max_entries = max_entries
        self._version = version
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ocr_cache (
                    hash TEXT PRIMARY KEY,
                    version TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    accessed INTEGER NOT NULL,
                    payload TEXT NOT NULL
                )
                """
            )
        row = self._conn.execute("SELECT MAX(accessed) FROM ocr_cache").fetchone()
        self._clock = int(row[0] or 0)
        logger.debug("Opened OCR cache at {}", self._path)

    @property
    def version(self) -> str:
        return self._version

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            row = self._conn.execute(
                "SELECT version, payload FROM ocr_cache WHERE hash = ?", (key,)
            ).fetchone()
            if row is None:
                return None
            version, payload = row
            if version != self._version:
                logger.debug("Cache entry {} has stale version {}", key, version)
                return None
            with self._conn:
                self._conn.execute(
                    "UPDATE ocr_cache SET accessed = ? WHERE hash = ?", (self._tick(), key)
                )
        try:
            return CacheEntry.model_validate_json(payload)
        except ValueError as exc:
            logger.warning("Dropping unreadable cache entry {}: {}", key, exc)
            self.delete(key)
            return None

    def put(self, entry: CacheEntry) -> bool:
        """Store ``entry``; returns False (and stores nothing) when it has no lines."""
        if not entry.lines:
            logger.debug("Refusing to cache empty result for {}", entry.hash)
            return False
        payload = entry.model_dump_json()
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO ocr_cache (hash, version, timestamp, accessed, payload) "
                "VALUES (?, ?, ?, ?, ?)",
                (entry.hash, entry.version, entry.timestamp, self._tick(), payload),
            )
            self._evict()
        return True

    def delete(self, key: str) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM ocr_cache WHERE hash = ?", (key,))

    def clear(self) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM ocr_cache")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __len__(self) -> int:
        with self._lock:
            return int(self._conn.execute("SELECT COUNT(*) FROM ocr_cache").fetchone()[0])

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def _tick(self) -> int:
        # monotonic access counter, persisted in the accessed column
        self._clock += 1
        return self._clock

    def _evict(self) -> None:
        count = int(self._conn.execute("SELECT COUNT(*) FROM ocr_cache").fetchone()[0])
        excess = count - self._max_entries
        if excess <= 0:
            return
        self._conn.execute(
            "DELETE FROM ocr_cache WHERE hash IN "
            "(SELECT hash FROM ocr_cache ORDER BY accessed ASC LIMIT ?)",
            (excess,),
        )
        logger.debug("Evicted {} cache entries", excess)

