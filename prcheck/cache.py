"""SQLite-backed response cache keyed by request signature."""

from __future__ import annotations

import hashlib
import logging
import os
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"
DEFAULT_CACHE_DB_PATH = Path.home() / ".cache" / "prcheck" / "github_cache.sqlite"
CACHE_DISABLED_ENV_VAR = "PRCHECK_CACHE_DISABLED"
CACHE_DB_PATH_ENV_VAR = "PRCHECK_CACHE_DB_PATH"


@dataclass(frozen=True, slots=True)
class RequestSignature:
    """Identifies one distinct remote query."""

    org: str
    repo: str
    kind: str
    resource_id: int | None = None

    @property
    def cache_key(self) -> str:
        """Stable digest used as the primary key of the cache table."""
        resource = "" if self.resource_id is None else str(self.resource_id)
        key_material = f"{self.org}\n{self.repo}\n{self.kind}\n{resource}\n{GITHUB_API_VERSION}"
        return hashlib.sha256(key_material.encode("utf-8")).hexdigest()

    def describe(self) -> str:
        """Human-readable form for log lines."""
        suffix = "" if self.resource_id is None else f"#{self.resource_id}"
        return f"{self.org}/{self.repo}:{self.kind}{suffix}"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Previously fetched payload and the time it was fetched."""

    cache_key: str
    payload: bytes
    fetched_at: float


class CacheStore:
    """Durable key/value store of API payloads.

    Entries are replaced whole by ``put`` and never deleted; deciding whether an
    entry is too old is left to the caller.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _open_connection(self) -> sqlite3.Connection:
        """Open a SQLite connection."""
        return sqlite3.connect(self._db_path)

    def _ensure_schema(self) -> None:
        """Create cache table if missing."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._open_connection() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS prcheck_response_cache (
                    cache_key TEXT PRIMARY KEY,
                    signature TEXT NOT NULL,
                    payload BLOB NOT NULL,
                    fetched_at REAL NOT NULL
                )
                """
            )

    def get(self, signature: RequestSignature) -> CacheEntry | None:
        """Read the entry stored for a signature."""
        with self._open_connection() as connection:
            row = connection.execute(
                """
                SELECT payload, fetched_at
                FROM prcheck_response_cache
                WHERE cache_key = ?
                """,
                (signature.cache_key,),
            ).fetchone()

        if row is None:
            return None
        return CacheEntry(
            cache_key=signature.cache_key,
            payload=bytes(row[0]),
            fetched_at=float(row[1]),
        )

    def put(
        self,
        signature: RequestSignature,
        payload: bytes,
        *,
        fetched_at: float | None = None,
    ) -> CacheEntry:
        """Insert or replace the entry for a signature."""
        entry = CacheEntry(
            cache_key=signature.cache_key,
            payload=payload,
            fetched_at=time.time() if fetched_at is None else fetched_at,
        )
        with self._open_connection() as connection:
            connection.execute(
                """
                INSERT INTO prcheck_response_cache (cache_key, signature, payload, fetched_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    signature=excluded.signature,
                    payload=excluded.payload,
                    fetched_at=excluded.fetched_at
                """,
                (
                    entry.cache_key,
                    signature.describe(),
                    sqlite3.Binary(entry.payload),
                    entry.fetched_at,
                ),
            )
        return entry


def default_cache_path() -> Path:
    """Return default cache path, optionally overridden by environment."""
    configured_path = os.getenv(CACHE_DB_PATH_ENV_VAR)
    if configured_path:
        return Path(configured_path)
    return DEFAULT_CACHE_DB_PATH


def open_default_cache() -> CacheStore | None:
    """Return the default cache store unless disabled or unreadable."""
    if os.getenv(CACHE_DISABLED_ENV_VAR) == "1":
        return None
    db_path = default_cache_path()
    try:
        return CacheStore(db_path)
    except sqlite3.Error as error:
        logger.warning(
            "Response cache at %s is unusable, continuing without it: %s", db_path, error
        )
        return None
