"""
DiskCache-based Metadata Store Implementation

A filesystem-backed metadata store using the diskcache library. Records
are JSON strings stored under "session:<id>" with a native per-key expiry,
so diskcache itself stops returning a record once it has expired.

Key Benefits:
- Survives restarts like the JSON file store
- Safe for several processes on one host (SQLite handles locking)
- Built-in TTL support with automatic expiration
- Corrupt entries are deleted on sight (self-healing)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from pathlib import Path

import diskcache

from .base_metadata_store import MetadataStore
from .errors import CorruptSessionStateError, StoreUnavailableError
from .session_metadata import SessionMetadata, now_ms
from .storage_types import StoreBackend
from .utils.session_utils import short_id, validate_session_id

logger = logging.getLogger(__name__)

KEY_PREFIX = "session:"

_BACKEND_ERRORS = (OSError, sqlite3.Error, diskcache.Timeout)


class DiskCacheMetadataStore(MetadataStore):
    """
    Filesystem-based MetadataStore using diskcache.

    Blocking diskcache calls run in a worker thread so the event loop keeps
    serving other sessions while SQLite does its I/O.
    """

    backend = StoreBackend.DISKCACHE

    def __init__(
        self,
        cache_dir: str = "/tmp/mcp_sessions",
        default_ttl_seconds: float = 7 * 24 * 60 * 60,  # 7 days
    ) -> None:
        """
        Initialize DiskCacheMetadataStore.

        Args:
            cache_dir: Directory for cache storage
            default_ttl_seconds: TTL applied to records stored without expires_at
        """
        super().__init__(default_ttl_seconds)
        self._cache_dir = Path(cache_dir)
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        self._cache = diskcache.Cache(directory=str(self._cache_dir))
        logger.info(
            "DiskCacheMetadataStore initialized (dir=%s, ttl=%ss)",
            self._cache_dir,
            default_ttl_seconds,
        )

    def _get_key(self, session_id: str) -> str:
        """Get cache key for a session record."""
        return f"{KEY_PREFIX}{session_id}"

    async def _run(self, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except _BACKEND_ERRORS as e:
            raise StoreUnavailableError(f"Disk cache operation failed: {e}") from e

    def _decode(self, key: str, raw: object) -> SessionMetadata | None:
        """Parse a stored value, deleting it if it is corrupt."""
        try:
            if not isinstance(raw, str):
                raise CorruptSessionStateError(f"Unexpected value type {type(raw).__name__}")
            return SessionMetadata.from_dict(json.loads(raw))
        except (json.JSONDecodeError, CorruptSessionStateError) as e:
            logger.error("Deleting corrupted session metadata %s: %s", key, e)
            self._cache.delete(key)
            return None

    def _lookup(self, session_id: str) -> SessionMetadata | None:
        key = self._get_key(session_id)
        raw = self._cache.get(key)
        if raw is None:
            return None
        return self._decode(key, raw)

    # MetadataStore interface implementation
    async def store_session(self, session_id: str, metadata: SessionMetadata) -> None:
        session_id = validate_session_id(session_id)
        record = self._prepare(session_id, metadata)
        expire = max(record.remaining_ms(), 1) / 1000
        serialized = json.dumps(record.to_dict())
        await self._run(self._cache.set, self._get_key(session_id), serialized, expire=expire)
        logger.debug(
            "Session stored in disk cache: %s (%s bytes)",
            short_id(session_id),
            len(serialized),
        )

    async def get_session(self, session_id: str) -> SessionMetadata | None:
        session_id = validate_session_id(session_id)
        record = await self._run(self._lookup, session_id)
        if record is None:
            logger.debug("Session not found in disk cache: %s", short_id(session_id))
            return None

        if record.is_expired():
            logger.warning("Session expired in disk cache: %s", short_id(session_id))
            await self.delete_session(session_id)
            return None

        return record

    async def delete_session(self, session_id: str) -> None:
        session_id = validate_session_id(session_id)
        if await self._run(self._cache.delete, self._get_key(session_id)):
            logger.debug("Session deleted from disk cache: %s", short_id(session_id))

    def _sweep(self) -> int:
        removed = self._cache.expire()
        now = now_ms()
        for key in list(self._cache.iterkeys()):
            if not isinstance(key, str) or not key.startswith(KEY_PREFIX):
                continue
            raw = self._cache.get(key)
            if raw is None:
                continue
            record = self._decode(key, raw)
            if record is None:
                # _decode already deleted it
                removed += 1
            elif record.is_expired(now) and self._cache.delete(key):
                removed += 1
        return removed

    async def cleanup(self) -> int:
        removed = await self._run(self._sweep)
        if removed:
            logger.info("Cleaned up %s expired sessions from disk cache", removed)
        return removed

    def _count(self) -> int:
        # len() includes entries that expired but were not culled yet
        self._cache.expire()
        return len(self._cache)

    async def get_session_count(self) -> int:
        return await self._run(self._count)

    async def close(self) -> None:
        """Close the cache and cleanup resources."""
        await self.stop_periodic_cleanup()
        self._cache.close()
        logger.info("DiskCacheMetadataStore closed")
