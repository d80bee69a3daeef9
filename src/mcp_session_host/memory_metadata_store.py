"""
In-Memory Metadata Store Implementation (Cacheout-backed)

Provides a MetadataStore for a single long-lived process. Records are held
in a Cacheout LRU cache keyed by session_id.

Design notes:
- Each record is stored with a per-key TTL equal to its remaining lifetime,
  so Cacheout drops it on the first read past expires_at (lazy expiry).
- max_sessions bounds the map; the least recently read or written session
  is evicted first.
- Nothing survives the process. Use the file, diskcache or redis backend
  when sessions must outlive a restart.
"""

from __future__ import annotations

import logging
from typing import Optional, cast

from cacheout import LRUCache

from .base_metadata_store import MetadataStore
from .session_metadata import SessionMetadata, now_ms
from .storage_types import StoreBackend
from .utils.session_utils import short_id, validate_session_id

logger = logging.getLogger(__name__)


class MemoryMetadataStore(MetadataStore):
    """In-process MetadataStore with per-record TTL and LRU size cap."""

    backend = StoreBackend.MEMORY

    def __init__(
        self,
        default_ttl_seconds: float = 30 * 60,
        max_sessions: int = 10_000,
    ) -> None:
        super().__init__(default_ttl_seconds)
        self._max_sessions = max_sessions
        self._sessions = LRUCache(maxsize=max_sessions, ttl=0)
        logger.info(
            "MemoryMetadataStore initialized (ttl=%ss, max_sessions=%s)",
            default_ttl_seconds,
            max_sessions,
        )

    async def store_session(self, session_id: str, metadata: SessionMetadata) -> None:
        session_id = validate_session_id(session_id)
        record = self._prepare(session_id, metadata)
        ttl_seconds = max(record.remaining_ms(), 1) / 1000
        self._sessions.set(session_id, record, ttl=ttl_seconds)
        logger.debug(
            "Session metadata stored: %s (cache size %s)",
            short_id(session_id),
            len(self._sessions),
        )

    async def get_session(self, session_id: str) -> SessionMetadata | None:
        session_id = validate_session_id(session_id)
        record = cast(Optional[SessionMetadata], self._sessions.get(session_id))
        if record is None:
            logger.debug("Session metadata not found: %s", short_id(session_id))
            return None

        if record.is_expired():
            logger.warning("Session metadata expired: %s", short_id(session_id))
            await self.delete_session(session_id)
            return None

        return record

    async def delete_session(self, session_id: str) -> None:
        session_id = validate_session_id(session_id)
        if self._sessions.delete(session_id):
            logger.debug("Session metadata deleted: %s", short_id(session_id))

    async def cleanup(self) -> int:
        # Cacheout's timer and expires_at can disagree by a fraction of a millisecond
        now = now_ms()
        removed = 0
        # items() does not count as a use, so the LRU order is left alone
        for session_id, record in list(self._sessions.items()):
            if record.is_expired(now):
                removed += self._sessions.delete(session_id)
        removed += self._sessions.delete_expired()

        if removed:
            logger.info(
                "Cleaned up %s expired sessions (%s remaining)",
                removed,
                len(self._sessions),
            )
        return removed

    async def get_session_count(self) -> int:
        return len(self._sessions)

    async def close(self) -> None:
        await self.stop_periodic_cleanup()
        self._sessions.clear()
        logger.info("MemoryMetadataStore closed")
