"""
Redis-based Metadata Store Implementation

Provides shared, persistent session metadata for multi-instance and
serverless deployments: the only backend where a record written by one
process is visible to an entirely different one.

Each record is a JSON string under "mcp:session:<id>", written with
SET ... PX so Redis expires it natively at expires_at. Read paths still
check expires_at and delete stale records, matching the other backends.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import redis.asyncio as redis
from redis.exceptions import RedisError

from .base_metadata_store import MetadataStore
from .errors import CorruptSessionStateError, StoreUnavailableError
from .session_metadata import SessionMetadata, now_ms
from .storage_types import StoreBackend
from .utils.session_utils import short_id, validate_session_id

logger = logging.getLogger(__name__)


def mask_url(url: str) -> str:
    """Hide the password of a Redis URL for logging."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "invalid-url"
    if not parts.password:
        return url
    netloc = parts.hostname or ""
    if parts.username:
        netloc = f"{parts.username}:***@{netloc}"
    else:
        netloc = f":***@{netloc}"
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class RedisMetadataStore(MetadataStore):
    """Redis implementation of the MetadataStore interface."""

    backend = StoreBackend.REDIS

    def __init__(
        self,
        redis_url: str | None = None,
        default_ttl_seconds: float = 30 * 60,
        key_prefix: str = "mcp:session:",
        client: Any | None = None,
    ) -> None:
        """
        Initialize Redis metadata store.

        Args:
            redis_url: Redis connection string; falls back to REDIS_URL
            default_ttl_seconds: TTL applied to records stored without expires_at
            key_prefix: Key prefix to avoid collisions with other data
            client: Pre-built redis.asyncio client, used instead of redis_url
        """
        super().__init__(default_ttl_seconds)
        self._prefix = key_prefix
        if client is not None:
            self._redis = client
            logger.info("RedisMetadataStore initialized with provided client")
            return

        url = redis_url or os.environ.get("REDIS_URL")
        if not url:
            raise ValueError(
                "Redis URL not configured. Set REDIS_URL or pass redis_url"
            )
        self._redis = redis.from_url(url)
        logger.info("RedisMetadataStore initialized: %s", mask_url(url))

    def _get_key(self, session_id: str) -> str:
        """Get the Redis key for a session."""
        return f"{self._prefix}{session_id}"

    async def _fetch(self, key: Any) -> Any:
        try:
            return await self._redis.get(key)
        except UnicodeDecodeError as e:
            # Clients built with decode_responses=True fail inside get()
            raise CorruptSessionStateError(f"Invalid session record encoding: {e}") from e

    def _decode(self, raw: Any) -> SessionMetadata:
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            return SessionMetadata.from_dict(json.loads(raw))
        except (TypeError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptSessionStateError(f"Invalid session record: {e}") from e

    async def store_session(self, session_id: str, metadata: SessionMetadata) -> None:
        session_id = validate_session_id(session_id)
        record = self._prepare(session_id, metadata)
        ttl_ms = max(record.remaining_ms(), 1)
        serialized = json.dumps(record.to_dict())
        try:
            await self._redis.set(self._get_key(session_id), serialized, px=ttl_ms)
        except (RedisError, OSError) as e:
            logger.error(
                "Failed to store session %s in Redis: %s", short_id(session_id), e
            )
            raise StoreUnavailableError(f"Redis write failed: {e}") from e
        logger.debug(
            "Session stored in Redis: %s (ttl=%sms, %s bytes)",
            short_id(session_id),
            ttl_ms,
            len(serialized),
        )

    async def get_session(self, session_id: str) -> SessionMetadata | None:
        session_id = validate_session_id(session_id)
        key = self._get_key(session_id)
        try:
            raw = await self._fetch(key)
            record = None if raw is None else self._decode(raw)
        except (RedisError, OSError) as e:
            logger.error("Failed to get session %s from Redis: %s", short_id(session_id), e)
            raise StoreUnavailableError(f"Redis read failed: {e}") from e
        except CorruptSessionStateError as e:
            logger.error("Deleting corrupted session record %s: %s", key, e)
            await self.delete_session(session_id)
            return None

        if record is None:
            logger.debug("Session not found in Redis: %s", short_id(session_id))
            return None

        if record.is_expired():
            logger.debug("Session expired in Redis: %s", short_id(session_id))
            await self.delete_session(session_id)
            return None

        return record

    async def delete_session(self, session_id: str) -> None:
        session_id = validate_session_id(session_id)
        try:
            await self._redis.delete(self._get_key(session_id))
        except (RedisError, OSError) as e:
            logger.error(
                "Failed to delete session %s from Redis: %s", short_id(session_id), e
            )
            raise StoreUnavailableError(f"Redis delete failed: {e}") from e
        logger.debug("Session deleted from Redis: %s", short_id(session_id))

    async def cleanup(self) -> int:
        # Redis expires keys natively; this catches records whose expires_at
        # passed before their PX deadline, plus unreadable values.
        now = now_ms()
        removed = 0
        try:
            async for key in self._redis.scan_iter(match=f"{self._prefix}*"):
                try:
                    raw = await self._fetch(key)
                    if raw is None:
                        continue
                    expired = self._decode(raw).is_expired(now)
                except CorruptSessionStateError as e:
                    logger.error("Deleting corrupted session record %s: %s", key, e)
                    expired = True
                if expired:
                    removed += await self._redis.delete(key)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(f"Redis cleanup failed: {e}") from e

        if removed:
            logger.info("Cleaned up %s expired sessions from Redis", removed)
        return removed

    async def get_session_count(self) -> int:
        count = 0
        try:
            async for _ in self._redis.scan_iter(match=f"{self._prefix}*"):
                count += 1
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(f"Redis count failed: {e}") from e
        return count

    async def close(self) -> None:
        await self.stop_periodic_cleanup()
        logger.info("Closing Redis metadata store")
        await self._redis.aclose()
