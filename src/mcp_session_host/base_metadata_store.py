"""
Abstract Base Metadata Store

This module contains the abstract base class that defines the interface
for all session metadata storage implementations.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from .session_metadata import SessionMetadata
from .storage_types import StoreBackend

logger = logging.getLogger(__name__)


class MetadataStore(ABC):
    """
    Abstract base class for session metadata storage.

    This class defines the interface that all metadata backends must follow.
    The InstanceManager uses this interface to persist and look up the
    reconstructable identity of sessions without knowing the underlying
    storage mechanism.

    The interface is designed to support:
    - Whole-record writes (no partial updates)
    - Lazy expiry on read plus an explicit sweep
    - Interchangeable in-process, file, disk cache and networked backends

    Corrupt durable content is never fatal: backends log it and treat the
    affected records as absent.
    """

    backend: StoreBackend

    def __init__(self, default_ttl_seconds: float) -> None:
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        self.default_ttl_seconds = default_ttl_seconds
        self._cleanup_task: asyncio.Task[None] | None = None

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit - release backend resources."""
        await self.close()

    def _prepare(self, session_id: str, metadata: SessionMetadata) -> SessionMetadata:
        """Check the key matches the record and fill expires_at from the default TTL."""
        if metadata.session_id != session_id:
            raise ValueError(
                f"Metadata session_id {metadata.session_id!r} does not match {session_id!r}"
            )
        return metadata.with_expiry(self.default_ttl_seconds)

    @abstractmethod
    async def store_session(self, session_id: str, metadata: SessionMetadata) -> None:
        """
        Insert or fully replace the record for a session.

        Args:
            session_id: The session identifier
            metadata: The complete session record; expires_at is computed
                from the default TTL when unset
        """
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> SessionMetadata | None:
        """
        Get the record for a session.

        An expired record is deleted before returning None.

        Args:
            session_id: The session identifier

        Returns:
            The session metadata, or None if absent or expired
        """
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """
        Remove the record for a session. Deleting an unknown id is not an error.

        Args:
            session_id: The session identifier
        """
        pass

    @abstractmethod
    async def cleanup(self) -> int:
        """
        Remove every expired record.

        Returns:
            Number of records removed
        """
        pass

    @abstractmethod
    async def get_session_count(self) -> int:
        """
        Get the number of records currently held.

        Returns:
            Record count
        """
        pass

    # Periodic cleanup
    async def _cleanup_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.cleanup()
            except Exception as e:  # noqa: BLE001
                logger.error(
                    "Periodic cleanup of %s failed: %s", self.__class__.__name__, e
                )

    def start_periodic_cleanup(self, interval_seconds: float = 5 * 60) -> None:
        """Run cleanup() every interval_seconds. Requires a running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._cleanup_loop(interval_seconds)
        )
        logger.debug(
            "Periodic cleanup of %s started (interval=%ss)",
            self.__class__.__name__,
            interval_seconds,
        )

    async def stop_periodic_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        """Release backend resources. Durable records are left in place."""
        await self.stop_periodic_cleanup()
