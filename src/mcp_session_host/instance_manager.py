"""
Instance Manager

Mediates all access to live per-session objects. Session metadata lives in
a MetadataStore (serializable, durable); server + transport instances live
in an in-process cache (non-serializable) and are rebuilt from metadata on
a cache miss. Any process sharing the metadata store can serve any session.

Concurrency model:
- Everything runs on one asyncio event loop. Cache and in-flight maps are
  only mutated between await points, so no locks are needed.
- Reconstructions are single-flight: the first caller for a session starts
  a task and registers it in the in-flight map before its first await;
  later callers await the same task and receive the same instance.
- The in-flight entry is removed by the task itself, in the same step that
  settles it, so a failed reconstruction never leaves a stuck marker.
- Deleting a session (or disposing the manager) invalidates in-flight
  reconstructions; an invalidated reconstruction closes what it built
  instead of caching it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .base_metadata_store import MetadataStore
from .errors import ReconstructionError, SessionNotFoundError
from .instance_factory import (
    FastMCPInstanceFactory,
    InstanceFactory,
    RequestContext,
    ServerInstance,
)
from .session_metadata import AuthInfo, SessionMetadata, now_ms
from .storage_types import InstanceStats
from .system_utils import log_instance_status
from .tool_registry import ToolRegistry
from .utils.session_utils import short_id, validate_session_id

logger = logging.getLogger(__name__)


class InstanceManager:
    """
    Cache of live session instances backed by durable session metadata.

    Eviction from the cache is not session termination: an evicted session
    whose metadata is still valid is simply rebuilt on its next request.
    """

    def __init__(
        self,
        metadata_store: MetadataStore,
        tool_registry: ToolRegistry,
        instance_factory: InstanceFactory | None = None,
        *,
        session_ttl_seconds: float = 30 * 60,
        idle_ttl_seconds: float = 10 * 60,
        sweep_interval_seconds: float = 5 * 60,
        reconstruction_timeout_seconds: float | None = 30.0,
        store_cleanup_interval_seconds: float | None = None,
    ) -> None:
        """
        Initialize InstanceManager.

        Args:
            metadata_store: Durable store of session metadata
            tool_registry: Tools every reconstructed handler is populated with
            instance_factory: Builds handler + transport pairs; FastMCP by default
            session_ttl_seconds: Lifetime of metadata written by store_session_metadata
            idle_ttl_seconds: Idle time after which a cached instance is evicted
            sweep_interval_seconds: Interval between idle sweeps
            reconstruction_timeout_seconds: Upper bound on one reconstruction,
                None to wait indefinitely
            store_cleanup_interval_seconds: When set, start() also runs the
                metadata store's periodic cleanup at this interval
        """
        if session_ttl_seconds <= 0 or idle_ttl_seconds <= 0:
            raise ValueError("TTL values must be positive")
        self._store = metadata_store
        self._tool_registry = tool_registry
        self._factory = instance_factory or FastMCPInstanceFactory()
        self._session_ttl_ms = max(1, int(session_ttl_seconds * 1000))
        self._idle_ttl_ms = max(1, int(idle_ttl_seconds * 1000))
        self._sweep_interval_seconds = sweep_interval_seconds
        self._reconstruction_timeout_seconds = reconstruction_timeout_seconds
        self._store_cleanup_interval_seconds = store_cleanup_interval_seconds

        self._instances: dict[str, ServerInstance] = {}
        self._pending: dict[str, asyncio.Task[ServerInstance]] = {}
        self._sweep_task: asyncio.Task[None] | None = None
        self._last_sweep = now_ms()
        self._reconstructions = 0
        self._evictions = 0

        logger.info(
            "InstanceManager initialized (store=%s, idle_ttl=%ss)",
            metadata_store.__class__.__name__,
            idle_ttl_seconds,
        )

    async def __aenter__(self) -> InstanceManager:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()

    @property
    def metadata_store(self) -> MetadataStore:
        return self._store

    # Session establishment
    async def store_session_metadata(
        self,
        session_id: str,
        auth_info: AuthInfo | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SessionMetadata:
        """
        Persist metadata for a newly established session.

        Args:
            session_id: The session identifier issued by the transport layer
            auth_info: Authenticated principal, if any
            metadata: Extra data the factory needs to rebuild the handler

        Returns:
            The stored SessionMetadata
        """
        session_id = validate_session_id(session_id)
        created_at = now_ms()
        record = SessionMetadata(
            session_id=session_id,
            created_at=created_at,
            expires_at=created_at + self._session_ttl_ms,
            auth_info=auth_info,
            metadata=dict(metadata or {}),
        )
        await self._store.store_session(session_id, record)
        logger.debug(
            "Session metadata stored: %s (hasAuth=%s)",
            short_id(session_id),
            auth_info is not None,
        )
        return record

    # Hot path
    async def get_or_recreate_instance(
        self, session_id: str, request_context: RequestContext | None = None
    ) -> ServerInstance:
        """
        Return the live instance for a session, rebuilding it from metadata on a miss.

        Raises:
            SessionNotFoundError: No valid metadata exists for the session
            ReconstructionError: The instance factory failed
            StoreUnavailableError: The metadata backend could not be read
        """
        session_id = validate_session_id(session_id)

        lapsed = None
        instance = self._instances.get(session_id)
        if instance is not None:
            if not instance.metadata.is_expired():
                instance.touch()
                return instance
            # Metadata expired while cached; the store decides if the session lives on
            lapsed = self._instances.pop(session_id)

        task = self._pending.get(session_id)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._reconstruct(session_id, request_context or RequestContext())
            )
            task.add_done_callback(self._retrieve_result)
            self._pending[session_id] = task
        else:
            logger.debug("Joining in-flight reconstruction for %s", short_id(session_id))

        if lapsed is not None:
            await self._close_instance(lapsed)
        if self._sweep_due():
            await self.evict_idle_instances()

        # Shielded so a cancelled caller does not cancel the shared reconstruction
        return await asyncio.shield(task)

    async def _build_instance(
        self, session_id: str, request_context: RequestContext
    ) -> ServerInstance:
        metadata = await self._store.get_session(session_id)
        if metadata is None:
            logger.info("Session not found or expired: %s", short_id(session_id))
            raise SessionNotFoundError(session_id)

        now = now_ms()
        logger.info(
            "Reconstructing instance for %s (age=%ss, ttl=%ss, hasAuth=%s)",
            short_id(session_id),
            (now - metadata.created_at) // 1000,
            metadata.remaining_ms(now) // 1000,
            metadata.auth_info is not None,
        )

        try:
            return await self._factory.create_instance(
                session_id, metadata, self._tool_registry, request_context
            )
        except Exception as e:
            logger.error(
                "Failed to reconstruct instance for %s: %s", short_id(session_id), e
            )
            raise ReconstructionError(session_id, str(e)) from e

    async def _reconstruct(
        self, session_id: str, request_context: RequestContext
    ) -> ServerInstance:
        task = asyncio.current_task()
        try:
            try:
                instance = await asyncio.wait_for(
                    self._build_instance(session_id, request_context),
                    self._reconstruction_timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                logger.error(
                    "Reconstruction of %s timed out after %ss",
                    short_id(session_id),
                    self._reconstruction_timeout_seconds,
                )
                raise ReconstructionError(
                    session_id,
                    f"timed out after {self._reconstruction_timeout_seconds}s",
                ) from e

            if self._pending.get(session_id) is not task:
                # Deleted or disposed while the instance was being built
                await self._close_instance(instance)
                raise SessionNotFoundError(session_id)

            instance.touch()
            self._instances[session_id] = instance
            self._reconstructions += 1
            logger.debug(
                "Instance cached for %s (cache size %s)",
                short_id(session_id),
                len(self._instances),
            )
            return instance
        finally:
            if self._pending.get(session_id) is task:
                del self._pending[session_id]

    @staticmethod
    def _retrieve_result(task: asyncio.Task[ServerInstance]) -> None:
        # Marks the exception as retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    # Termination and eviction
    async def delete_session(self, session_id: str) -> None:
        """Terminate a session: drop its cached instance and its durable metadata."""
        session_id = validate_session_id(session_id)
        await self._store.delete_session(session_id)

        invalidated = self._pending.pop(session_id, None) is not None
        instance = self._instances.pop(session_id, None)
        if instance is not None:
            await self._close_instance(instance)

        logger.debug(
            "Session fully deleted: %s (hadInstance=%s, invalidatedPending=%s)",
            short_id(session_id),
            instance is not None,
            invalidated,
        )

    async def evict_instance(self, session_id: str) -> bool:
        """Drop one cached instance without touching its metadata."""
        instance = self._instances.pop(session_id, None)
        if instance is None:
            return False
        await self._close_instance(instance)
        self._evictions += 1
        return True

    async def evict_idle_instances(self, now: int | None = None) -> int:
        """
        Evict cached instances idle for longer than the idle TTL.

        Args:
            now: Reference time in ms, defaults to the current time

        Returns:
            Number of instances evicted
        """
        now = now_ms() if now is None else now
        self._last_sweep = now
        idle = [
            session_id
            for session_id, instance in self._instances.items()
            if instance.idle_ms(now) > self._idle_ttl_ms
        ]
        evicted = [self._instances.pop(session_id) for session_id in idle]
        self._evictions += len(evicted)

        for instance in evicted:
            await self._close_instance(instance)

        if evicted:
            logger.info(
                "Evicted %s idle instances (idle_ttl=%ss, %s remaining)",
                len(evicted),
                self._idle_ttl_ms // 1000,
                len(self._instances),
            )
        return len(evicted)

    def _sweep_due(self) -> bool:
        return now_ms() - self._last_sweep >= self._sweep_interval_seconds * 1000

    async def _close_instance(self, instance: ServerInstance) -> None:
        try:
            await instance.close()
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Failed to close transport for %s: %s", short_id(instance.session_id), e
            )

    # Observability
    def has_instance(self, session_id: str) -> bool:
        return session_id in self._instances

    def get_stats(self) -> InstanceStats:
        now = now_ms()
        oldest = max(
            (instance.idle_ms(now) for instance in self._instances.values()),
            default=0,
        )
        return InstanceStats(
            cached_instances=len(self._instances),
            oldest_instance_age_ms=max(0, oldest),
            pending_reconstructions=len(self._pending),
            reconstructions=self._reconstructions,
            evictions=self._evictions,
        )

    # Lifecycle
    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval_seconds)
            try:
                await self.evict_idle_instances()
                log_instance_status(self.get_stats(), self._store.__class__.__name__)
            except Exception as e:  # noqa: BLE001
                logger.error("Idle instance sweep failed: %s", e)

    def start(self) -> None:
        """Start the periodic idle sweep. Requires a running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
        if self._store_cleanup_interval_seconds:
            self._store.start_periodic_cleanup(self._store_cleanup_interval_seconds)

    async def dispose(self) -> None:
        """
        Release every cached instance and stop background work.

        The metadata store's records are left untouched: durable session
        identity must survive a manager shutdown, and the store may be shared.
        Only the periodic cleanup started by start() is stopped.
        """
        sweep_task, self._sweep_task = self._sweep_task, None
        if sweep_task is not None:
            sweep_task.cancel()

        pending = list(self._pending.values())
        self._pending.clear()
        for task in pending:
            task.cancel()

        instances = list(self._instances.values())
        self._instances.clear()

        await asyncio.gather(
            *pending, *([sweep_task] if sweep_task else []), return_exceptions=True
        )
        for instance in instances:
            await self._close_instance(instance)
        if self._store_cleanup_interval_seconds:
            await self._store.stop_periodic_cleanup()

        logger.info(
            "InstanceManager disposed (%s instances released, %s reconstructions cancelled)",
            len(instances),
            len(pending),
        )
