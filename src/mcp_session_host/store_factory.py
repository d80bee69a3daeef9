"""
Metadata Store Factory

Builds the metadata store described by a SessionHostConfig. In "auto" mode
the backend follows the environment:

- Redis URL configured: caching store over Redis (multi-instance, serverless)
- Not production, or a session file configured: caching store over a JSON file
- Otherwise: memory only, with a warning since nothing survives a restart
"""

from __future__ import annotations

import logging
import os
import tempfile

from .base_metadata_store import MetadataStore
from .caching_metadata_store import CachingMetadataStore
from .config import SessionHostConfig
from .diskcache_metadata_store import DiskCacheMetadataStore
from .file_metadata_store import FileMetadataStore
from .memory_metadata_store import MemoryMetadataStore
from .redis_metadata_store import RedisMetadataStore

logger = logging.getLogger(__name__)

DEFAULT_FILE_PATH = os.path.join("data", "mcp-sessions.json")


def _memory(config: SessionHostConfig) -> MemoryMetadataStore:
    return MemoryMetadataStore(default_ttl_seconds=config.session_ttl_seconds)


def _file(config: SessionHostConfig) -> FileMetadataStore:
    return FileMetadataStore(
        file_path=config.file_path or DEFAULT_FILE_PATH,
        default_ttl_seconds=config.session_ttl_seconds,
    )


def _diskcache(config: SessionHostConfig) -> DiskCacheMetadataStore:
    cache_dir = config.cache_dir or os.path.join(tempfile.gettempdir(), "mcp_sessions")
    return DiskCacheMetadataStore(
        cache_dir=cache_dir, default_ttl_seconds=config.session_ttl_seconds
    )


def _redis(config: SessionHostConfig) -> RedisMetadataStore:
    return RedisMetadataStore(
        redis_url=config.redis_url, default_ttl_seconds=config.session_ttl_seconds
    )


def create_metadata_store(config: SessionHostConfig | None = None) -> MetadataStore:
    """Create the metadata store selected by config (default: from environment)."""
    config = config or SessionHostConfig.from_env()
    store_type = config.store_type

    if store_type == "memory":
        return _memory(config)
    if store_type == "file":
        return _file(config)
    if store_type == "diskcache":
        return _diskcache(config)
    if store_type == "redis":
        return _redis(config)
    if store_type == "caching":
        secondary: MetadataStore | None = None
        if config.redis_url:
            secondary = _redis(config)
        elif config.file_path:
            secondary = _file(config)
        elif config.cache_dir:
            secondary = _diskcache(config)
        else:
            logger.info(
                "No Redis URL, session file or cache dir configured; "
                "caching metadata store is memory-only"
            )
        return CachingMetadataStore(_memory(config), secondary)

    # auto
    if config.redis_url:
        logger.info("Creating caching metadata store with Redis backend")
        return CachingMetadataStore(_memory(config), _redis(config))
    if not config.production or config.file_path:
        logger.info(
            "Creating caching metadata store with file backend (%s)",
            config.file_path or DEFAULT_FILE_PATH,
        )
        return CachingMetadataStore(_memory(config), _file(config))

    logger.warning(
        "Creating memory-only metadata store in production; "
        "configure REDIS_URL for multi-instance deployments"
    )
    return CachingMetadataStore(_memory(config))
