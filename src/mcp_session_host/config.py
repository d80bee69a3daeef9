"""
Session Host Configuration

Settings come from constructor arguments or, through from_env(), from
environment variables:

    MCP_SESSION_STORE           auto | memory | file | diskcache | redis | caching
    MCP_SESSION_FILE            JSON file for the file backend
    MCP_SESSION_CACHE_DIR       directory for the diskcache backend
    REDIS_URL                   Redis connection string
    MCP_SESSION_TTL_SECONDS     lifetime of new session metadata (default 1800)
    MCP_INSTANCE_IDLE_SECONDS   idle time before a cached instance is evicted (600)
    MCP_INSTANCE_SWEEP_SECONDS  interval between idle sweeps (300)
    MCP_STORE_CLEANUP_SECONDS   interval between expired-record sweeps (300)
    MCP_ENV / ENVIRONMENT       "production" disables the file default in auto mode
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

STORE_TYPES = ("auto", "memory", "file", "diskcache", "redis", "caching")


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r, using %s", name, raw, default)
        return default
    return value


@dataclass
class SessionHostConfig:
    """Settings for the metadata store and the instance manager."""

    store_type: str = "auto"
    file_path: str | None = None
    cache_dir: str | None = None
    redis_url: str | None = None
    session_ttl_seconds: float = 30 * 60
    idle_ttl_seconds: float = 10 * 60
    sweep_interval_seconds: float = 5 * 60
    store_cleanup_interval_seconds: float = 5 * 60
    production: bool = False

    def __post_init__(self) -> None:
        self.store_type = self.store_type.strip().lower()
        if self.store_type not in STORE_TYPES:
            raise ValueError(f"Unknown metadata store type: {self.store_type}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> SessionHostConfig:
        env = os.environ if env is None else env
        environment = (env.get("MCP_ENV") or env.get("ENVIRONMENT") or "").lower()
        return cls(
            store_type=env.get("MCP_SESSION_STORE", "auto") or "auto",
            file_path=env.get("MCP_SESSION_FILE") or None,
            cache_dir=env.get("MCP_SESSION_CACHE_DIR") or None,
            redis_url=env.get("REDIS_URL") or None,
            session_ttl_seconds=_float_env(env, "MCP_SESSION_TTL_SECONDS", 30 * 60),
            idle_ttl_seconds=_float_env(env, "MCP_INSTANCE_IDLE_SECONDS", 10 * 60),
            sweep_interval_seconds=_float_env(env, "MCP_INSTANCE_SWEEP_SECONDS", 5 * 60),
            store_cleanup_interval_seconds=_float_env(
                env, "MCP_STORE_CLEANUP_SECONDS", 5 * 60
            ),
            production=environment in {"production", "prod"},
        )
