import logging
import sys

from .config import SessionHostConfig
from .instance_factory import FastMCPInstanceFactory, InstanceFactory
from .instance_manager import InstanceManager
from .store_factory import create_metadata_store
from .tool_registry import ToolRegistry, build_default_tool_registry

logger = logging.getLogger(__name__)

SERVER_NAME = "mcp-session-host"


def configure_logging(level: int = logging.INFO) -> None:
    """Attach a stdout handler to the package logger if none is configured."""
    package_logger = logging.getLogger("mcp_session_host")
    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        package_logger.addHandler(handler)
    package_logger.setLevel(level)


def create_instance_manager(
    config: SessionHostConfig | None = None,
    tool_registry: ToolRegistry | None = None,
    instance_factory: InstanceFactory | None = None,
) -> InstanceManager:
    """Wire a metadata store, tool registry and instance factory from config.

    The returned manager is not started; use ``async with manager:`` or call
    ``start()`` from inside the event loop to enable the idle sweep and the
    periodic expired-record cleanup.
    """
    config = config or SessionHostConfig.from_env()
    store = create_metadata_store(config)
    manager = InstanceManager(
        store,
        tool_registry or build_default_tool_registry(),
        instance_factory or FastMCPInstanceFactory(SERVER_NAME),
        session_ttl_seconds=config.session_ttl_seconds,
        idle_ttl_seconds=config.idle_ttl_seconds,
        sweep_interval_seconds=config.sweep_interval_seconds,
        store_cleanup_interval_seconds=config.store_cleanup_interval_seconds,
    )
    logger.info(
        "Session host ready (store=%s, session_ttl=%ss, idle_ttl=%ss)",
        store.__class__.__name__,
        config.session_ttl_seconds,
        config.idle_ttl_seconds,
    )
    return manager
