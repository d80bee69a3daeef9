from importlib.metadata import version, PackageNotFoundError

from . import server
from .base_metadata_store import MetadataStore
from .caching_metadata_store import CachingMetadataStore
from .config import SessionHostConfig
from .diskcache_metadata_store import DiskCacheMetadataStore
from .errors import (
    CorruptSessionStateError,
    ReconstructionError,
    SessionHostError,
    SessionNotFoundError,
    StoreUnavailableError,
)
from .file_metadata_store import FileMetadataStore
from .instance_factory import (
    FastMCPInstanceFactory,
    InstanceFactory,
    RequestContext,
    ServerInstance,
)
from .instance_manager import InstanceManager
from .memory_metadata_store import MemoryMetadataStore
from .redis_metadata_store import RedisMetadataStore
from .server import SERVER_NAME, configure_logging, create_instance_manager
from .session_metadata import AuthInfo, SessionMetadata
from .storage_types import InstanceStats, StoreBackend
from .store_factory import create_metadata_store
from .tool_registry import ToolRegistry, build_default_tool_registry

# Package metadata helpers
try:
    __version__ = version("mcp-session-host")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0+dev"

# Public API
__all__ = [
    "server",
    "__version__",
    "SERVER_NAME",
    "AuthInfo",
    "CachingMetadataStore",
    "CorruptSessionStateError",
    "DiskCacheMetadataStore",
    "FastMCPInstanceFactory",
    "FileMetadataStore",
    "InstanceFactory",
    "InstanceManager",
    "InstanceStats",
    "MemoryMetadataStore",
    "MetadataStore",
    "ReconstructionError",
    "RedisMetadataStore",
    "RequestContext",
    "ServerInstance",
    "SessionHostConfig",
    "SessionHostError",
    "SessionMetadata",
    "SessionNotFoundError",
    "StoreBackend",
    "StoreUnavailableError",
    "ToolRegistry",
    "build_default_tool_registry",
    "configure_logging",
    "create_instance_manager",
    "create_metadata_store",
]
