"""Unit tests for __init__.py module."""

import mcp_session_host
from mcp_session_host import SERVER_NAME, __version__


class TestInit:
    """Test __init__.py functionality."""

    def test_version_attribute_exists(self):
        """Test that __version__ attribute is accessible."""
        assert isinstance(__version__, str)

    def test_server_name_constant(self):
        assert SERVER_NAME == "mcp-session-host"

    def test_all_exports_resolve(self):
        """Test that every name in __all__ is importable from the package."""
        for name in mcp_session_host.__all__:
            assert hasattr(mcp_session_host, name), name

    def test_core_api_exported(self):
        for name in (
            "InstanceManager",
            "MetadataStore",
            "SessionMetadata",
            "create_metadata_store",
            "SessionNotFoundError",
        ):
            assert name in mcp_session_host.__all__
