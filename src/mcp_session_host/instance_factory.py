"""
Instance Factory

Builds the live, non-serializable half of a session: a FastMCP server
populated from the tool registry plus a streamable HTTP transport bound to
the session id. The server runs over the transport streams in a background
task for as long as the instance lives. The InstanceManager calls the factory whenever a session has
no cached instance, so everything a handler needs must be derivable from the
SessionMetadata passed in.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from fastmcp import FastMCP
from mcp.server.streamable_http import StreamableHTTPServerTransport
from mcp.server.transport_security import TransportSecuritySettings

from .session_metadata import SessionMetadata, now_ms
from .tool_registry import ToolRegistry
from .utils.session_utils import short_id

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Per-request transport options supplied by the HTTP layer."""

    json_response: bool = False
    allowed_hosts: list[str] = field(default_factory=list)
    allowed_origins: list[str] = field(default_factory=list)
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(eq=False)
class ServerInstance:
    """Live handler and transport for one session, owned by the InstanceManager."""

    session_id: str
    server: Any
    transport: Any
    metadata: SessionMetadata
    created_at: int = field(default_factory=now_ms)
    last_used: int = field(default_factory=now_ms)
    server_task: asyncio.Task[None] | None = None
    closed: bool = False

    def touch(self) -> None:
        self.last_used = now_ms()

    def idle_ms(self, now: int | None = None) -> int:
        return (now_ms() if now is None else now) - self.last_used

    async def close(self) -> None:
        """Terminate the transport and stop the server task. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        try:
            if self.transport is not None:
                await self.transport.terminate()
        finally:
            task = self.server_task
            if task is not None and not task.done():
                task.cancel()
                await asyncio.wait({task})


class InstanceFactory(ABC):
    """Creates a fresh handler + transport pair for a session."""

    @abstractmethod
    async def create_instance(
        self,
        session_id: str,
        metadata: SessionMetadata,
        tool_registry: ToolRegistry,
        request_context: RequestContext,
    ) -> ServerInstance:
        """
        Build a live instance for a session.

        Args:
            session_id: The session identifier
            metadata: Valid, non-expired metadata for the session
            tool_registry: Tools the handler must expose
            request_context: Transport options of the triggering request

        Returns:
            A ServerInstance that has not been cached yet
        """
        pass


class FastMCPInstanceFactory(InstanceFactory):
    """Default factory: FastMCP server plus StreamableHTTPServerTransport."""

    def __init__(self, server_name: str = "mcp-session-host") -> None:
        self._server_name = server_name

    def _build_server(
        self, metadata: SessionMetadata, tool_registry: ToolRegistry
    ) -> FastMCP:
        server: FastMCP = FastMCP(self._server_name)
        tool_registry.apply_to(server)

        auth = metadata.auth_info
        session_id = metadata.session_id

        def session_info() -> dict[str, Any]:
            """Describe the current session and its authenticated principal."""
            return {
                "sessionId": session_id,
                "authenticated": auth is not None,
                "provider": auth.provider if auth else None,
                "userId": auth.user_id if auth else None,
                "email": auth.email if auth else None,
                "scopes": list(auth.scopes) if auth else [],
            }

        if "session_info" not in tool_registry:
            server.tool(session_info, name="session_info")
        return server

    def _build_transport(
        self, session_id: str, request_context: RequestContext
    ) -> StreamableHTTPServerTransport:
        security_settings = None
        if request_context.allowed_hosts or request_context.allowed_origins:
            security_settings = TransportSecuritySettings(
                enable_dns_rebinding_protection=True,
                allowed_hosts=list(request_context.allowed_hosts),
                allowed_origins=list(request_context.allowed_origins),
            )
        return StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=request_context.json_response,
            security_settings=security_settings,
        )

    async def _serve(
        self,
        session_id: str,
        server: FastMCP,
        transport: StreamableHTTPServerTransport,
        ready: asyncio.Future[None],
    ) -> None:
        low_level = server._mcp_server
        async with transport.connect() as (read_stream, write_stream):
            ready.set_result(None)
            try:
                # A rebuilt session never sees initialize again
                await low_level.run(
                    read_stream,
                    write_stream,
                    low_level.create_initialization_options(),
                    stateless=True,
                )
            except Exception:
                logger.exception("Server for session %s crashed", short_id(session_id))

    async def _start_serving(
        self,
        session_id: str,
        server: FastMCP,
        transport: StreamableHTTPServerTransport,
    ) -> asyncio.Task[None]:
        """Run the server over the transport streams and wait until they are connected."""
        loop = asyncio.get_running_loop()
        ready: asyncio.Future[None] = loop.create_future()
        task = loop.create_task(self._serve(session_id, server, transport, ready))
        try:
            await asyncio.wait({ready, task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not ready.done():
            ready.cancel()
            # Raises whatever stopped the task before the streams were connected
            task.result()
            raise RuntimeError(f"Server for session {session_id} exited before starting")
        return task

    async def create_instance(
        self,
        session_id: str,
        metadata: SessionMetadata,
        tool_registry: ToolRegistry,
        request_context: RequestContext,
    ) -> ServerInstance:
        server = self._build_server(metadata, tool_registry)
        transport = self._build_transport(session_id, request_context)
        server_task = await self._start_serving(session_id, server, transport)
        logger.debug(
            "Started FastMCP instance for %s (%s tools)",
            short_id(session_id),
            len(tool_registry),
        )
        return ServerInstance(
            session_id=session_id,
            server=server,
            transport=transport,
            metadata=metadata,
            server_task=server_task,
        )
