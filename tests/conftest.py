"""Shared pytest fixtures for session host tests."""

import asyncio
import json

import pytest

from mcp_session_host.instance_factory import InstanceFactory, ServerInstance
from mcp_session_host.memory_metadata_store import MemoryMetadataStore
from mcp_session_host.tool_registry import build_default_tool_registry


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeTransport:
    """Stand-in for a streamable HTTP transport that records termination."""

    def __init__(self, session_id):
        self.mcp_session_id = session_id
        self.terminated = 0

    async def terminate(self):
        self.terminated += 1


class FakeInstanceFactory(InstanceFactory):
    """Instance factory with controllable latency and failures."""

    def __init__(self):
        self.calls = []
        self.built = []
        self.gate = None
        self.delay = 0.0
        self.fail_times = 0

    def hold(self):
        """Block create_instance until release() is called."""
        self.gate = asyncio.Event()

    def release(self):
        if self.gate is not None:
            self.gate.set()

    async def create_instance(self, session_id, metadata, tool_registry, request_context):
        self.calls.append(session_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("factory exploded")
        instance = ServerInstance(
            session_id=session_id,
            server=object(),
            transport=FakeTransport(session_id),
            metadata=metadata,
        )
        self.built.append(instance)
        return instance


@pytest.fixture
def fake_factory():
    return FakeInstanceFactory()


@pytest.fixture
def tool_registry():
    return build_default_tool_registry()


@pytest.fixture
def memory_store():
    return MemoryMetadataStore(default_ttl_seconds=60)


@pytest.fixture
def session_file(tmp_path):
    return tmp_path / "data" / "mcp-sessions.json"


async def _post_jsonrpc(transport, session_id, message):
    """POST one JSON-RPC message through an ASGI transport; return (status, body)."""
    body = json.dumps(message).encode()
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/mcp",
        "raw_path": b"/mcp",
        "query_string": b"",
        "scheme": "http",
        "server": ("localhost", 8000),
        "client": ("127.0.0.1", 50000),
        "headers": [
            (b"host", b"localhost:8000"),
            (b"content-type", b"application/json"),
            (b"accept", b"application/json, text/event-stream"),
            (b"content-length", str(len(body)).encode()),
            (b"mcp-session-id", session_id.encode()),
        ],
    }
    chunks = [{"type": "http.request", "body": body, "more_body": False}]
    sent = []

    async def receive():
        if chunks:
            return chunks.pop(0)
        return {"type": "http.disconnect"}

    async def send(event):
        sent.append(event)

    await transport.handle_request(scope, receive, send)

    status = next(e["status"] for e in sent if e["type"] == "http.response.start")
    payload = b"".join(e.get("body", b"") for e in sent if e["type"] == "http.response.body")
    return status, json.loads(payload) if payload else None


@pytest.fixture
def post_jsonrpc():
    return _post_jsonrpc
