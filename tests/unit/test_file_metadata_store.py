"""
Unit tests for FileMetadataStore

Tests durability across restarts, the atomic write with backup, recovery
from corrupt files, and write coalescing.
"""

import asyncio
import json
from unittest.mock import patch

import pytest

from mcp_session_host.errors import CorruptSessionStateError, StoreUnavailableError
from mcp_session_host.file_metadata_store import FILE_FORMAT_VERSION, FileMetadataStore
from mcp_session_host.session_metadata import AuthInfo, SessionMetadata, now_ms


def write_document(path, sessions, version=FILE_FORMAT_VERSION):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps({"version": version, "updatedAt": "x", "sessions": sessions})
    )


def live_record(session_id):
    now = now_ms()
    return {"sessionId": session_id, "createdAt": now, "expiresAt": now + 60_000}


@pytest.mark.anyio
class TestFileMetadataStore:
    """Test suite for FileMetadataStore."""

    async def test_missing_file_starts_empty(self, session_file):
        store = FileMetadataStore(session_file)

        assert await store.get_session_count() == 0
        assert not session_file.exists()

    async def test_store_writes_versioned_document(self, session_file):
        store = FileMetadataStore(session_file, default_ttl_seconds=60)
        await store.store_session(
            "s1",
            SessionMetadata(session_id="s1", auth_info=AuthInfo(provider="x", user_id="u1")),
        )

        document = json.loads(session_file.read_text())
        assert document["version"] == FILE_FORMAT_VERSION
        assert "updatedAt" in document
        assert [record["sessionId"] for record in document["sessions"]] == ["s1"]
        assert document["sessions"][0]["authInfo"] == {"provider": "x", "userId": "u1"}

    async def test_records_survive_restart(self, session_file):
        store = FileMetadataStore(session_file, default_ttl_seconds=60)
        await store.store_session(
            "s1", SessionMetadata(session_id="s1", metadata={"tenant": "acme"})
        )
        await store.store_session("s2", SessionMetadata(session_id="s2"))
        await store.delete_session("s2")
        await store.close()

        reopened = FileMetadataStore(session_file, default_ttl_seconds=60)

        assert await reopened.get_session_count() == 1
        loaded = await reopened.get_session("s1")
        assert loaded.metadata == {"tenant": "acme"}
        assert await reopened.get_session("s2") is None

    async def test_backup_holds_previous_version(self, session_file):
        store = FileMetadataStore(session_file)
        await store.store_session("s1", SessionMetadata(session_id="s1"))
        assert not store.backup_path.exists()

        await store.store_session("s2", SessionMetadata(session_id="s2"))

        backup = json.loads(store.backup_path.read_text())
        assert [r["sessionId"] for r in backup["sessions"]] == ["s1"]
        # No temporary files are left behind
        assert sorted(p.name for p in session_file.parent.iterdir()) == [
            "mcp-sessions.json",
            "mcp-sessions.json.backup",
        ]

    async def test_corrupt_file_recovers_from_backup(self, session_file):
        write_document(session_file.with_name("mcp-sessions.json.backup"), [live_record("s1")])
        session_file.write_text("{ not json")

        store = FileMetadataStore(session_file)

        assert await store.get_session("s1") is not None

    async def test_corrupt_file_without_backup_starts_empty(self, session_file, caplog):
        session_file.parent.mkdir(parents=True)
        session_file.write_text("{ not json")

        store = FileMetadataStore(session_file)

        assert await store.get_session_count() == 0
        assert "Failed to load sessions" in caplog.text

    async def test_non_finite_timestamp_recovers_from_backup(self, session_file):
        write_document(session_file.with_name("mcp-sessions.json.backup"), [live_record("s1")])
        session_file.write_text(
            '{"version": 1, "sessions": [{"sessionId": "a", "createdAt": 1e400, "expiresAt": 1}]}'
        )

        store = FileMetadataStore(session_file)

        assert await store.get_session("a") is None
        assert await store.get_session("s1") is not None

    async def test_non_finite_timestamp_without_backup_starts_empty(self, session_file):
        session_file.parent.mkdir(parents=True)
        session_file.write_text(
            '{"version": 1, "sessions": [{"sessionId": "a", "createdAt": 1e400, "expiresAt": 1}]}'
        )

        store = FileMetadataStore(session_file)

        assert await store.get_session_count() == 0

    async def test_unsupported_version_is_not_misparsed(self, session_file):
        write_document(session_file, [live_record("s1")], version=99)

        store = FileMetadataStore(session_file)

        assert await store.get_session("s1") is None

    async def test_bad_record_rejects_document(self, session_file):
        write_document(session_file, [live_record("s1"), {"sessionId": "s2"}])

        store = FileMetadataStore(session_file)

        assert await store.get_session_count() == 0

    async def test_reload_raises_on_corrupt_file(self, session_file):
        store = FileMetadataStore(session_file)
        await store.store_session("s1", SessionMetadata(session_id="s1"))
        session_file.write_text("[]")

        with pytest.raises(CorruptSessionStateError):
            await store.reload()

    async def test_reload_picks_up_external_changes(self, session_file):
        store = FileMetadataStore(session_file)
        write_document(session_file, [live_record("a"), live_record("b")])

        await store.reload()

        assert await store.get_session_count() == 2

    async def test_reload_missing_file_raises_unavailable(self, session_file):
        store = FileMetadataStore(session_file)

        with pytest.raises(StoreUnavailableError):
            await store.reload()

    async def test_expired_record_deleted_and_persisted(self, session_file):
        now = now_ms()
        write_document(
            session_file,
            [
                live_record("live"),
                {"sessionId": "old", "createdAt": now - 10_000, "expiresAt": now - 1},
            ],
        )
        store = FileMetadataStore(session_file)

        assert await store.get_session("old") is None

        document = json.loads(session_file.read_text())
        assert [r["sessionId"] for r in document["sessions"]] == ["live"]

    async def test_cleanup_counts_expired(self, session_file):
        now = now_ms()
        write_document(
            session_file,
            [
                live_record("live"),
                {"sessionId": "old-1", "createdAt": now - 10_000, "expiresAt": now - 1},
                {"sessionId": "old-2", "createdAt": now - 10_000, "expiresAt": now - 1},
            ],
        )
        store = FileMetadataStore(session_file)

        assert await store.cleanup() == 2
        assert await store.cleanup() == 0
        assert await store.get_session_count() == 1

    async def test_delete_missing_does_not_write(self, session_file):
        store = FileMetadataStore(session_file)

        await store.delete_session("missing")

        assert not session_file.exists()

    async def test_concurrent_writes_are_coalesced(self, session_file):
        store = FileMetadataStore(session_file, write_delay_seconds=0.02)

        with patch.object(store, "_write_file", wraps=store._write_file) as write_file:
            await asyncio.gather(
                *(
                    store.store_session(f"s{i}", SessionMetadata(session_id=f"s{i}"))
                    for i in range(10)
                )
            )

        assert write_file.call_count == 1
        document = json.loads(session_file.read_text())
        assert len(document["sessions"]) == 10

    async def test_flush_without_pending_writes_is_noop(self, session_file):
        store = FileMetadataStore(session_file)

        await store.flush()

        assert not session_file.exists()

    async def test_write_failure_raises_store_unavailable(self, session_file):
        store = FileMetadataStore(session_file)

        with patch.object(store, "_write_file", side_effect=PermissionError("denied")):
            with pytest.raises(StoreUnavailableError):
                await store.store_session("s1", SessionMetadata(session_id="s1"))
