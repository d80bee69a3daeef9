"""
File-based Metadata Store Implementation

Persists session metadata to a single JSON document on disk. Suitable for
development with restart tolerance and single-instance, self-hosted
deployments. Not suitable for serverless platforms (ephemeral filesystem)
or several server processes sharing one file.

File format:
    {"version": 1, "updatedAt": "<ISO-8601>", "sessions": [<record>, ...]}

Key properties:
- Atomic writes: the document goes to a temporary file in the same
  directory and is renamed over the primary with os.replace
- The previous primary is copied to "<file>.backup" before every rename
- Writes are serialized and coalesced: mutations that arrive while a write
  is running are persisted together by the next single write
- Corrupt or unsupported content at startup is logged; the store recovers
  from the backup if it can and otherwise starts empty
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from .base_metadata_store import MetadataStore
from .errors import CorruptSessionStateError, StoreUnavailableError
from .session_metadata import SessionMetadata, now_ms
from .storage_types import StoreBackend
from .utils.session_utils import short_id, validate_session_id

logger = logging.getLogger(__name__)

FILE_FORMAT_VERSION = 1


class FileMetadataStore(MetadataStore):
    """
    JSON file-backed MetadataStore.

    All records are held in memory and the whole document is rewritten on
    every mutation. Each mutation bumps a generation counter; a writer that
    finds its generation already on disk returns without doing I/O.
    """

    backend = StoreBackend.FILE

    def __init__(
        self,
        file_path: str | os.PathLike[str] = "./data/mcp-sessions.json",
        default_ttl_seconds: float = 7 * 24 * 60 * 60,  # 7 days
        write_delay_seconds: float = 0.0,
    ) -> None:
        """
        Initialize FileMetadataStore and load any existing document.

        Args:
            file_path: Location of the JSON document
            default_ttl_seconds: TTL applied to records stored without expires_at
            write_delay_seconds: Debounce delay before a write is issued
        """
        super().__init__(default_ttl_seconds)
        self._file_path = Path(file_path)
        self._backup_path = self._file_path.with_name(self._file_path.name + ".backup")
        self._write_delay_seconds = write_delay_seconds

        self._sessions: dict[str, SessionMetadata] = {}
        self._write_lock = asyncio.Lock()
        self._generation = 0
        self._persisted_generation = 0

        logger.info(
            "FileMetadataStore initializing (file=%s, ttl=%ss)",
            self._file_path,
            default_ttl_seconds,
        )
        self._load_on_startup()

    @property
    def file_path(self) -> Path:
        return self._file_path

    @property
    def backup_path(self) -> Path:
        return self._backup_path

    # Loading
    def _parse_document(self, document: object) -> dict[str, SessionMetadata]:
        if not isinstance(document, dict):
            raise CorruptSessionStateError("Session file must contain a JSON object")
        version = document.get("version")
        if version != FILE_FORMAT_VERSION:
            raise CorruptSessionStateError(f"Unsupported file version: {version}")
        records = document.get("sessions")
        if not isinstance(records, list):
            raise CorruptSessionStateError("Session file has no 'sessions' list")

        sessions: dict[str, SessionMetadata] = {}
        for item in records:
            record = SessionMetadata.from_dict(item)
            sessions[record.session_id] = record
        return sessions

    def _read_file(self, path: Path) -> dict[str, SessionMetadata]:
        with open(path, encoding="utf-8") as f:
            try:
                document = json.load(f)
            except json.JSONDecodeError as e:
                raise CorruptSessionStateError(f"Invalid JSON in {path}: {e}") from e
        return self._parse_document(document)

    def _load_on_startup(self) -> None:
        try:
            self._sessions = self._read_file(self._file_path)
            logger.info(
                "Sessions loaded from %s (%s records)",
                self._file_path,
                len(self._sessions),
            )
            return
        except FileNotFoundError:
            logger.info("No existing session file found, starting fresh")
            return
        except (OSError, UnicodeDecodeError, CorruptSessionStateError) as e:
            logger.error("Failed to load sessions from %s: %s", self._file_path, e)

        try:
            self._sessions = self._read_file(self._backup_path)
            logger.warning(
                "Recovered %s sessions from backup %s",
                len(self._sessions),
                self._backup_path,
            )
        except FileNotFoundError:
            logger.warning("No backup session file, starting empty")
        except (OSError, UnicodeDecodeError, CorruptSessionStateError) as e:
            logger.error(
                "Backup %s is unreadable too, starting empty: %s", self._backup_path, e
            )

    async def reload(self) -> None:
        """
        Replace the in-memory records with the current file contents.

        Unlike startup loading this is an explicit request, so a missing or
        corrupt file raises instead of being recovered.
        """
        try:
            sessions = await asyncio.to_thread(self._read_file, self._file_path)
        except OSError as e:
            raise StoreUnavailableError(
                f"Failed to reload sessions from {self._file_path}: {e}"
            ) from e
        self._sessions = sessions
        logger.info("Sessions reloaded from file (%s records)", len(sessions))

    # Writing
    def _serialize(self) -> str:
        document = {
            "version": FILE_FORMAT_VERSION,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
            "sessions": [record.to_dict() for record in self._sessions.values()],
        }
        return json.dumps(document, indent=2)

    def _write_file(self, payload: str) -> None:
        directory = self._file_path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, temp_name = tempfile.mkstemp(
            dir=directory, prefix=f".{self._file_path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())

            try:
                shutil.copy2(self._file_path, self._backup_path)
            except FileNotFoundError:
                # First write, nothing to back up yet
                pass

            os.replace(temp_name, self._file_path)
        except BaseException:
            try:
                os.unlink(temp_name)
            except FileNotFoundError:
                pass
            raise

    async def _write_pending(self) -> None:
        """Write the current state if any mutation is not yet on disk. Caller holds the lock."""
        if self._persisted_generation >= self._generation:
            return
        generation = self._generation
        payload = self._serialize()
        try:
            await asyncio.to_thread(self._write_file, payload)
        except OSError as e:
            logger.error("Failed to save sessions to %s: %s", self._file_path, e)
            raise StoreUnavailableError(
                f"Failed to save sessions to {self._file_path}: {e}"
            ) from e
        self._persisted_generation = generation
        logger.debug(
            "Sessions saved to %s (%s records)", self._file_path, len(self._sessions)
        )

    async def _persist(self) -> None:
        self._generation += 1
        target = self._generation
        if self._write_delay_seconds > 0:
            await asyncio.sleep(self._write_delay_seconds)
        async with self._write_lock:
            if self._persisted_generation >= target:
                return
            await self._write_pending()

    async def flush(self) -> None:
        """Wait until every mutation made so far has been written."""
        async with self._write_lock:
            await self._write_pending()

    # MetadataStore interface implementation
    async def store_session(self, session_id: str, metadata: SessionMetadata) -> None:
        session_id = validate_session_id(session_id)
        record = self._prepare(session_id, metadata)
        self._sessions[session_id] = record
        await self._persist()
        logger.debug(
            "Session stored and persisted: %s (hasAuth=%s)",
            short_id(session_id),
            record.auth_info is not None,
        )

    async def get_session(self, session_id: str) -> SessionMetadata | None:
        session_id = validate_session_id(session_id)
        record = self._sessions.get(session_id)
        if record is None:
            logger.debug("Session not found: %s", short_id(session_id))
            return None

        if record.is_expired():
            logger.warning("Session expired: %s", short_id(session_id))
            await self.delete_session(session_id)
            return None

        return record

    async def delete_session(self, session_id: str) -> None:
        session_id = validate_session_id(session_id)
        if self._sessions.pop(session_id, None) is None:
            logger.debug("Session delete skipped, not found: %s", short_id(session_id))
            return
        await self._persist()
        logger.info("Session deleted and persisted: %s", short_id(session_id))

    async def cleanup(self) -> int:
        now = now_ms()
        expired = [
            session_id
            for session_id, record in self._sessions.items()
            if record.is_expired(now)
        ]
        for session_id in expired:
            del self._sessions[session_id]

        if expired:
            await self._persist()
            logger.info(
                "Cleaned up %s expired sessions (%s remaining)",
                len(expired),
                len(self._sessions),
            )
        return len(expired)

    async def get_session_count(self) -> int:
        return len(self._sessions)

    async def close(self) -> None:
        await self.stop_periodic_cleanup()
        await self.flush()
        logger.info("FileMetadataStore closed")
