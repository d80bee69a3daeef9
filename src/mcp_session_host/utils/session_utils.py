from __future__ import annotations


def validate_session_id(session_id: str | None) -> str:
    """Validate that session_id is a non-empty string and return the stripped value.

    None and empty strings raise "session_id is required"; whitespace-only
    and non-string values raise "session_id must be a non-empty string".
    """
    if session_id is None or session_id == "":
        raise ValueError("session_id is required")
    if not isinstance(session_id, str):
        raise ValueError("session_id must be a non-empty string")
    cleaned = session_id.strip()
    if not cleaned:
        raise ValueError("session_id must be a non-empty string")
    return cleaned


def short_id(session_id: str) -> str:
    """Truncate a session id for log lines."""
    if len(session_id) <= 8:
        return session_id
    return session_id[:8] + "..."
