"""
Session Host Errors

Typed failures raised by metadata stores and the instance manager.
Callers (typically the HTTP request layer) map these onto protocol errors:
SessionNotFoundError means the client must re-establish its session, the
others are server-side failures.
"""


class SessionHostError(Exception):
    """Base class for all session host errors."""


class SessionNotFoundError(SessionHostError):
    """No valid (present and non-expired) metadata exists for a session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class StoreUnavailableError(SessionHostError):
    """The durable metadata backend could not be read or written."""


class ReconstructionError(SessionHostError):
    """Building a live instance from valid metadata failed."""

    def __init__(self, session_id: str, reason: str) -> None:
        self.session_id = session_id
        super().__init__(f"Failed to reconstruct session {session_id}: {reason}")


class CorruptSessionStateError(SessionHostError):
    """Durable session content failed to parse or has an unsupported version."""
