"""
Session Metadata

This module contains the durable, reconstructable identity of a session.
SessionMetadata is the only thing metadata stores persist; live server and
transport objects are rebuilt from it on demand.

Timestamps are integer milliseconds since the epoch. The wire form used by
the file, diskcache and redis backends is a camelCase JSON object.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, replace
from typing import Any

from .errors import CorruptSessionStateError


def now_ms() -> int:
    """Current wall clock time in integer milliseconds."""
    return int(time.time() * 1000)


def _optional(
    data: dict[str, Any], key: str, expected: type | tuple[type, ...]
) -> Any:
    value = data.get(key)
    if value is not None and not isinstance(value, expected):
        raise CorruptSessionStateError(
            f"Field '{key}' has type {type(value).__name__}"
        )
    return value


def _timestamp(value: int | float, key: str) -> int:
    if not math.isfinite(value):
        raise CorruptSessionStateError(f"Field '{key}' is not a finite number")
    return int(value)


@dataclass
class AuthInfo:
    """Authenticated principal attached to a session at creation time."""

    provider: str | None = None
    user_id: str | None = None
    email: str | None = None
    name: str | None = None
    scopes: list[str] = field(default_factory=list)
    expires_at: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.provider is not None:
            data["provider"] = self.provider
        if self.user_id is not None:
            data["userId"] = self.user_id
        if self.email is not None:
            data["email"] = self.email
        if self.name is not None:
            data["name"] = self.name
        if self.scopes:
            data["scopes"] = list(self.scopes)
        if self.expires_at is not None:
            data["expiresAt"] = self.expires_at
        if self.extra:
            data["extra"] = dict(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> AuthInfo:
        if not isinstance(data, dict):
            raise CorruptSessionStateError("authInfo must be an object")
        scopes = _optional(data, "scopes", list) or []
        if not all(isinstance(scope, str) for scope in scopes):
            raise CorruptSessionStateError("authInfo.scopes must be strings")
        expires_at = _optional(data, "expiresAt", (int, float))
        return cls(
            provider=_optional(data, "provider", str),
            user_id=_optional(data, "userId", str),
            email=_optional(data, "email", str),
            name=_optional(data, "name", str),
            scopes=list(scopes),
            expires_at=_timestamp(expires_at, "expiresAt")
            if expires_at is not None
            else None,
            extra=dict(_optional(data, "extra", dict) or {}),
        )


@dataclass
class SessionMetadata:
    """Durable metadata for a session, sufficient to rebuild its live instance."""

    session_id: str
    created_at: int = field(default_factory=now_ms)
    expires_at: int | None = None
    auth_info: AuthInfo | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.session_id:
            raise ValueError("session_id must be a non-empty string")
        if self.expires_at is not None and self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")

    def is_expired(self, now: int | None = None) -> bool:
        """True once the current time is past expires_at."""
        if self.expires_at is None:
            return False
        current = now_ms() if now is None else now
        return current > self.expires_at

    def with_expiry(self, ttl_seconds: float) -> SessionMetadata:
        """Return a copy with expires_at filled in from a TTL when unset."""
        if self.expires_at is not None:
            return self
        ttl_ms = max(1, int(ttl_seconds * 1000))
        return replace(self, expires_at=self.created_at + ttl_ms)

    def remaining_ms(self, now: int | None = None) -> int:
        """Milliseconds until expiry (negative once expired)."""
        if self.expires_at is None:
            raise ValueError("expires_at is not set")
        current = now_ms() if now is None else now
        return self.expires_at - current

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "sessionId": self.session_id,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
        }
        if self.auth_info is not None:
            data["authInfo"] = self.auth_info.to_dict()
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> SessionMetadata:
        if not isinstance(data, dict):
            raise CorruptSessionStateError("Session record must be an object")
        session_id = data.get("sessionId")
        created_at = data.get("createdAt")
        if not isinstance(session_id, str) or not session_id:
            raise CorruptSessionStateError("Session record has no sessionId")
        if isinstance(created_at, bool) or not isinstance(created_at, (int, float)):
            raise CorruptSessionStateError(
                f"Session record {session_id} has no createdAt"
            )
        expires_at = _optional(data, "expiresAt", (int, float))
        auth_data = data.get("authInfo")
        try:
            return cls(
                session_id=session_id,
                created_at=_timestamp(created_at, "createdAt"),
                expires_at=_timestamp(expires_at, "expiresAt")
                if expires_at is not None
                else None,
                auth_info=AuthInfo.from_dict(auth_data)
                if auth_data is not None
                else None,
                metadata=dict(_optional(data, "metadata", dict) or {}),
            )
        except ValueError as e:
            raise CorruptSessionStateError(str(e)) from e
