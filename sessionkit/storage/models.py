from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Generic, Optional, TypeVar

P = TypeVar("P")
Principal = TypeVar("Principal")


@dataclass(frozen=True)
class StoredSession(Generic[P]):
    payload: P
    created_at: int
    expires_at: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at

    def with_expiry(self, expires_at: int) -> "StoredSession[P]":
        return replace(self, expires_at=expires_at)

    def with_payload(self, payload: P) -> "StoredSession[P]":
        return replace(self, payload=payload)

    def to_dict(self) -> Dict[str, Any]:
        # camelCase keys keep records readable by other sessionkit ports
        return {
            "payload": self.payload,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredSession[Any]":
        return cls(
            payload=data["payload"],
            created_at=int(data["createdAt"]),
            expires_at=int(data["expiresAt"]),
        )


@dataclass
class AuthContext(Generic[P, Principal]):
    """Authentication state attached to each request."""

    session_id: Optional[str] = None
    session: Optional[StoredSession[P]] = None
    principal: Optional[Principal] = None
    is_authenticated: bool = False

    @classmethod
    def unauthenticated(cls) -> "AuthContext[Any, Any]":
        return cls()

    @classmethod
    def authenticated(
        cls, session_id: str, session: StoredSession[P], principal: Principal
    ) -> "AuthContext[P, Principal]":
        return cls(
            session_id=session_id,
            session=session,
            principal=principal,
            is_authenticated=True,
        )


@dataclass(frozen=True)
class SignInResult(Generic[Principal]):
    session_id: str
    principal: Principal
    expires_at: int


@dataclass(frozen=True)
class RefreshResult(Generic[P]):
    """Value returned by a token refresher: the new payload and an optional TTL override."""

    payload: P
    ttl_seconds: Optional[int] = None


__all__ = ["AuthContext", "RefreshResult", "SignInResult", "StoredSession"]
