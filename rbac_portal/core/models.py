"""Domain records stored in MongoDB.

The dataclasses below are thin views over the stored documents; stores build
them with ``from_document`` and never hand raw documents to callers.
"""
from __future__ import annotations
import datetime
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)

AuditAction = Literal[
    "UPDATE_ROLE",
    "DELETE_USER",
    "RESET_PASSWORD",
    "CREATE_USER",
    "LOGIN_SUCCESS",
    "LOGIN_FAILED",
    "PASSWORD_CHANGED",
]
AUDIT_ACTIONS: tuple[str, ...] = (
    "UPDATE_ROLE",
    "DELETE_USER",
    "RESET_PASSWORD",
    "CREATE_USER",
    "LOGIN_SUCCESS",
    "LOGIN_FAILED",
    "PASSWORD_CHANGED",
)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """MongoDB returns naive datetimes unless tz_aware is set; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


@dataclass
class User:
    id: str
    email: str
    name: str
    role: str = ROLE_USER
    password_hash: Optional[str] = None
    created_at: Optional[datetime.datetime] = None
    oauth_provider: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "User":
        created_at = doc.get("created_at")
        return cls(
            id=str(doc["_id"]),
            email=doc.get("email", ""),
            name=doc.get("name", ""),
            role=doc.get("role") or ROLE_USER,
            password_hash=doc.get("password_hash"),
            created_at=as_utc(created_at) if created_at else None,
            oauth_provider=doc.get("oauth_provider"),
        )

    def to_public(self) -> dict[str, Any]:
        """Serializable view without the password hash."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "oauthProvider": self.oauth_provider,
        }


@dataclass(frozen=True)
class AuditLogEntry:
    timestamp: datetime.datetime
    actor_id: str
    action: str
    target_user_id: str
    details: dict[str, Any] = field(default_factory=dict)
    signature: str = ""
    id: Optional[str] = None

    def signing_payload(self) -> dict[str, Any]:
        """Canonical fields covered by the HMAC signature."""
        return {
            "timestamp": as_utc(self.timestamp).isoformat(timespec="milliseconds"),
            "actor_id": self.actor_id,
            "action": self.action,
            "target_user_id": self.target_user_id,
            "details": self.details,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "AuditLogEntry":
        return cls(
            timestamp=as_utc(doc["timestamp"]),
            actor_id=str(doc.get("actor_id", "")),
            action=doc.get("action", ""),
            target_user_id=str(doc.get("target_user_id", "")),
            details=dict(doc.get("details") or {}),
            signature=doc.get("signature", ""),
            id=str(doc["_id"]) if doc.get("_id") is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": as_utc(self.timestamp).isoformat(),
            "actorId": self.actor_id,
            "action": self.action,
            "targetUserId": self.target_user_id,
            "details": self.details,
            "signed": bool(self.signature),
        }


@dataclass
class PasswordResetToken:
    token: str
    user_id: str
    email: str
    expires_at: datetime.datetime
    consumed_at: Optional[datetime.datetime] = None

    def is_expired(self, now: Optional[datetime.datetime] = None) -> bool:
        return as_utc(self.expires_at) <= (now or utcnow())

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "PasswordResetToken":
        consumed_at = doc.get("consumed_at")
        return cls(
            token=doc["token"],
            user_id=str(doc.get("user_id", "")),
            email=doc.get("email", ""),
            expires_at=as_utc(doc["expires_at"]),
            consumed_at=as_utc(consumed_at) if consumed_at else None,
        )
