"""Password-reset token lifecycle.

A token is ``Issued`` with a fixed TTL and ends either ``Consumed`` (first
successful reset) or ``Expired``. An expired token is rejected exactly like
an unknown one; a consumed token is rejected as ``AlreadyConsumed``.
"""
from __future__ import annotations
import datetime
import logging
import secrets
import threading
from dataclasses import dataclass
from typing import Optional

from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError
from werkzeug.security import generate_password_hash

from .audit import AuditSink
from .database import Collections
from .exceptions import AlreadyConsumed, Expired, InvalidInput, ServiceUnavailable
from .models import PasswordResetToken, User, utcnow
from .notifications import Mailer
from .users import UserStore

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = datetime.timedelta(hours=1)


def generate_token() -> str:
    """32 random bytes, hex encoded."""
    return secrets.token_hex(32)


# ─────────────────────────────────────────────────────────────────────────────
# Token stores
# ─────────────────────────────────────────────────────────────────────────────
class ResetTokenStore:
    """Contract shared by the durable and the in-process store.

    ``claim`` atomically marks a live token as consumed and returns it; it
    raises Expired for unknown/expired tokens and AlreadyConsumed on replay.
    ``release`` undoes a claim when the password write that followed failed.
    """

    def issue(self, token: PasswordResetToken) -> None:
        raise NotImplementedError

    def claim(self, token: str, now: Optional[datetime.datetime] = None) -> PasswordResetToken:
        raise NotImplementedError

    def release(self, token: str) -> None:
        raise NotImplementedError


class MongoResetTokenStore(ResetTokenStore):
    """Tokens in the ``password_resets`` collection (TTL index cleans up)."""

    def __init__(self, db: Database):
        self._collection: Collection = db[Collections.PASSWORD_RESETS]

    def issue(self, token: PasswordResetToken) -> None:
        try:
            self._collection.insert_one({
                "token": token.token,
                "user_id": token.user_id,
                "email": token.email,
                "expires_at": token.expires_at,
                "consumed_at": None,
            })
        except PyMongoError as exc:
            raise ServiceUnavailable() from exc

    def claim(self, token: str, now: Optional[datetime.datetime] = None) -> PasswordResetToken:
        now = now or utcnow()
        try:
            doc = self._collection.find_one_and_update(
                {"token": token, "consumed_at": None, "expires_at": {"$gt": now}},
                {"$set": {"consumed_at": now}},
                return_document=ReturnDocument.AFTER,
            )
            if doc is not None:
                return PasswordResetToken.from_document(doc)
            existing = self._collection.find_one({"token": token})
        except PyMongoError as exc:
            raise ServiceUnavailable() from exc

        if existing is not None:
            stored = PasswordResetToken.from_document(existing)
            if stored.is_consumed:
                raise AlreadyConsumed()
        raise Expired()

    def release(self, token: str) -> None:
        try:
            self._collection.update_one({"token": token}, {"$set": {"consumed_at": None}})
        except PyMongoError as exc:
            logger.error("Failed to release reset token claim: %s", exc)


class InMemoryResetTokenStore(ResetTokenStore):
    """Development fallback used while the database is unreachable.

    Entries live only in this process and vanish on restart. Consumed
    tokens are kept (flagged) until ``purge_expired`` so replays are still
    reported as AlreadyConsumed.
    """

    def __init__(self):
        self._tokens: dict[str, PasswordResetToken] = {}
        self._lock = threading.Lock()

    def issue(self, token: PasswordResetToken) -> None:
        with self._lock:
            self._tokens[token.token] = token

    def claim(self, token: str, now: Optional[datetime.datetime] = None) -> PasswordResetToken:
        now = now or utcnow()
        with self._lock:
            stored = self._tokens.get(token)
            if stored is None:
                raise Expired()
            if stored.is_consumed:
                raise AlreadyConsumed()
            if stored.is_expired(now):
                del self._tokens[token]
                raise Expired()
            stored.consumed_at = now
            return stored

    def release(self, token: str) -> None:
        with self._lock:
            stored = self._tokens.get(token)
            if stored is not None:
                stored.consumed_at = None

    def purge_expired(self, now: Optional[datetime.datetime] = None) -> int:
        """Drop expired and consumed tokens; returns how many were removed."""
        now = now or utcnow()
        with self._lock:
            stale = [
                key for key, value in self._tokens.items()
                if value.is_consumed or value.is_expired(now)
            ]
            for key in stale:
                del self._tokens[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._tokens)


# ─────────────────────────────────────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class ResetOutcome:
    user_id: str
    dev_mode: bool = False


def password_reset_email(reset_link: str, email: str, ttl: datetime.timedelta) -> tuple[str, str]:
    """Subject and plain-text body of the reset e-mail."""
    minutes = int(ttl.total_seconds() // 60)
    body = (
        "Password Reset Request\n\n"
        f"You requested a password reset for the account associated with {email}.\n\n"
        "Open the following link to choose a new password:\n"
        f"{reset_link}\n\n"
        f"This link will expire in {minutes} minutes.\n\n"
        "If you didn't request this password reset, please ignore this e-mail.\n"
    )
    return "Reset Your Password", body


class PasswordResetService:
    """Issues and consumes password-reset tokens."""

    def __init__(
        self,
        users: UserStore,
        store: ResetTokenStore,
        audit: AuditSink,
        mailer: Mailer,
        *,
        base_url: str = "http://localhost:5000",
        ttl: datetime.timedelta = DEFAULT_TOKEN_TTL,
        min_password_length: int = 6,
        fallback_store: Optional[InMemoryResetTokenStore] = None,
    ):
        self.users = users
        self.store = store
        self.audit = audit
        self.mailer = mailer
        self.base_url = base_url.rstrip("/")
        self.ttl = ttl
        self.min_password_length = min_password_length
        self.fallback_store = fallback_store

    def request_reset(self, email: str) -> Optional[str]:
        """Issue a token for ``email`` and mail the reset link.

        Returns the token, or None when no such account exists (callers
        must not reveal the difference to the client).

        Raises:
            InvalidInput: If email is empty
            ServiceUnavailable: If the database is down and no fallback is enabled,
                or the reset e-mail could not be sent
        """
        email = (email or "").strip().lower()
        if not email:
            raise InvalidInput("Email is required.")

        try:
            user = self.users.find_by_email(email)
        except ServiceUnavailable:
            if self.fallback_store is None:
                raise
            logger.warning("Database unavailable; issuing development reset token for %s", email)
            self.fallback_store.purge_expired()
            return self._issue(self.fallback_store, user_id="", email=email)

        if user is None:
            logger.info("Password reset requested for unknown e-mail")
            return None

        return self._issue(self.store, user_id=user.id, email=user.email)

    def _issue(self, store: ResetTokenStore, *, user_id: str, email: str) -> str:
        token = PasswordResetToken(
            token=generate_token(),
            user_id=user_id,
            email=email,
            expires_at=utcnow() + self.ttl,
        )
        store.issue(token)

        reset_link = f"{self.base_url}/reset/{token.token}"
        subject, body = password_reset_email(reset_link, email, self.ttl)
        if not self.mailer.send([email], subject, body):
            raise ServiceUnavailable("Failed to send reset email. Please try again later.")
        return token.token

    def reset_password(self, token: str, new_password: str) -> ResetOutcome:
        """Consume ``token`` and set the new password.

        Raises:
            InvalidInput: Password too short or token missing
            Expired: Token unknown or past its TTL
            AlreadyConsumed: Token used before
            ServiceUnavailable: Storage unreachable
        """
        if not token:
            raise InvalidInput("Token is required.")
        if not new_password or len(new_password) < self.min_password_length:
            raise InvalidInput(
                f"Password must be at least {self.min_password_length} characters long"
            )

        try:
            claimed = self.store.claim(token)
        except (Expired, ServiceUnavailable) as exc:
            if self.fallback_store is None:
                raise
            return self._reset_from_fallback(token, new_password, exc)

        password_hash = generate_password_hash(new_password)
        try:
            updated = self.users.set_password(claimed.user_id, password_hash)
        except ServiceUnavailable:
            self.store.release(token)
            raise
        if not updated:
            # Account deleted after the token was issued.
            raise Expired()

        self.audit.record(
            claimed.user_id,
            "RESET_PASSWORD",
            claimed.user_id,
            {"method": "password_reset_token"},
            actor_label=claimed.email,
            target_label=claimed.email,
        )
        return ResetOutcome(user_id=claimed.user_id)

    def _reset_from_fallback(self, token: str, new_password: str, original: Exception) -> ResetOutcome:
        try:
            claimed = self.fallback_store.claim(token)
        except Expired:
            raise original
        logger.warning("Development reset token consumed for %s", claimed.email)

        user: Optional[User] = None
        try:
            user = self.users.find_by_email(claimed.email)
            if user is not None:
                self.users.set_password(user.id, generate_password_hash(new_password))
        except ServiceUnavailable:
            logger.warning("Database still unavailable; password for %s not persisted (dev mode)", claimed.email)
            return ResetOutcome(user_id=claimed.user_id, dev_mode=True)

        if user is None:
            return ResetOutcome(user_id=claimed.user_id, dev_mode=True)

        self.audit.record(
            user.id,
            "RESET_PASSWORD",
            user.id,
            {"method": "password_reset_token", "devMode": True},
            actor_label=user.email,
            target_label=user.email,
        )
        return ResetOutcome(user_id=user.id, dev_mode=True)
