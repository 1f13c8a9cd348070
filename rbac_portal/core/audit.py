"""Audit trail for privileged actions, with high-risk alert fan-out."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
from typing import Any, Optional

from pymongo import DESCENDING
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from .database import Collections
from .exceptions import ServiceUnavailable
from .models import (
    AUDIT_ACTIONS,
    ROLE_ADMIN,
    ROLE_USER,
    AuditAction,
    AuditLogEntry,
    utcnow,
)
from .notifications import HighRiskAlert, NotificationDispatcher
from .users import to_object_id

logger = logging.getLogger(__name__)

ALWAYS_HIGH_RISK = frozenset({"DELETE_USER", "RESET_PASSWORD"})

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def is_high_risk(action: str, details: Optional[dict[str, Any]] = None) -> bool:
    """Whether an audited action warrants external notification.

    Deletions and password resets always do; a role update only when it
    demotes an admin to a plain user.
    """
    if action in ALWAYS_HIGH_RISK:
        return True
    if action == "UPDATE_ROLE":
        details = details or {}
        return details.get("previousRole") == ROLE_ADMIN and details.get("newRole") == ROLE_USER
    return False


def _sign_event(payload: dict[str, Any], signing_key: bytes) -> str:
    """Generate HMAC-SHA256 signature for an audit entry."""
    if not signing_key:
        return ""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def _json_safe(details: dict[str, Any]) -> dict[str, Any]:
    """Reduce details to JSON-native values so the signature survives a round trip."""
    return json.loads(json.dumps(details, default=str))


def _truncate_to_millis(value: datetime.datetime) -> datetime.datetime:
    # BSON dates have millisecond precision.
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


class AuditSink:
    """Writes immutable audit entries and serves read-side queries.

    ``record`` never raises: invalid input is logged and dropped, and storage
    failures are logged, so auditing can never abort the action that
    triggered it.
    """

    def __init__(
        self,
        db: Database,
        dispatcher: Optional[NotificationDispatcher] = None,
        signing_key: str = "",
    ):
        self._collection: Collection = db[Collections.AUDIT_LOGS]
        self.dispatcher = dispatcher
        self._signing_key = signing_key.strip().encode("utf-8")

    # ─────────────────────────────────────────────────────────────────────
    # Write path
    # ─────────────────────────────────────────────────────────────────────
    def record(
        self,
        actor_id: str,
        action: AuditAction,
        target_user_id: str,
        details: Optional[dict[str, Any]] = None,
        *,
        actor_label: str = "",
        target_label: str = "",
    ) -> Optional[AuditLogEntry]:
        """Persist one audit entry and alert on high-risk actions.

        Args:
            actor_id: Who performed the action
            action: One of AUDIT_ACTIONS
            target_user_id: Who was affected
            details: Free-form context (e.g. previousRole/newRole)
            actor_label: Human-readable actor for notifications (e.g. e-mail)
            target_label: Human-readable target for notifications

        Returns:
            The stored entry, or None if the input was rejected or the write failed
        """
        if to_object_id(actor_id) is None or to_object_id(target_user_id) is None:
            logger.error("Invalid audit log parameters: actor=%r target=%r", actor_id, target_user_id)
            return None
        if action not in AUDIT_ACTIONS:
            logger.error("Invalid audit log action: %r", action)
            return None

        try:
            safe_details = _json_safe(details or {})
        except (TypeError, ValueError) as exc:
            logger.error("Audit details for %s are not serializable: %s", action, exc)
            return None

        entry = AuditLogEntry(
            timestamp=_truncate_to_millis(utcnow()),
            actor_id=str(actor_id),
            action=action,
            target_user_id=str(target_user_id),
            details=safe_details,
        )
        signature = _sign_event(entry.signing_payload(), self._signing_key)

        doc = {
            "timestamp": entry.timestamp,
            "actor_id": entry.actor_id,
            "action": entry.action,
            "target_user_id": entry.target_user_id,
            "details": entry.details,
        }
        if signature:
            doc["signature"] = signature

        try:
            result = self._collection.insert_one(doc)
        except PyMongoError as exc:
            logger.error("Failed to create audit log for %s on %s: %s", action, target_user_id, exc)
            stored = None
        else:
            doc["_id"] = result.inserted_id
            stored = AuditLogEntry.from_document(doc)
            logger.info("Audit log created: %s by %s on %s", action, actor_id, target_user_id)

        if is_high_risk(action, safe_details):
            self._notify(entry, actor_label, target_label)

        return stored

    def _notify(self, entry: AuditLogEntry, actor_label: str, target_label: str) -> None:
        if self.dispatcher is None:
            return
        alert = HighRiskAlert(
            action=entry.action,
            actor_id=entry.actor_id,
            target_user_id=entry.target_user_id,
            details=entry.details,
            timestamp=entry.timestamp,
            actor_label=actor_label,
            target_label=target_label,
        )
        try:
            self.dispatcher.dispatch(alert)
        except Exception as exc:
            logger.error("Failed to dispatch high-risk alert for %s: %s", entry.action, exc)

    # ─────────────────────────────────────────────────────────────────────
    # Read path
    # ─────────────────────────────────────────────────────────────────────
    def list_entries(
        self,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        skip: int = 0,
        actor_id: Optional[str] = None,
        target_user_id: Optional[str] = None,
        action: Optional[str] = None,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
    ) -> list[AuditLogEntry]:
        """Entries matching every given filter, newest first.

        Raises:
            ServiceUnavailable: If the audit store cannot be read
        """
        query: dict[str, Any] = {}
        if actor_id:
            query["actor_id"] = actor_id
        if target_user_id:
            query["target_user_id"] = target_user_id
        if action:
            query["action"] = action
        if start or end:
            window: dict[str, Any] = {}
            if start:
                window["$gte"] = start
            if end:
                window["$lte"] = end
            query["timestamp"] = window

        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        skip = max(0, int(skip))

        try:
            cursor = (
                self._collection.find(query)
                .sort([("timestamp", DESCENDING), ("_id", DESCENDING)])
                .skip(skip)
                .limit(limit)
            )
            return [AuditLogEntry.from_document(doc) for doc in cursor]
        except PyMongoError as exc:
            logger.error("Error fetching audit logs: %s", exc)
            raise ServiceUnavailable() from exc

    def verify_entries(self) -> tuple[int, int]:
        """Verify all signatures in the audit trail.

        Returns:
            Tuple of (total_entries, valid_signatures)
        """
        total = 0
        valid = 0
        try:
            for doc in self._collection.find({}):
                total += 1
                entry = AuditLogEntry.from_document(doc)
                if not entry.signature:
                    continue
                computed = _sign_event(entry.signing_payload(), self._signing_key)
                if computed and hmac.compare_digest(entry.signature, computed):
                    valid += 1
        except PyMongoError as exc:
            logger.error("Error verifying audit logs: %s", exc)
            raise ServiceUnavailable() from exc
        return total, valid
