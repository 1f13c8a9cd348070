"""Admin routes: user listing, role mutation, deletion, audit trail."""
from __future__ import annotations
import datetime
from typing import Optional

from flask import Blueprint, g, jsonify, request

from rbac_portal.api.decorators import get_services, json_body, require_admin
from rbac_portal.core.audit import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from rbac_portal.core.exceptions import InvalidInput
from rbac_portal.core.models import AUDIT_ACTIONS

bp = Blueprint("admin", __name__)


# ─────────────────────────────────────────────────────────────────────────────
# Helper Functions
# ─────────────────────────────────────────────────────────────────────────────
def _parse_datetime(name: str) -> Optional[datetime.datetime]:
    """Parse an ISO-8601 query parameter; naive values are taken as UTC."""
    raw = request.args.get(name, "").strip()
    if not raw:
        return None
    try:
        value = datetime.datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidInput(f"Invalid '{name}' date: {raw}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value


def _parse_int(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidInput(f"Invalid '{name}' value: {raw}") from exc


# ─────────────────────────────────────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/users")
@require_admin
def list_users():
    """All users in creation order."""
    users = get_services().users.list_users()
    return jsonify({"ok": True, "users": [user.to_public() for user in users]})


@bp.route("/users/role", methods=["PATCH"])
@require_admin
def change_role():
    """Role mutation. Body: ``{userId, newRole}``"""
    payload = json_body()
    target_user_id = payload.get("userId")
    new_role = payload.get("newRole")
    if not isinstance(target_user_id, str) or not target_user_id:
        raise InvalidInput("userId is required")
    if not isinstance(new_role, str):
        raise InvalidInput("Invalid role")

    result = get_services().guard.change_role(
        g.user.id,
        g.user.role,
        target_user_id,
        new_role,
        actor_label=g.user.email,
    )
    return jsonify(result.to_dict())


@bp.route("/users/<user_id>", methods=["DELETE"])
@require_admin
def delete_user(user_id: str):
    """Delete an account (never the caller's own, never the last admin)."""
    deleted = get_services().guard.delete_user(
        g.user.id,
        g.user.role,
        user_id,
        actor_label=g.user.email,
    )
    return jsonify({"ok": True, "userId": deleted.id})


@bp.route("/audit")
@require_admin
def audit_log():
    """Audit entries, newest first.

    Query params:
        actor, target, action: exact-match filters
        start, end: ISO-8601 timestamps (inclusive)
        limit (default 50, max 200), skip
    """
    action = request.args.get("action") or None
    if action is not None and action not in AUDIT_ACTIONS:
        raise InvalidInput(f"Unknown action: {action}")

    limit = _parse_int("limit", DEFAULT_PAGE_SIZE)
    skip = _parse_int("skip", 0)
    entries = get_services().audit.list_entries(
        limit=limit,
        skip=skip,
        actor_id=request.args.get("actor") or None,
        target_user_id=request.args.get("target") or None,
        action=action,
        start=_parse_datetime("start"),
        end=_parse_datetime("end"),
    )
    return jsonify({
        "ok": True,
        "entries": [entry.to_dict() for entry in entries],
        "limit": max(1, min(limit, MAX_PAGE_SIZE)),
        "skip": max(0, skip),
    })


@bp.route("/audit/verify")
@require_admin
def audit_verify():
    """Signature verification summary of the whole trail."""
    total, valid = get_services().audit.verify_entries()
    return jsonify({
        "ok": True,
        "total": total,
        "valid": valid,
        "tampered": total - valid,
        "integrity": 100.0 if total == 0 else round(valid / total * 100, 1),
    })
