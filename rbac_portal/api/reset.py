"""Password-reset routes."""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from rbac_portal.api.decorators import get_services, json_body

bp = Blueprint("reset", __name__)

GENERIC_RESET_MESSAGE = "If an account with that email exists, a reset link has been sent."


@bp.route("/reset", methods=["POST"])
def request_reset():
    """Request a reset link. Body: ``{email}``

    The response never reveals whether the e-mail belongs to an account.
    """
    payload = json_body()
    get_services().resets.request_reset(payload.get("email", ""))
    return jsonify({"ok": True, "message": GENERIC_RESET_MESSAGE})


@bp.route("/reset/<token>", methods=["POST"])
def reset_password(token: str):
    """Consume ``token``. Body: ``{password}``"""
    payload = json_body()
    outcome = get_services().resets.reset_password(token, payload.get("password", ""))
    if outcome.dev_mode:
        current_app.logger.warning("Password reset completed through the development token store")
    body = {"ok": True, "message": "Password has been reset successfully"}
    if outcome.dev_mode:
        body["devMode"] = True
    return jsonify(body)
