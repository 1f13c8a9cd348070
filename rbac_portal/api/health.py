"""Health check endpoints."""
from flask import Blueprint, current_app

from rbac_portal.core.database import ping

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Readiness check endpoint (pings MongoDB)."""
    services = current_app.extensions["rbac_portal"]
    if not ping(services.db):
        return ("database unavailable", 503, {"Content-Type": "text/plain"})
    return ("ready", 200, {"Content-Type": "text/plain"})
