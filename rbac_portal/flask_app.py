"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with all blueprints, middleware, and configuration.
"""
from __future__ import annotations
import datetime
import hmac
import ipaddress
import logging
import secrets
from typing import Optional

from flask import Flask, abort, g, request, session
from pymongo.database import Database
from werkzeug.middleware.proxy_fix import ProxyFix

from rbac_portal.config import AppConfig, load_settings
from rbac_portal.core.database import create_mongo_client, ensure_indexes
from rbac_portal.core.services import Services, build_services

logger = logging.getLogger(__name__)

# Endpoints reachable before a session (and its CSRF token) exists.
CSRF_EXEMPT_ENDPOINTS = {
    "auth.register",
    "auth.login",
    "reset.request_reset",
    "reset.reset_password",
}


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(
    cfg: Optional[AppConfig] = None,
    *,
    db: Optional[Database] = None,
    services: Optional[Services] = None,
) -> Flask:
    """Create and configure Flask application.

    Args:
        cfg: Settings (loaded from the environment when omitted)
        db: Database handle (a client is built from ``cfg`` when omitted)
        services: Pre-built service container (tests inject doubles this way)
    """
    cfg = cfg or load_settings()

    app = Flask(__name__)
    app.config["APP_CONFIG"] = cfg

    # Flask session configuration (signed cookie; holds only user id + CSRF token)
    app.config["SECRET_KEY"] = cfg.secret_key
    app.config["SESSION_COOKIE_NAME"] = "rbac_portal_session"
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_COOKIE_SECURE"] = cfg.session_cookie_secure
    app.config["PERMANENT_SESSION_LIFETIME"] = datetime.timedelta(hours=cfg.session_lifetime_hours)

    # Trust X-Forwarded-* headers from proxy (nginx)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    trusted_proxy_networks = _parse_networks(cfg.trusted_proxy_ips)
    app.config["TRUSTED_PROXY_NETWORKS"] = trusted_proxy_networks
    app.config["CSRF_SESSION_KEY"] = "_csrf_token"

    # Storage and services
    if services is None:
        if db is None:
            db = create_mongo_client(cfg)[cfg.mongodb_db]
        ensure_indexes(db, cfg.audit_retention_seconds)
        services = build_services(cfg, db)
    app.extensions["rbac_portal"] = services

    # Initialize OAuth
    from rbac_portal.api import auth
    auth.init_oauth(app, cfg)

    # Register blueprints
    from rbac_portal.api import admin, errors, health, reset

    app.register_blueprint(auth.bp)
    app.register_blueprint(reset.bp)
    app.register_blueprint(health.bp)
    app.register_blueprint(admin.bp, url_prefix="/admin")

    errors.register_error_handlers(app)

    _register_middleware(app, trusted_proxy_networks)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    logger.info("Mode=%s database=%s", mode_label, services.db.name)
    if cfg.demo_mode:
        logger.warning("Demo mode active - do not deploy with demo credentials")

    return app


def _register_middleware(app: Flask, trusted_proxy_networks: list):
    """Register before_request middleware."""

    @app.before_request
    def enforce_proxy_headers() -> None:
        """Validate proxy headers from trusted sources only."""
        original_remote = request.environ.get("werkzeug.proxy_fix.orig_remote_addr")
        if not original_remote and request.headers.get("X-Forwarded-For"):
            original_remote = (request.environ.get("werkzeug.proxy_fix.orig") or {}).get("REMOTE_ADDR")
        if original_remote:
            try:
                address = ipaddress.ip_address(original_remote)
                if not any(address in network for network in trusted_proxy_networks):
                    abort(400, description="Untrusted proxy")
            except ValueError:
                abort(400, description="Invalid proxy address")

        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if forwarded_proto and forwarded_proto != "https":
            abort(400, description="Invalid forwarded protocol")

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for and "," in forwarded_for:
            abort(400, description="Multiple forwarded clients not permitted")

        g.csrf_token = _generate_csrf_token()

    @app.before_request
    def enforce_csrf() -> None:
        """Validate CSRF token for state-changing requests."""
        if request.method not in {"POST", "PUT", "PATCH", "DELETE"}:
            return

        if request.endpoint in CSRF_EXEMPT_ENDPOINTS:
            return

        submitted_token = request.headers.get("X-CSRF-Token", "")
        csrf_session_key = app.config["CSRF_SESSION_KEY"]
        session_token = session.get(csrf_session_key, "")

        if not session_token or not submitted_token or not hmac.compare_digest(session_token, submitted_token):
            abort(400, description="CSRF validation failed")


# ─────────────────────────────────────────────────────────────────────────────
# Helper Functions
# ─────────────────────────────────────────────────────────────────────────────
def _parse_networks(trusted_proxy_ips: str) -> list:
    networks = []
    for entry in trusted_proxy_ips.split(","):
        entry = entry.strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("Ignoring invalid TRUSTED_PROXY_IPS entry: %s", entry)
    return networks


def _generate_csrf_token() -> str:
    """Generate or retrieve CSRF token for current session."""
    csrf_session_key = "_csrf_token"
    token = session.get(csrf_session_key)
    if not token:
        token = secrets.token_urlsafe(32)
        session[csrf_session_key] = token
    return token
