"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

SECRETS_DIR = Path("/run/secrets")


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = SECRETS_DIR / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info("Loaded %s from %s", secret_name, SECRETS_DIR)
                return secret_value
        except OSError as exc:
            logger.warning("Failed to read %s/%s: %s", SECRETS_DIR, secret_name, exc)

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            logger.info("Loaded %s from environment (fallback)", env_var)
            return secret_value

    return None


def _env_bool(name: str, default: bool) -> bool:
    return os.environ.get(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be an integer (got {raw!r}).")


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Flask
    secret_key: str
    session_cookie_secure: bool = True
    trusted_proxy_ips: str = "127.0.0.1/32,::1/128"
    session_lifetime_hours: int = 8

    # MongoDB
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "rbac_portal"
    mongo_server_selection_timeout_ms: int = 5000
    mongo_connect_timeout_ms: int = 10000
    mongo_socket_timeout_ms: int = 45000
    mongo_max_pool_size: int = 10

    # Registration / OAuth
    admin_registration_key: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""
    oauth_redirect_base: str = ""

    # Password reset
    app_base_url: str = "http://localhost:5000"
    reset_token_ttl_seconds: int = 3600
    min_password_length: int = 6
    dev_token_fallback: bool = False

    # Audit
    audit_log_signing_key: str = ""
    audit_retention_seconds: int = 63072000

    # Notifications
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "noreply@rbac-portal.local"
    admin_alert_emails: list[str] = field(default_factory=list)
    slack_webhook_url: str = ""
    notification_timeout: int = 5
    notification_workers: int = 4

    @property
    def oauth_enabled(self) -> bool:
        """Google OAuth is offered only when both client credentials are present."""
        return bool(self.google_client_id and self.google_client_secret)


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        logger.info("[demo-mode] Using default for %s", var_name)
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = _env_bool("DEMO_MODE", False)

    # Flask secret key
    secret_key = _load_secret_from_file("flask_secret_key", "FLASK_SECRET_KEY")
    if not secret_key:
        if not demo_mode:
            raise RuntimeError("FLASK_SECRET_KEY not found in /run/secrets or environment")
        secret_key = secrets.token_urlsafe(48)
        logger.info("[demo-mode] Generated temporary FLASK_SECRET_KEY")

    session_cookie_secure = _env_bool("FLASK_SESSION_COOKIE_SECURE", True)

    trusted_proxy_ips = os.environ.get("TRUSTED_PROXY_IPS")
    if not trusted_proxy_ips:
        is_testing = os.environ.get("PYTEST_CURRENT_TEST") is not None
        if demo_mode or is_testing:
            trusted_proxy_ips = "127.0.0.1/32,::1/128"
        else:
            raise RuntimeError("TRUSTED_PROXY_IPS is required when DEMO_MODE is false.")

    # MongoDB
    mongodb_uri = _load_secret_from_file("mongodb_uri", "MONGODB_URI") or ""
    if not mongodb_uri:
        mongodb_uri = _get_or_generate(
            "MONGODB_URI",
            demo_default="mongodb://localhost:27017",
            demo_mode=demo_mode,
        )
    mongodb_db = os.environ.get("MONGODB_DB", "rbac_portal")

    # Registration / OAuth
    admin_registration_key = _load_secret_from_file("admin_registration_key", "ADMIN_REGISTRATION_KEY") or ""
    if not admin_registration_key:
        logger.warning("ADMIN_REGISTRATION_KEY not set; self-registration can only create 'user' accounts")
    google_client_id = os.environ.get("GOOGLE_CLIENT_ID", "")
    google_client_secret = _load_secret_from_file("google_client_secret", "GOOGLE_CLIENT_SECRET") or ""

    app_base_url = _get_or_generate(
        "APP_BASE_URL",
        demo_default="http://localhost:5000",
        demo_mode=demo_mode,
    ).rstrip("/")
    oauth_redirect_base = os.environ.get("OAUTH_REDIRECT_BASE", app_base_url).rstrip("/")

    # Audit
    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    if not audit_log_signing_key and demo_mode:
        audit_log_signing_key = os.environ.get(
            "AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production"
        )
        logger.info("[demo-mode] Using demo AUDIT_LOG_SIGNING_KEY")

    # Notifications
    smtp_password = _load_secret_from_file("smtp_password", "SMTP_PASSWORD") or ""
    smtp_user = os.environ.get("SMTP_USER", "")
    admin_alert_emails = [
        address.strip()
        for address in os.environ.get("ADMIN_ALERT_EMAIL", "").split(",")
        if address.strip()
    ]
    slack_webhook_url = _load_secret_from_file("slack_webhook_url", "SLACK_WEBHOOK_URL") or ""

    cfg = AppConfig(
        demo_mode=demo_mode,
        secret_key=secret_key,
        session_cookie_secure=session_cookie_secure,
        trusted_proxy_ips=trusted_proxy_ips,
        session_lifetime_hours=_env_int("SESSION_LIFETIME_HOURS", 8),
        mongodb_uri=mongodb_uri,
        mongodb_db=mongodb_db,
        mongo_server_selection_timeout_ms=_env_int("MONGODB_SERVER_SELECTION_TIMEOUT_MS", 5000),
        mongo_connect_timeout_ms=_env_int("MONGODB_CONNECT_TIMEOUT_MS", 10000),
        mongo_socket_timeout_ms=_env_int("MONGODB_SOCKET_TIMEOUT_MS", 45000),
        mongo_max_pool_size=_env_int("MONGODB_MAX_POOL_SIZE", 10),
        admin_registration_key=admin_registration_key,
        google_client_id=google_client_id,
        google_client_secret=google_client_secret,
        oauth_redirect_base=oauth_redirect_base,
        app_base_url=app_base_url,
        reset_token_ttl_seconds=_env_int("RESET_TOKEN_TTL_SECONDS", 3600),
        min_password_length=_env_int("MIN_PASSWORD_LENGTH", 6),
        dev_token_fallback=_env_bool("DEV_TOKEN_FALLBACK", demo_mode),
        audit_log_signing_key=audit_log_signing_key,
        audit_retention_seconds=_env_int("AUDIT_RETENTION_SECONDS", 63072000),
        smtp_host=os.environ.get("SMTP_HOST", ""),
        smtp_port=_env_int("SMTP_PORT", 587),
        smtp_user=smtp_user,
        smtp_password=smtp_password,
        smtp_from=os.environ.get("SMTP_FROM", smtp_user or "noreply@rbac-portal.local"),
        admin_alert_emails=admin_alert_emails,
        slack_webhook_url=slack_webhook_url,
        notification_timeout=_env_int("NOTIFICATION_TIMEOUT", 5),
        notification_workers=_env_int("NOTIFICATION_WORKERS", 4),
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    logger.info("Mode=%s; db=%s; oauth=%s", mode_label, mongodb_db, "on" if cfg.oauth_enabled else "off")

    if demo_mode:
        logger.warning("Demo credentials in use. Do not deploy with these defaults.")

    return cfg
