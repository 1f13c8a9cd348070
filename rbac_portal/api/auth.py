"""Authentication routes: registration, credentials and OAuth login, profile.

OAuth providers:
- google: registered when GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are set
- Accounts are matched by e-mail; an existing credentials account is linked
"""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, redirect, session, url_for
from authlib.integrations.flask_client import OAuth

from rbac_portal.api.decorators import get_services, json_body, login_required
from rbac_portal.core.exceptions import NotFound
from rbac_portal.core.rbac import clear_session, login_user

bp = Blueprint("auth", __name__)

# Module-level OAuth instance (will be initialized by create_app)
oauth: OAuth = None
_providers: dict = {}

GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"


def init_oauth(app, cfg):
    """Initialize OAuth client for the configured providers."""
    global oauth, _providers

    oauth = OAuth(app)
    _providers = {}

    if cfg.oauth_enabled:
        _providers["google"] = oauth.register(
            name="google",
            server_metadata_url=GOOGLE_METADATA_URL,
            client_id=cfg.google_client_id,
            client_secret=cfg.google_client_secret,
            client_kwargs={"scope": "openid email profile"},
        )
    else:
        app.logger.info("Google OAuth not configured; only credentials login is available")

    return oauth, _providers


def get_oauth_client(provider: str):
    """Get the OAuth client for ``provider``.

    Raises:
        NotFound: If the provider is not configured
    """
    client = _providers.get(provider)
    if client is None:
        raise NotFound(f"OAuth provider '{provider}' is not configured")
    return client


def _redirect_uri(provider: str) -> str:
    cfg = current_app.config["APP_CONFIG"]
    if cfg.oauth_redirect_base:
        return f"{cfg.oauth_redirect_base.rstrip('/')}/callback/{provider}"
    return url_for("auth.callback", provider=provider, _external=True)


def _session_payload(user) -> dict:
    return {"ok": True, "user": user.to_public(), "csrfToken": session.get("_csrf_token")}


# ─────────────────────────────────────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/register", methods=["POST"])
def register():
    """Create a credentials account.

    Body: ``{name, email, password, adminKey?}``
    """
    payload = json_body()
    user = get_services().accounts.register(
        payload.get("name", ""),
        payload.get("email", ""),
        payload.get("password", ""),
        payload.get("adminKey"),
    )
    return jsonify({"ok": True, "message": "User registered successfully", "user": user.to_public()}), 201


@bp.route("/login", methods=["POST"])
def login():
    """Credentials login. Body: ``{email, password}``"""
    payload = json_body()
    user = get_services().accounts.authenticate(payload.get("email", ""), payload.get("password", ""))
    login_user(user)
    current_app.logger.info(f"[Auth] Credentials login for {user.id} (role={user.role})")
    return jsonify(_session_payload(user))


@bp.route("/login/<provider>")
def oauth_login(provider: str):
    """Initiate OAuth login flow."""
    client = get_oauth_client(provider)
    return client.authorize_redirect(_redirect_uri(provider))


@bp.route("/callback/<provider>")
def callback(provider: str):
    """Handle OAuth callback after successful authentication."""
    client = get_oauth_client(provider)
    token = client.authorize_access_token()

    userinfo = token.get("userinfo")
    if not userinfo:
        userinfo = client.userinfo(token=token)

    user = get_services().accounts.login_oauth(
        userinfo.get("email", ""),
        userinfo.get("name", ""),
        provider,
    )
    login_user(user)
    current_app.logger.info(f"[Auth] Provider: {provider}, user {user.id} (role={user.role})")
    return redirect(url_for("auth.me"))


@bp.route("/logout", methods=["POST"])
def logout():
    """Clear the session."""
    clear_session()
    return jsonify({"ok": True})


@bp.route("/me")
@login_required
def me():
    """Current user profile."""
    return jsonify(_session_payload(g.user))


@bp.route("/account/password", methods=["POST"])
@login_required
def change_password():
    """Change own password. Body: ``{currentPassword, newPassword}``"""
    payload = json_body()
    get_services().accounts.change_password(
        g.user.id,
        payload.get("currentPassword", ""),
        payload.get("newPassword", ""),
    )
    return jsonify({"ok": True, "message": "Password updated"})
