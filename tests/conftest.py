"""Pytest shared fixtures."""
import concurrent.futures
import os
import pathlib
import sys

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports
os.environ.setdefault("DEMO_MODE", "true")

import mongomock
import pytest
from werkzeug.security import generate_password_hash

from rbac_portal.config import AppConfig
from rbac_portal.core.database import ensure_indexes
from rbac_portal.core.models import ROLE_ADMIN, ROLE_USER
from rbac_portal.core.notifications import NotificationChannel, NotificationDispatcher
from rbac_portal.core.services import build_services
from rbac_portal.flask_app import create_app

TEST_PASSWORD = "correct-horse"
ADMIN_KEY = "test-admin-key"
SIGNING_KEY = "test-signing-key-for-audit-trail"


# ─────────────────────────────────────────────────────────────────────────────
# Test Doubles
# ─────────────────────────────────────────────────────────────────────────────
class ImmediateExecutor(concurrent.futures.Executor):
    """Runs submitted work inline so alert fan-out is observable in tests."""

    def submit(self, fn, /, *args, **kwargs):
        future = concurrent.futures.Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


class RecordingChannel(NotificationChannel):
    """Channel that remembers every alert it receives."""

    name = "recording"

    def __init__(self, result: bool = True):
        self.alerts = []
        self.result = result

    def send(self, alert):
        self.alerts.append(alert)
        return self.result


class ExplodingChannel(NotificationChannel):
    name = "exploding"

    def __init__(self):
        self.calls = 0

    def send(self, alert):
        self.calls += 1
        raise RuntimeError("channel down")


class RecordingMailer:
    """Stands in for Mailer; records instead of sending."""

    def __init__(self, result: bool = True):
        self.sent = []
        self.result = result

    def send(self, to, subject, text, html=None):
        self.sent.append({"to": list(to), "subject": subject, "text": text})
        return self.result


# ─────────────────────────────────────────────────────────────────────────────
# Storage and Services
# ─────────────────────────────────────────────────────────────────────────────
def make_config(**overrides) -> AppConfig:
    base = dict(
        demo_mode=True,
        secret_key="test-secret-key",
        session_cookie_secure=False,
        trusted_proxy_ips="127.0.0.1/32,::1/128",
        mongodb_db="rbac_portal_test",
        admin_registration_key=ADMIN_KEY,
        app_base_url="http://localhost:5000",
        audit_log_signing_key=SIGNING_KEY,
        dev_token_fallback=False,
    )
    base.update(overrides)
    return AppConfig(**base)


@pytest.fixture()
def app_config():
    return make_config()


@pytest.fixture()
def db():
    """Fresh in-memory database with the production indexes."""
    client = mongomock.MongoClient(tz_aware=True)
    database = client["rbac_portal_test"]
    ensure_indexes(database)
    return database


@pytest.fixture()
def channel():
    return RecordingChannel()


@pytest.fixture()
def mailer():
    return RecordingMailer()


@pytest.fixture()
def dispatcher(channel):
    return NotificationDispatcher([channel], executor=ImmediateExecutor())


@pytest.fixture()
def services(app_config, db, dispatcher, mailer):
    return build_services(app_config, db, dispatcher=dispatcher, mailer=mailer)


def make_user(services, email: str, role: str = ROLE_USER, name: str = "Test User", password: str = TEST_PASSWORD):
    """Insert a credentials account directly through the store."""
    return services.users.create(
        email=email,
        name=name,
        role=role,
        password_hash=generate_password_hash(password),
    )


@pytest.fixture()
def admin_user(services):
    return make_user(services, "admin@example.com", ROLE_ADMIN, name="Admin")


@pytest.fixture()
def plain_user(services):
    return make_user(services, "user@example.com", ROLE_USER, name="Plain User")


# ─────────────────────────────────────────────────────────────────────────────
# Flask Test Client
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def app(app_config, services):
    flask_app = create_app(app_config, services=services)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture()
def client(app):
    with app.test_client() as client:
        yield client


# ─────────────────────────────────────────────────────────────────────────────
# Authentication Helpers
# ─────────────────────────────────────────────────────────────────────────────
def authenticate_as(client, user, csrf_token: str = "test-csrf-token") -> dict:
    """Bind ``user`` to the test client's session.

    Returns headers carrying the matching CSRF token.
    """
    with client.session_transaction() as session:
        session["user_id"] = user.id
        session["_csrf_token"] = csrf_token
    return {"X-CSRF-Token": csrf_token}


def get_csrf_token(client) -> str:
    """Get CSRF token from session."""
    client.get("/health")
    with client.session_transaction() as session:
        return session.get("_csrf_token", "")


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "critical: marks tests as critical security tests (P0 priority)"
    )
