"""Unit tests for registration, login, OAuth linking and password change."""
import pytest
from werkzeug.security import check_password_hash

from rbac_portal.core.database import Collections
from rbac_portal.core.exceptions import Conflict, InvalidInput, NotFound, Unauthorized
from rbac_portal.core.models import ROLE_ADMIN, ROLE_USER

from tests.conftest import ADMIN_KEY, TEST_PASSWORD


def _actions(db):
    return [doc["action"] for doc in db[Collections.AUDIT_LOGS].find().sort("_id", 1)]


# ─────────────────────────────────────────────────────────────────────────────
# Registration
# ─────────────────────────────────────────────────────────────────────────────
def test_register_creates_plain_user(services, db):
    user = services.accounts.register("Alice", " Alice@Example.com ", TEST_PASSWORD)

    assert user.email == "alice@example.com"
    assert user.role == ROLE_USER
    assert check_password_hash(user.password_hash, TEST_PASSWORD)
    entry = db[Collections.AUDIT_LOGS].find_one({"action": "CREATE_USER"})
    assert entry["details"] == {
        "email": "alice@example.com",
        "role": ROLE_USER,
        "createdViaRegistration": True,
    }


@pytest.mark.critical
def test_register_with_admin_key_creates_admin(services):
    user = services.accounts.register("Root", "root@example.com", TEST_PASSWORD, admin_key=ADMIN_KEY)

    assert user.role == ROLE_ADMIN


@pytest.mark.critical
def test_register_with_wrong_admin_key_creates_plain_user(services):
    user = services.accounts.register("Eve", "eve@example.com", TEST_PASSWORD, admin_key="guess")

    assert user.role == ROLE_USER


def test_admin_key_ignored_when_not_configured(app_config, db, dispatcher, mailer):
    from rbac_portal.core.services import build_services

    app_config.admin_registration_key = ""
    services = build_services(app_config, db, dispatcher=dispatcher, mailer=mailer)

    user = services.accounts.register("Eve", "eve@example.com", TEST_PASSWORD, admin_key="")

    assert user.role == ROLE_USER


def test_register_duplicate_email_conflicts(services, plain_user):
    with pytest.raises(Conflict):
        services.accounts.register("Again", plain_user.email.upper(), TEST_PASSWORD)


@pytest.mark.parametrize(
    "name, email, password",
    [
        ("", "a@example.com", TEST_PASSWORD),
        ("<script>", "a@example.com", TEST_PASSWORD),
        ("Alice", "not-an-email", TEST_PASSWORD),
        ("Alice", "a@example.com", "short"),
    ],
)
def test_register_rejects_invalid_input(services, db, name, email, password):
    with pytest.raises(InvalidInput):
        services.accounts.register(name, email, password)

    assert db[Collections.USERS].count_documents({}) == 0


# ─────────────────────────────────────────────────────────────────────────────
# Credentials login
# ─────────────────────────────────────────────────────────────────────────────
def test_authenticate_success_is_audited(services, db, plain_user):
    user = services.accounts.authenticate("USER@example.com", TEST_PASSWORD)

    assert user.id == plain_user.id
    assert _actions(db) == ["LOGIN_SUCCESS"]


def test_authenticate_wrong_password_is_audited(services, db, plain_user):
    with pytest.raises(Unauthorized) as exc:
        services.accounts.authenticate(plain_user.email, "wrong-password")

    assert exc.value.message == "Invalid email or password"
    assert _actions(db) == ["LOGIN_FAILED"]


@pytest.mark.parametrize("email", ["nobody@example.com", "garbage"])
def test_authenticate_unknown_email_gives_same_error(services, db, email):
    with pytest.raises(Unauthorized) as exc:
        services.accounts.authenticate(email, TEST_PASSWORD)

    assert exc.value.message == "Invalid email or password"
    assert _actions(db) == []


def test_oauth_only_account_cannot_use_password_login(services):
    services.users.create(email="oauth@example.com", name="OAuth", oauth_provider="google")

    with pytest.raises(Unauthorized):
        services.accounts.authenticate("oauth@example.com", TEST_PASSWORD)


# ─────────────────────────────────────────────────────────────────────────────
# OAuth
# ─────────────────────────────────────────────────────────────────────────────
def test_oauth_login_creates_user_without_password(services, db):
    user = services.accounts.login_oauth("New@Example.com", "", "google")

    assert user.email == "new@example.com"
    assert user.name == "new"
    assert user.role == ROLE_USER
    assert user.password_hash is None
    assert user.oauth_provider == "google"
    assert _actions(db) == ["CREATE_USER", "LOGIN_SUCCESS"]


def test_oauth_login_links_existing_credentials_account(services, db, admin_user):
    user = services.accounts.login_oauth(admin_user.email, "Admin", "google")

    assert user.id == admin_user.id
    assert user.role == ROLE_ADMIN
    assert user.oauth_provider == "google"
    assert db[Collections.USERS].count_documents({}) == 1


def test_oauth_login_without_email_is_invalid(services):
    with pytest.raises(InvalidInput):
        services.accounts.login_oauth("", "Nobody", "google")


# ─────────────────────────────────────────────────────────────────────────────
# Password change
# ─────────────────────────────────────────────────────────────────────────────
def test_change_password(services, db, plain_user):
    services.accounts.change_password(plain_user.id, TEST_PASSWORD, "a-better-password")

    stored = services.users.find_by_id(plain_user.id)
    assert check_password_hash(stored.password_hash, "a-better-password")
    assert _actions(db) == ["PASSWORD_CHANGED"]


def test_change_password_requires_current_password(services, plain_user):
    with pytest.raises(Unauthorized):
        services.accounts.change_password(plain_user.id, "wrong", "a-better-password")


def test_change_password_enforces_minimum_length(services, plain_user):
    with pytest.raises(InvalidInput):
        services.accounts.change_password(plain_user.id, TEST_PASSWORD, "abc")


def test_oauth_account_may_set_first_password(services):
    user = services.users.create(email="oauth@example.com", name="OAuth", oauth_provider="google")

    services.accounts.change_password(user.id, "", "first-password")

    assert services.accounts.authenticate("oauth@example.com", "first-password").id == user.id


def test_change_password_for_missing_user(services):
    with pytest.raises(NotFound):
        services.accounts.change_password("64b7f0c2e4b0a1a2b3c4d5e6", TEST_PASSWORD, "a-better-password")
