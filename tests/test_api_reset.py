"""Password-reset endpoints."""
import pytest
from werkzeug.security import check_password_hash

from rbac_portal.api.reset import GENERIC_RESET_MESSAGE
from rbac_portal.core.exceptions import ServiceUnavailable
from rbac_portal.core.password_reset import InMemoryResetTokenStore


def _token_from_mail(mailer):
    text = mailer.sent[-1]["text"]
    return text.split("/reset/", 1)[1].split()[0]


@pytest.mark.critical
def test_reset_request_response_does_not_reveal_account_existence(client, plain_user, mailer):
    known = client.post("/reset", json={"email": plain_user.email})
    unknown = client.post("/reset", json={"email": "ghost@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.get_json() == unknown.get_json() == {"ok": True, "message": GENERIC_RESET_MESSAGE}
    assert len(mailer.sent) == 1


def test_reset_request_requires_email(client):
    response = client.post("/reset", json={})

    assert response.status_code == 400
    assert response.get_json()["error"] == "InvalidInput"


def test_reset_request_mail_failure_is_503(client, services, plain_user, mocker):
    mocker.patch.object(services.mailer, "send", return_value=False)

    response = client.post("/reset", json={"email": plain_user.email})

    assert response.status_code == 503


def test_reset_flow_end_to_end(client, services, plain_user, mailer):
    client.post("/reset", json={"email": plain_user.email})
    token = _token_from_mail(mailer)

    response = client.post(f"/reset/{token}", json={"password": "fresh-password"})

    assert response.status_code == 200
    assert response.get_json() == {"ok": True, "message": "Password has been reset successfully"}
    assert check_password_hash(services.users.find_by_id(plain_user.id).password_hash, "fresh-password")
    assert client.post("/login", json={"email": plain_user.email, "password": "fresh-password"}).status_code == 200


@pytest.mark.critical
def test_reset_token_replay_rejected(client, plain_user, mailer):
    client.post("/reset", json={"email": plain_user.email})
    token = _token_from_mail(mailer)
    client.post(f"/reset/{token}", json={"password": "fresh-password"})

    replay = client.post(f"/reset/{token}", json={"password": "another-password"})

    assert replay.status_code == 400
    assert replay.get_json()["error"] == "AlreadyConsumed"


def test_unknown_token_rejected_as_expired(client):
    response = client.post("/reset/" + "0" * 64, json={"password": "fresh-password"})

    assert response.status_code == 400
    assert response.get_json() == {"ok": False, "error": "Expired", "message": "Token invalid or expired"}


def test_reset_short_password(client, plain_user, mailer):
    client.post("/reset", json={"email": plain_user.email})
    token = _token_from_mail(mailer)

    response = client.post(f"/reset/{token}", json={"password": "abc"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "InvalidInput"


def test_reset_with_development_store_flags_dev_mode(client, services, plain_user, mailer, mocker):
    services.resets.fallback_store = InMemoryResetTokenStore()
    mocker.patch.object(services.users, "find_by_email", side_effect=ServiceUnavailable())
    client.post("/reset", json={"email": plain_user.email})
    token = _token_from_mail(mailer)

    response = client.post(f"/reset/{token}", json={"password": "fresh-password"})

    assert response.status_code == 200
    assert response.get_json()["devMode"] is True
