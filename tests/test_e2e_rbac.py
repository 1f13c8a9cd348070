"""End-to-end admin scenarios through the HTTP API."""
import json

import pytest

from rbac_portal.core.database import Collections
from rbac_portal.core.models import ROLE_ADMIN, ROLE_USER
from rbac_portal.core.notifications import EmailChannel, NotificationDispatcher, SlackWebhookChannel
from rbac_portal.core.services import build_services
from rbac_portal.flask_app import create_app

from tests.conftest import TEST_PASSWORD, ImmediateExecutor, RecordingMailer, make_user

SLACK_URL = "https://hooks.slack.test/services/T000/B000/XXX"


def _login(client, email):
    response = client.post("/login", json={"email": email, "password": TEST_PASSWORD})
    assert response.status_code == 200
    return {"X-CSRF-Token": response.get_json()["csrfToken"]}


@pytest.fixture()
def alert_mailer():
    return RecordingMailer()


@pytest.fixture()
def slack_post(mocker):
    post = mocker.patch("rbac_portal.core.notifications.requests.post")
    post.return_value.raise_for_status.return_value = None
    return post


@pytest.fixture()
def wired_app(app_config, db, mailer, alert_mailer, slack_post):
    dispatcher = NotificationDispatcher(
        [EmailChannel(alert_mailer, ["security@example.com"]), SlackWebhookChannel(SLACK_URL)],
        executor=ImmediateExecutor(),
    )
    services = build_services(app_config, db, dispatcher=dispatcher, mailer=mailer)
    app = create_app(app_config, services=services)
    app.config.update(TESTING=True)
    return app, services


@pytest.mark.critical
def test_sole_admin_cannot_demote_self(wired_app, db, alert_mailer, slack_post):
    app, services = wired_app
    admin = make_user(services, "root@example.com", ROLE_ADMIN)
    client = app.test_client()
    headers = _login(client, admin.email)

    response = client.patch(
        "/admin/users/role", json={"userId": admin.id, "newRole": ROLE_USER}, headers=headers
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "SelfDemotionForbidden"
    assert services.users.admin_count() == 1
    assert db[Collections.AUDIT_LOGS].count_documents({"action": "UPDATE_ROLE"}) == 0
    assert alert_mailer.sent == []
    slack_post.assert_not_called()


@pytest.mark.critical
def test_demoting_second_admin_alerts_every_channel(wired_app, db, alert_mailer, slack_post):
    app, services = wired_app
    alice = make_user(services, "alice@example.com", ROLE_ADMIN, name="Alice")
    bob = make_user(services, "bob@example.com", ROLE_ADMIN, name="Bob")
    alice_client, bob_client = app.test_client(), app.test_client()
    alice_headers = _login(alice_client, alice.email)
    bob_headers = _login(bob_client, bob.email)

    response = alice_client.patch(
        "/admin/users/role", json={"userId": bob.id, "newRole": ROLE_USER}, headers=alice_headers
    )

    assert response.status_code == 200
    assert response.get_json()["previousRole"] == ROLE_ADMIN
    assert services.users.admin_count() == 1

    # One audit entry, signed
    entries = alice_client.get("/admin/audit?action=UPDATE_ROLE").get_json()["entries"]
    assert len(entries) == 1
    assert entries[0]["actorId"] == alice.id
    assert entries[0]["details"] == {"previousRole": ROLE_ADMIN, "newRole": ROLE_USER}

    # Both channels received the alert
    assert len(alert_mailer.sent) == 1
    assert alert_mailer.sent[0]["to"] == ["security@example.com"]
    assert "Performed by: alice@example.com" in alert_mailer.sent[0]["text"]
    slack_post.assert_called_once()
    payload = json.loads(slack_post.call_args.kwargs["data"])
    assert payload["text"] == "High-Risk Admin Action: UPDATE_ROLE"

    # Bob's existing session now carries the user role
    assert bob_client.get("/admin/users").status_code == 403
    retaliation = bob_client.patch(
        "/admin/users/role", json={"userId": alice.id, "newRole": ROLE_USER}, headers=bob_headers
    )
    assert retaliation.status_code == 403

    # The remaining admin still cannot demote themselves
    self_demotion = alice_client.patch(
        "/admin/users/role", json={"userId": alice.id, "newRole": ROLE_USER}, headers=alice_headers
    )
    assert self_demotion.status_code == 400
    assert services.users.admin_count() == 1

    verify = alice_client.get("/admin/audit/verify").get_json()
    assert verify["tampered"] == 0


def test_failing_channel_does_not_affect_the_request(wired_app, slack_post):
    app, services = wired_app
    slack_post.side_effect = ConnectionError("slack down")
    alice = make_user(services, "alice@example.com", ROLE_ADMIN)
    target = make_user(services, "target@example.com", ROLE_USER)
    client = app.test_client()
    headers = _login(client, alice.email)

    response = client.delete(f"/admin/users/{target.id}", headers=headers)

    assert response.status_code == 200
    assert services.users.find_by_id(target.id) is None
