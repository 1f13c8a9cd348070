"""Tests for health check endpoints."""


def test_health_check(client):
    """Test basic health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.data == b"ok"
    assert response.content_type.startswith("text/plain")


def test_readiness_check(client):
    """Readiness pings MongoDB."""
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.data == b"ready"
    assert response.content_type.startswith("text/plain")


def test_readiness_check_database_down(client, mocker):
    mocker.patch("rbac_portal.api.health.ping", return_value=False)

    response = client.get("/ready")

    assert response.status_code == 503
    assert response.data == b"database unavailable"
