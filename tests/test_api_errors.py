"""JSON error responses."""
import pytest

from rbac_portal.core.exceptions import (
    AlreadyConsumed,
    Conflict,
    Expired,
    Forbidden,
    InvalidInput,
    LastAdminProtected,
    NotFound,
    SelfDemotionForbidden,
    ServiceUnavailable,
    Unauthorized,
)


@pytest.mark.parametrize(
    "error, status",
    [
        (Forbidden(), 403),
        (Unauthorized(), 401),
        (InvalidInput("bad"), 400),
        (SelfDemotionForbidden(), 400),
        (LastAdminProtected(), 400),
        (NotFound(), 404),
        (Conflict(), 409),
        (Expired(), 400),
        (AlreadyConsumed(), 400),
        (ServiceUnavailable(), 503),
    ],
)
def test_domain_errors_map_to_status_and_kind(app, error, status):
    @app.route("/boom")
    def boom():
        raise error

    response = app.test_client().get("/boom")

    assert response.status_code == status
    assert response.get_json() == {"ok": False, "error": error.kind, "message": error.message}


def test_unknown_route_is_json_404(client):
    response = client.get("/no-such-page")

    assert response.status_code == 404
    assert response.get_json() == {"ok": False, "error": "NotFound", "message": "Resource not found"}


def test_wrong_method_is_json_405(client):
    response = client.get("/logout")

    assert response.status_code == 405
    assert response.get_json()["error"] == "MethodNotAllowed"


def test_unhandled_exception_is_logged_and_hidden(app, caplog):
    app.config["PROPAGATE_EXCEPTIONS"] = False

    @app.route("/crash")
    def crash():
        raise KeyError("secret-internal-detail")

    response = app.test_client().get("/crash")

    assert response.status_code == 500
    assert response.get_json() == {
        "ok": False,
        "error": "InternalError",
        "message": "An unexpected error occurred",
    }
    assert "secret-internal-detail" not in response.get_data(as_text=True)
    assert "Unhandled exception" in caplog.text


def test_default_messages():
    assert SelfDemotionForbidden().message == "Admins cannot demote themselves"
    assert LastAdminProtected().message == "Cannot demote the last remaining admin"
    assert InvalidInput("Invalid role").to_dict() == {"ok": False, "error": "InvalidInput", "message": "Invalid role"}
