import logging

from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import RequestEntityTooLarge


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["message"] == "E-commerce Backend is running"
    assert body["data"] == {"version": "v1"}


def test_unknown_route(client, caplog):
    with caplog.at_level(logging.INFO, logger="app"):
        response = client.get("/api/v1/nowhere")

    assert response.status_code == 404
    body = response.get_json()
    assert body["success"] is False
    assert body["message"] == "Route GET /api/v1/nowhere not found"
    assert any(
        record.levelno == logging.WARNING and "/api/v1/nowhere 404" in record.getMessage()
        for record in caplog.records
    )


def test_wrong_method(client):
    response = client.delete("/health")

    assert response.status_code == 405
    assert response.get_json()["success"] is False


def test_oversized_request(app):
    def too_large():
        raise RequestEntityTooLarge()

    app.add_url_rule("/too-large", "too_large", too_large)

    response = app.test_client().get("/too-large")

    assert response.status_code == 413
    assert response.get_json()["success"] is False


def test_duplicate_key_becomes_field_error(app):
    def racing_insert():
        raise DuplicateKeyError("E11000", 11000, {"keyPattern": {"slug": 1}})

    app.add_url_rule("/race", "race", racing_insert)

    response = app.test_client().get("/race")

    assert response.status_code == 400
    assert response.get_json()["errors"][0]["field"] == "slug"
    assert response.get_json()["message"] == "Slug already exists"


def test_unexpected_error_is_hidden(app):
    def explode():
        raise RuntimeError("database password is hunter2")

    app.add_url_rule("/explode", "explode", explode)

    response = app.test_client().get("/explode")

    assert response.status_code == 500
    body = response.get_json()
    assert body["message"] == "Internal server error"
    assert "hunter2" not in response.get_data(as_text=True)
