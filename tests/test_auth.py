"""Tests for staff authentication."""
from __future__ import annotations

from itsdangerous import URLSafeTimedSerializer

from salonpos.extensions import db
from salonpos.models import User

PASSWORD = "Secret123!"


def test_login_success(client, staff) -> None:
    response = client.post(
        "/api/auth/login",
        json={"email": "cashier@example.com", "password": PASSWORD},
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["data"]["token"]
    assert body["data"]["user"]["email"] == "cashier@example.com"
    assert body["data"]["user"]["role"] == "cashier"


def test_login_email_is_case_insensitive(client, staff) -> None:
    response = client.post(
        "/api/auth/login",
        json={"email": "Cashier@Example.com", "password": PASSWORD},
    )

    assert response.status_code == 200


def test_login_invalid_password(client, staff) -> None:
    response = client.post(
        "/api/auth/login",
        json={"email": "cashier@example.com", "password": "BadPass"},
    )

    assert response.status_code == 401
    body = response.get_json()
    assert body["success"] is False
    assert body["error"] == "unauthorized"


def test_login_missing_fields(client) -> None:
    response = client.post("/api/auth/login", json={"email": "someone@example.com"})

    assert response.status_code == 422
    body = response.get_json()
    assert body["error"] == "invalid_payload"
    assert "password" in body["errors"]


def test_login_disabled_account(app, client, staff) -> None:
    with app.app_context():
        user = db.session.get(User, staff["cashier"])
        user.is_active = False
        db.session.commit()

    response = client.post(
        "/api/auth/login",
        json={"email": "cashier@example.com", "password": PASSWORD},
    )

    assert response.status_code == 401


def test_me_returns_current_user(client, auth_headers) -> None:
    response = client.get("/api/auth/me", headers=auth_headers)

    assert response.status_code == 200
    assert response.get_json()["data"]["email"] == "cashier@example.com"


def test_token_of_deactivated_user_is_rejected(app, client, staff, auth_headers) -> None:
    with app.app_context():
        db.session.get(User, staff["cashier"]).is_active = False
        db.session.commit()

    response = client.get("/api/auth/me", headers=auth_headers)

    assert response.status_code == 401


def test_tampered_token_is_rejected(client, staff) -> None:
    forged = URLSafeTimedSerializer("wrong-secret", salt="auth-token").dumps(
        {"user_id": staff["admin"], "role": "admin"}
    )

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {forged}"})

    assert response.status_code == 401


def test_refresh_issues_new_token(client, auth_headers) -> None:
    response = client.post("/api/auth/refresh", headers=auth_headers)

    assert response.status_code == 200
    token = response.get_json()["data"]["token"]
    again = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert again.status_code == 200


def test_change_password(client, auth_headers) -> None:
    response = client.post(
        "/api/auth/change-password",
        headers=auth_headers,
        json={"current_password": PASSWORD, "new_password": "NewSecret456!"},
    )
    assert response.status_code == 200

    old = client.post(
        "/api/auth/login", json={"email": "cashier@example.com", "password": PASSWORD}
    )
    new = client.post(
        "/api/auth/login", json={"email": "cashier@example.com", "password": "NewSecret456!"}
    )
    assert old.status_code == 401
    assert new.status_code == 200


def test_change_password_wrong_current(client, auth_headers) -> None:
    response = client.post(
        "/api/auth/change-password",
        headers=auth_headers,
        json={"current_password": "nope", "new_password": "NewSecret456!"},
    )

    assert response.status_code == 422
    assert "current_password" in response.get_json()["errors"]
