import os
import sys
from datetime import datetime, timedelta

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from pharmapp import create_app
from pharmapp.extensions import db
from pharmapp.models import PasswordResetToken, User, UserRole


DEFAULT_ADMIN_EMAIL = "admin@pharmacy.com"
DEFAULT_ADMIN_PASSWORD = "admin123"


@pytest.fixture
def app():
    app = create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:"})
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def create_pharmacist(email="pat@pharmacy.com", password="pharmacist123", active=True):
    user = User(
        full_name="Pat Pharmacist",
        email=email,
        mobile="8888888888",
        role=UserRole.PHARMACIST,
    )
    user.set_password(password)
    if not active:
        user.deactivate()
    db.session.add(user)
    db.session.commit()
    return user


def login(client, email, password):
    return client.post("/auth/login", json={"email": email, "password": password})


def test_admin_seeded(app):
    user = User.query.filter_by(email=DEFAULT_ADMIN_EMAIL).first()

    assert user is not None
    assert user.role == UserRole.ADMIN
    assert user.check_password(DEFAULT_ADMIN_PASSWORD)


def test_admin_login_points_to_admin_dashboard(client):
    response = login(client, DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD)

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["redirect"] == "/admin/dashboard"
    assert payload["user"]["role"] == UserRole.ADMIN


def test_pharmacist_login_points_to_pharmacist_dashboard(client):
    create_pharmacist()

    response = client.post(
        "/auth/login", data={"email": "PAT@pharmacy.com", "password": "pharmacist123"}
    )

    assert response.status_code == 200
    assert response.get_json()["redirect"] == "/pharmacist/dashboard"


def test_invalid_credentials_rejected(client):
    response = login(client, DEFAULT_ADMIN_EMAIL, "wrong-password")

    assert response.status_code == 401
    assert response.get_json() == {"success": False, "message": "Invalid email or password."}


def test_login_validates_input(client):
    assert login(client, "not-an-email", "secret").status_code == 400
    assert login(client, DEFAULT_ADMIN_EMAIL, "").status_code == 400


def test_inactive_account_cannot_log_in(client):
    create_pharmacist(active=False)

    response = login(client, "pat@pharmacy.com", "pharmacist123")

    assert response.status_code == 403


def test_me_requires_login(client):
    response = client.get("/auth/me")

    assert response.status_code == 401
    assert response.get_json()["error"] == "Unauthorized"


def test_me_and_logout(client):
    login(client, DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD)

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.get_json()["email"] == DEFAULT_ADMIN_EMAIL

    logout = client.get("/auth/logout")
    assert logout.status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_change_password(client, app):
    create_pharmacist()
    login(client, "pat@pharmacy.com", "pharmacist123")

    mismatch = client.post(
        "/auth/change-password",
        json={
            "current_password": "pharmacist123",
            "new_password": "newsecret",
            "confirm_password": "different",
        },
    )
    assert mismatch.status_code == 400
    assert mismatch.get_json()["message"] == "Password confirmation does not match."

    wrong_current = client.post(
        "/auth/change-password",
        json={
            "current_password": "nope",
            "new_password": "newsecret",
            "confirm_password": "newsecret",
        },
    )
    assert wrong_current.status_code == 400

    changed = client.post(
        "/auth/change-password",
        json={
            "current_password": "pharmacist123",
            "new_password": "newsecret",
            "confirm_password": "newsecret",
        },
    )
    assert changed.status_code == 200
    user = User.query.filter_by(email="pat@pharmacy.com").first()
    assert user.check_password("newsecret")


def test_forgot_password_is_generic_and_issues_token(client):
    user = create_pharmacist()

    unknown = client.post("/auth/forgot-password", json={"email": "ghost@pharmacy.com"})
    known = client.post("/auth/forgot-password", json={"email": "pat@pharmacy.com"})

    assert unknown.status_code == known.status_code == 200
    assert unknown.get_json()["message"] == known.get_json()["message"]
    tokens = PasswordResetToken.query.filter_by(user_id=user.id).all()
    assert len(tokens) == 1
    assert tokens[0].expires_at > datetime.utcnow()


def test_reset_password_with_token(client):
    user = create_pharmacist()
    client.post("/auth/forgot-password", json={"email": "pat@pharmacy.com"})
    token = PasswordResetToken.query.filter_by(user_id=user.id).one().token

    response = client.post(
        f"/auth/reset-password/{token}",
        json={"new_password": "brandnew", "confirm_password": "brandnew"},
    )
    assert response.status_code == 200
    assert login(client, "pat@pharmacy.com", "brandnew").status_code == 200

    reused = client.post(
        f"/auth/reset-password/{token}",
        json={"new_password": "another1", "confirm_password": "another1"},
    )
    assert reused.status_code == 400


def test_expired_reset_token_rejected(client):
    user = create_pharmacist()
    db.session.add(
        PasswordResetToken(
            user_id=user.id,
            token="expired-token",
            expires_at=datetime.utcnow() - timedelta(minutes=1),
        )
    )
    db.session.commit()

    response = client.post(
        "/auth/reset-password/expired-token",
        json={"new_password": "brandnew", "confirm_password": "brandnew"},
    )

    assert response.status_code == 400
    assert user.check_password("pharmacist123")
