import runpy
from datetime import timedelta

import uvicorn
from fastapi.testclient import TestClient
from sqlmodel import Session, func, select

from taskminder.auth import RecoveryNotifier, create_access_token, verify_token
from taskminder.errors import NotificationError
from taskminder.main import create_app
from taskminder.models import User, UserPreference


def test_read_root(client: TestClient):
    """
    Test the root endpoint.
    """
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Taskminder API is running"}


def test_module_entry_point_starts_server(monkeypatch):
    """
    `python -m taskminder` serves the app factory through uvicorn.
    """
    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda *args, **kwargs: calls.append((args, kwargs)))

    runpy.run_module("taskminder", run_name="__main__")

    assert len(calls) == 1
    args, kwargs = calls[0]
    assert args == ("taskminder.main:create_app",)
    assert kwargs["factory"] is True


def test_register_user(client: TestClient):
    """
    Test user registration returns a token and the user without its password hash.
    """
    response = client.post(
        "/auth/register",
        json={"email": "new.user@example.com", "name": "New User", "password": "strong-password"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["token"]
    assert data["token_type"] == "bearer"
    assert data["user"]["email"] == "new.user@example.com"
    assert data["user"]["name"] == "New User"
    assert "id" in data["user"]
    assert "created_at" in data["user"]
    assert "hashed_password" not in data["user"]
    assert "password" not in data["user"]


def test_register_creates_default_preferences(client: TestClient, database, register):
    """
    Registration stores a default preference row alongside the user.
    """
    body = register(client)
    with Session(database.engine) as session:
        preferences = session.get(UserPreference, body["user"]["id"])
    assert preferences is not None
    assert preferences.theme == "light"
    assert preferences.default_view == "list"
    assert preferences.email_notifications is True
    assert preferences.in_app_notifications is True


def test_register_accepts_password_credential_alias(client: TestClient):
    response = client.post(
        "/auth/register",
        json={"email": "alias@example.com", "name": "Alias", "password_credential": "alias-password"},
    )
    assert response.status_code == 201

    login = client.post("/auth/login", json={"email": "alias@example.com", "password": "alias-password"})
    assert login.status_code == 200


def test_register_existing_user(client: TestClient, database, register):
    """
    Test registering a user with an already existing email.
    """
    register(client, email="existing@example.com")
    response = client.post(
        "/auth/register",
        json={"email": "existing@example.com", "name": "Duplicate", "password": "strong-password-2"},
    )
    assert response.status_code == 400
    assert response.json() == {"message": "User with this email already exists"}

    with Session(database.engine) as session:
        count = session.exec(select(func.count()).select_from(User).where(User.email == "existing@example.com")).one()
    assert count == 1


def test_register_validation_errors(client: TestClient):
    """
    Malformed input is rejected with field-level detail before reaching the database.
    """
    response = client.post(
        "/auth/register",
        json={"email": "not-an-email", "password": "short"},
    )
    assert response.status_code == 400
    data = response.json()
    assert data["message"] == "Validation failed"
    constraints = {error["field"]: error["constraint"] for error in data["errors"]}
    assert constraints["email"] == "format"
    assert constraints["name"] == "required"
    assert constraints["password"] == "range"


def test_login_user(client: TestClient, register, settings):
    """
    Login with the registered credentials yields a token that verifies.
    """
    registered = register(client, email="login@example.com", password="login-password")

    response = client.post("/auth/login", json={"email": "login@example.com", "password": "login-password"})
    assert response.status_code == 200
    data = response.json()
    assert data["user"]["id"] == registered["user"]["id"]

    payload = verify_token(data["token"], settings)
    assert payload["sub"] == registered["user"]["id"]
    assert payload["email"] == "login@example.com"


def test_login_invalid_credentials(client: TestClient, register):
    """
    Test login with an unknown email or a wrong password.
    """
    response = client.post("/auth/login", json={"email": "nobody@example.com", "password": "bad-password"})
    assert response.status_code == 401
    assert response.json() == {"message": "Invalid email or password"}

    register(client, email="user@example.com", password="strong-password")
    response = client.post("/auth/login", json={"email": "user@example.com", "password": "bad-password"})
    assert response.status_code == 401
    assert "token" not in response.json()


def test_login_with_mixed_case_domain(client: TestClient, register):
    """
    The address is matched in the same normal form it was stored in at registration.
    """
    registered = register(client, email="Alice@Example.COM", password="alice-password")
    assert registered["user"]["email"] == "Alice@example.com"

    response = client.post("/auth/login", json={"email": "Alice@Example.COM", "password": "alice-password"})
    assert response.status_code == 200
    assert response.json()["user"]["id"] == registered["user"]["id"]

    response = client.post("/auth/login", json={"email": "Alice@example.com", "password": "alice-password"})
    assert response.status_code == 200


def test_read_me(authenticated_client: TestClient, auth):
    response = authenticated_client.get("/auth/me")
    assert response.status_code == 200
    assert response.json()["id"] == auth["user"]["id"]


def test_missing_token(client: TestClient):
    """
    Protected routes answer 401 without a bearer token.
    """
    response = client.get("/tasks")
    assert response.status_code == 401
    assert response.json() == {"message": "Access token required"}


def test_tampered_token(client: TestClient, auth):
    response = client.get("/auth/me", headers={"Authorization": f"Bearer {auth['token']}x"})
    assert response.status_code == 403


def test_token_signed_with_other_key(client: TestClient, settings):
    forged_settings = settings.model_copy(update={"secret_key": "another-secret-key-that-is-long-enough"})
    token = create_access_token(User(id="someone", email="x@example.com", name="X", hashed_password="-"), forged_settings)
    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_expired_token(client: TestClient, auth, settings):
    user = User(id=auth["user"]["id"], email=auth["user"]["email"], name="Auth User", hashed_password="-")
    token = create_access_token(user, settings, expires_delta=timedelta(seconds=-5))
    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403
    assert response.json() == {"message": "Token has expired"}


def test_token_for_missing_user(client: TestClient, settings):
    """
    A valid signature for a user that no longer exists is a 401.
    """
    token = create_access_token(User(id="gone", email="gone@example.com", name="Gone", hashed_password="-"), settings)
    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json() == {"message": "Invalid token"}


def test_recover_existing_user(client: TestClient, register):
    register(client, email="recover@example.com")
    response = client.post("/auth/recover", json={"email": "recover@example.com"})
    assert response.status_code == 200
    assert response.json() == {"message": "Recovery email sent to recover@example.com"}


def test_recover_unknown_user(client: TestClient):
    response = client.post("/auth/recover", json={"email": "missing@example.com"})
    assert response.status_code == 404
    assert response.json() == {"message": "User not found"}


def test_recover_with_mixed_case_domain(client: TestClient, register):
    register(client, email="Alice@Example.COM")
    response = client.post("/auth/recover", json={"email": "Alice@Example.COM"})
    assert response.status_code == 200
    assert response.json() == {"message": "Recovery email sent to Alice@example.com"}


class FailingNotifier(RecoveryNotifier):
    def send_recovery(self, email: str) -> str:
        raise NotificationError("Recovery email could not be sent")


def test_recover_send_failure(settings, database, register):
    """
    A notifier failure is reported as 502.
    """
    app = create_app(settings=settings, database=database, notifier=FailingNotifier())
    with TestClient(app) as client:
        register(client, email="unlucky@example.com")
        response = client.post("/auth/recover", json={"email": "unlucky@example.com"})
    assert response.status_code == 502
    assert response.json() == {"message": "Recovery email could not be sent"}
