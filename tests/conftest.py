from typing import Callable, Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from taskminder.config import Settings
from taskminder.database import Database
from taskminder.main import create_app

# --- Test Database Setup ---
# Use an in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
TEST_SECRET_KEY = "test-secret-key-that-is-long-enough-for-hs256"


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    return Settings(
        secret_key=TEST_SECRET_KEY,
        access_token_expire_minutes=60,
        database_url=TEST_DATABASE_URL,
        log_level="WARNING",
    )


@pytest.fixture(name="database")
def database_fixture():
    # StaticPool keeps every checkout on the one in-memory connection
    test_engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database = Database(engine=test_engine)
    database.init()
    yield database
    SQLModel.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture(name="app")
def app_fixture(settings: Settings, database: Database):
    return create_app(settings=settings, database=database)


@pytest.fixture(name="client")
def client_fixture(app):
    with TestClient(app) as client:
        yield client


def _register(client: TestClient, email: str = "authuser@example.com", name: str = "Auth User", password: str = "auth-password") -> Dict:
    response = client.post(
        "/auth/register",
        json={"email": email, "name": name, "password": password},
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture(name="auth")
def auth_fixture(client: TestClient) -> Dict:
    """
    Registers the default user and returns the register response body.
    """
    return _register(client)


@pytest.fixture(name="authenticated_client")
def authenticated_client_fixture(client: TestClient, auth: Dict) -> TestClient:
    client.headers["Authorization"] = f"Bearer {auth['token']}"
    return client


@pytest.fixture(name="other_client")
def other_client_fixture(app, client: TestClient) -> TestClient:
    """
    A second, independently authenticated user on the same app.
    """
    other = TestClient(app)
    body = _register(other, email="other@example.com", name="Other User", password="other-password")
    other.headers["Authorization"] = f"Bearer {body['token']}"
    return other


@pytest.fixture(name="make_task")
def make_task_fixture(authenticated_client: TestClient) -> Callable[..., Dict]:
    def make_task(name: str, **fields) -> Dict:
        response = authenticated_client.post("/tasks", json={"name": name, **fields})
        assert response.status_code == 201, response.text
        return response.json()

    return make_task


@pytest.fixture(name="register")
def register_fixture() -> Callable[..., Dict]:
    return _register
