"""
Pytest configuration and fixtures for testing.
Provides test database, test client, a fresh connection registry per test,
and seeded users.
"""
import os

# Must be set before any application module reads settings
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_social.db")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_JSON", "false")

import pytest
from typing import Dict, Generator, List
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState
from db.database import Base
from db.models import User
from db.repository import Repository
from core.security import create_access_token, hash_password
from main import app
from api.dependencies import get_db
from api.websocket_manager import (
    ConnectionRegistry, EventDispatcher, get_connection_registry, get_event_dispatcher
)


TEST_DATABASE_URL = os.environ["DATABASE_URL"]

# Create test engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False}
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeWebSocket:
    """
    Stand-in for a server-side socket handle.

    Records frames passed to send_text; can be made to fail or to look
    closed.
    """

    def __init__(self, fail: bool = False, is_open: bool = True):
        self.sent: List[str] = []
        self.fail = fail
        state = WebSocketState.CONNECTED if is_open else WebSocketState.DISCONNECTED
        self.client_state = state
        self.application_state = state

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket broken")
        self.sent.append(data)


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh database for each test.
    Automatically creates and destroys tables.
    """
    Base.metadata.create_all(bind=test_engine)

    db = TestSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def registry() -> ConnectionRegistry:
    """Empty connection registry, isolated from the process-wide one."""
    return ConnectionRegistry()


@pytest.fixture(scope="function")
def dispatcher(registry: ConnectionRegistry) -> EventDispatcher:
    return EventDispatcher(registry, send_timeout_seconds=1.0)


@pytest.fixture(scope="function")
def test_client(
    test_db: Session,
    registry: ConnectionRegistry,
    dispatcher: EventDispatcher
) -> Generator[TestClient, None, None]:
    """
    Create a test client with database and connection registry overrides.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_connection_registry] = lambda: registry
    app.dependency_overrides[get_event_dispatcher] = lambda: dispatcher

    with TestClient(app) as client:
        yield client

    # Clean up dependency overrides
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def repository(test_db: Session) -> Repository:
    return Repository(test_db)


@pytest.fixture(scope="function")
def seed_test_users(repository: Repository) -> List[User]:
    """
    Seed test database with 5 test users (user1..user5, password123).
    Returns list of created users.
    """
    users = []

    for i in range(1, 6):
        user = repository.create_user(
            username=f"user{i}",
            password_hash=hash_password("password123"),
            display_name=f"Test User {i}"
        )
        users.append(user)

    return users


@pytest.fixture(scope="function")
def tokens(seed_test_users: List[User]) -> Dict[int, str]:
    """Access token per seeded user ID."""
    return {user.id: create_access_token(user.id)["token"] for user in seed_test_users}


@pytest.fixture(scope="function")
def auth_headers(tokens: Dict[int, str]):
    """Authorization header builder keyed by user ID."""
    def _headers(user_id: int) -> Dict[str, str]:
        return {"Authorization": f"Bearer {tokens[user_id]}"}
    return _headers


@pytest.fixture(scope="function")
def fake_socket():
    """Factory for FakeWebSocket handles."""
    return FakeWebSocket
