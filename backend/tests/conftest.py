"""Shared pytest fixtures for test suite"""
import os
import secrets
import sys
from pathlib import Path
from typing import Callable, Generator

from cryptography.fernet import Fernet

# Settings are read at import time; pin a test environment first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("RUN_SCHEDULER", "false")
os.environ.setdefault("FACEBOOK_APP_SECRET", "test-facebook-app-secret")
os.environ.setdefault("FRONTEND_URL", "http://frontend.test")
os.environ.setdefault("BACKEND_URL", "http://backend.test")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

import fakeredis
import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import patch

from app.main import app
from app.core.config import ProviderConfig
from app.db import redis as redis_module
from app.db.session import get_db
from app.models import Base
from app.models.account import Account
from app.models.user import User
from app.services.social.registry import ADAPTER_CLASSES, ProviderRegistry
from app.utils.encryption import get_vault


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function", autouse=True)
def mock_redis():
    """Replace the lazily created Redis client with fakeredis for every test"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database (lifespan is not run)"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Closed by the db_session fixture

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    user = User(email="owner@example.com")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def other_user(db_session: Session) -> User:
    user = User(email="someone-else@example.com")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def test_account(db_session: Session, test_user: User) -> Account:
    account = Account(user_id=test_user.id, name="Test Brand")
    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return account


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, test_user: User, mock_redis) -> TestClient:
    """Client with a session cookie and CSRF header for test_user"""
    session_id = secrets.token_urlsafe(32)
    csrf_token = secrets.token_urlsafe(32)
    redis_module.set_session(session_id, test_user.id)
    redis_module.set_csrf_token(session_id, csrf_token)
    client.cookies.set("session_id", session_id)
    client.headers.update({"X-CSRF-Token": csrf_token})
    return client


@pytest.fixture(scope="function")
def vault():
    return get_vault()


def make_provider_configs():
    return {
        network: ProviderConfig(network, f"{network}-client-id", f"{network}-client-secret", ("scope.a", "scope.b"))
        for network in ADAPTER_CLASSES
    }


@pytest.fixture(scope="function")
def sleeps() -> list:
    """Records every poll sleep instead of waiting"""
    return []


@pytest.fixture(scope="function")
def make_registry(sleeps) -> Callable[[Callable[[httpx.Request], httpx.Response]], ProviderRegistry]:
    """Build a registry whose adapters talk to an httpx.MockTransport handler"""

    def factory(handler: Callable[[httpx.Request], httpx.Response], poll_max_attempts: int = 3) -> ProviderRegistry:
        http_client = httpx.Client(transport=httpx.MockTransport(handler))
        registry = ProviderRegistry()
        for network, adapter_cls in ADAPTER_CLASSES.items():
            registry.register(adapter_cls(
                make_provider_configs()[network],
                http_client=http_client,
                sleep=sleeps.append,
                poll_interval=1.0,
                poll_max_attempts=poll_max_attempts,
            ))
        return registry

    return factory
