"""Pytest configuration and fixtures."""

import os

# Keep the application engine off PostgreSQL; tests bind their own database
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.main import app
from src.models.repository import Base, RepositoryConfig


@pytest.fixture
def client() -> TestClient:
    """Return a FastAPI TestClient."""
    return TestClient(app)


@pytest.fixture
def webhook_url() -> str:
    """Return the webhook URL for testing."""
    return "/webhook/github"


@pytest.fixture
def webhook_secret() -> str:
    """Return the webhook secret configured for the test repository."""
    return "test-secret"  # pragma: allowlist secret


@pytest.fixture
def test_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    # pysqlite defers BEGIN; emit it ourselves so SAVEPOINTs nest correctly
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory bound to the test engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db_session(session_factory):
    """Provide a database session for one test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repository(session_factory, webhook_secret) -> RepositoryConfig:
    """An eligible repository acme/widgets with a token and webhook secret."""
    with session_factory() as session:
        repo = RepositoryConfig(
            owner="acme",
            name="widgets",
            access_token="ghp_test_token",  # pragma: allowlist secret
            webhook_secret=webhook_secret,
            is_active=True,
            allow_auto_review=True,
        )
        session.add(repo)
        session.commit()
        session.refresh(repo)
        session.expunge(repo)
    return repo
