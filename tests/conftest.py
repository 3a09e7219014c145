"""Shared test fixtures."""
from typing import Generator
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from replisync.models.catalog import Customer, Product, Setting, default_registry  # noqa: F401
from replisync.models.change_log import ChangeLogEntry  # noqa: F401
from replisync.sync.change_log import ChangeLogStore
from replisync.sync.cursors import CursorStore
from replisync.sync.tracking import ChangeTracker

DEFAULT_START = "2025-07-07 00:00:00"


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="registry")
def registry_fixture():
    return default_registry()


@pytest.fixture(name="descriptors")
def descriptors_fixture(registry, engine):
    return registry.discover(engine)


@pytest.fixture(name="change_log")
def change_log_fixture(engine) -> ChangeLogStore:
    return ChangeLogStore(engine)


@pytest.fixture(name="tracker")
def tracker_fixture(registry, change_log):
    """Change hooks installed for the duration of one test."""
    tracker = ChangeTracker(registry, change_log)
    tracker.install()
    yield tracker
    tracker.uninstall()


@pytest.fixture(name="cursors")
def cursors_fixture(tmp_path) -> CursorStore:
    return CursorStore(tmp_path / "sync_data", DEFAULT_START)


def make_mock_client(pull_data=None, pull_error=None, push_error=None):
    """AsyncMock MasterClient.

    pull_data maps entity type -> list of rows; pull_error / push_error map
    entity type -> exception to raise for that type only.
    """
    pull_data = pull_data or {}
    pull_error = pull_error or {}
    push_error = push_error or {}

    async def _pull(entity_type):
        if entity_type in pull_error:
            raise pull_error[entity_type]
        return pull_data.get(entity_type, [])

    async def _push(entity_type, records):
        if entity_type in push_error:
            raise push_error[entity_type]
        return {"received": len(records)}

    client = AsyncMock()
    client.pull = AsyncMock(side_effect=_pull)
    client.push = AsyncMock(side_effect=_push)
    return client


@pytest.fixture(name="mock_client")
def mock_client_fixture():
    return make_mock_client()


@pytest.fixture(name="client_factory")
def client_factory_fixture():
    """make_mock_client, for tests that need per-entity pull data or errors."""
    return make_mock_client
