"""Shared test fixtures for workflow_queue tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from workflow_queue import (
    InMemoryQueueStore,
    QueueStore,
    RunWorkspace,
    SQLAlchemyQueueStore,
    WorkflowRecord,
    WorkflowStatus,
)
from workflow_queue.models import Base
from workflow_queue.platform import RunContext

if TYPE_CHECKING:
    from collections.abc import Generator

    from sqlalchemy.engine import Engine

LOCK_KEY = "deploy-main"
START_TIME = 1_700_000_000


class FakeClock:
    """Deterministic clock whose sleep advances time instead of blocking."""

    def __init__(self, now: int = START_TIME):
        self.now: int = now
        self.sleeps: list[float] = []

    def __call__(self) -> int:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += int(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def in_memory_engine() -> Generator[Engine, None, None]:
    """Create SQLite in-memory engine with all tables created.

    Yields:
        Engine: SQLAlchemy engine with in-memory SQLite database
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(in_memory_engine: Engine) -> sessionmaker[Session]:
    """Create session factory bound to in-memory engine."""
    return sessionmaker(bind=in_memory_engine)


@pytest.fixture
def sql_store(session_factory: sessionmaker[Session], clock: FakeClock) -> SQLAlchemyQueueStore:
    return SQLAlchemyQueueStore(session_factory, clock=clock)


@pytest.fixture
def memory_store(clock: FakeClock) -> InMemoryQueueStore:
    return InMemoryQueueStore(clock=clock)


@pytest.fixture(params=["sql", "memory"])
def store(request: pytest.FixtureRequest, clock: FakeClock) -> QueueStore:
    """Every QueueStore implementation, so both honour the same contract."""
    if request.param == "sql":
        return request.getfixturevalue("sql_store")
    return request.getfixturevalue("memory_store")


@pytest.fixture
def workspace(tmp_path: Path) -> RunWorkspace:
    return RunWorkspace(tmp_path / "workspace")


@pytest.fixture
def make_record(clock: FakeClock) -> Callable[..., WorkflowRecord]:
    """Factory for queue entries in the default partition."""

    def _make(
        committed_at: int,
        status: WorkflowStatus = WorkflowStatus.QUEUED,
        workflow_id: str | None = None,
        commit: str | None = None,
        key: str = LOCK_KEY,
        ttl: int = 3600,
    ) -> WorkflowRecord:
        return WorkflowRecord(
            key=key,
            committed_at=committed_at,
            created_at=clock.now,
            expires_at=clock.now + ttl,
            build_num=committed_at,
            commit=commit or f"sha-{committed_at}",
            username="octocat",
            workflow_id=workflow_id or str(uuid4()),
            status=status,
        )

    return _make


@pytest.fixture
def run_context() -> RunContext:
    return RunContext(
        commit="sha-300",
        workflow_id="wf-300",
        build_num=300,
        branch="main",
        username="octocat",
        project_username="acme",
        project_reponame="rocket",
    )
