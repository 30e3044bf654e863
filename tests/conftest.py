"""Shared pytest fixtures for tacsync tests."""

import pytest
from sqlalchemy.orm import sessionmaker

from tacsync.coordinator.rounds import RoundCoordinator
from tacsync.core.clock import ManualClock
from tacsync.db.session import create_memory_engine, session_factory
from tacsync.models.domain import AggregateDocument, AggregateEntry, TacticKey


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine for testing."""
    return create_memory_engine()


@pytest.fixture
def session_maker(engine) -> sessionmaker:
    """Session factory bound to the in-memory engine."""
    return session_factory(engine)


@pytest.fixture
def session(session_maker):
    """Create a database session for testing."""
    session = session_maker()
    yield session
    session.close()


@pytest.fixture
def clock() -> ManualClock:
    """Deterministic clock starting at 2024-01-01 UTC."""
    return ManualClock()


@pytest.fixture
def coordinator(session_maker, clock) -> RoundCoordinator:
    """Coordinator with threshold 3 and a 10 minute deadline."""
    from datetime import timedelta

    return RoundCoordinator(
        session_maker,
        contributor_threshold=3,
        round_deadline=timedelta(minutes=10),
        clock=clock,
    )


@pytest.fixture
def make_document():
    """Build documents from (tactic_id, category, total, successes) tuples."""

    def _make(tactics=(), behaviors=(), **kwargs) -> AggregateDocument:
        return AggregateDocument.from_entries(
            tactics=[AggregateEntry(TacticKey(t, c), n, s) for t, c, n, s in tactics],
            behaviors=[AggregateEntry(TacticKey(b, m), n, s) for b, m, n, s in behaviors],
            **kwargs,
        )

    return _make
