"""Database session management.

Provides session factory for SQLite database access with proper
thread-safety for FastAPI concurrency.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tacsync.db.schema import Base

# Default database path
DEFAULT_DB_PATH = Path("data/tacsync.db")

# Module-level engine cache for connection pooling
_engine_cache: dict[str, Engine] = {}

SessionFactory = Callable[[], Session]


def get_engine(db_path: Path | None = None) -> Engine:
    """Get SQLAlchemy engine for the database.

    Engines are cached by resolved db_path. Uses StaticPool and
    check_same_thread=False so the coordinator's ticker thread and request
    threads can share the connection.

    Args:
        db_path: Path to SQLite database file. Defaults to data/tacsync.db.

    Returns:
        SQLAlchemy engine instance (cached).
    """
    db_path = Path(db_path or DEFAULT_DB_PATH)
    cache_key = str(db_path.resolve())

    if cache_key in _engine_cache:
        return _engine_cache[cache_key]

    db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _engine_cache[cache_key] = engine
    return engine


def create_memory_engine() -> Engine:
    """In-memory SQLite engine shared across threads (tests, demos)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to engine.

    expire_on_commit=False keeps loaded rows readable after commit.
    """
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: SessionFactory) -> Generator[Session, None, None]:
    """Context manager for sessions with automatic cleanup.

    Commits on successful exit, rolls back on exception, and always
    closes the session.

    Example:
        with session_scope(factory) as session:
            repo.create_round(session, 1, now)
            # Auto-commits on exit, rolls back on exception
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(db_path: Path | None = None) -> Engine:
    """Initialize database schema and return the engine.

    Args:
        db_path: Path to SQLite database file.
    """
    engine = get_engine(db_path)
    Base.metadata.create_all(engine)
    return engine
