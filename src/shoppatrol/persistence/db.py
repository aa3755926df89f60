"""
Database connection and session management.

Provides the process-wide engine used by the CLI, plus standalone engines
for stores that need their own database (tests, one-off exports).
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

DEFAULT_DATABASE_URL = "sqlite:///data/shoppatrol.db"


# =============================================================================
# Global Engine References
# =============================================================================

_engines: dict[str, Engine] = {}


# =============================================================================
# SQLite Configuration
# =============================================================================


def _configure_sqlite(engine: Engine) -> None:
    """Configure SQLite for better performance and reliability.

    Enables:
    - Foreign key enforcement
    - WAL mode so a watcher can read while a run writes
    - Synchronous mode for durability
    """
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA cache_size=-64000")  # 64MB cache
        cursor.close()


# =============================================================================
# Engine Creation
# =============================================================================


def create_db_engine(
    url: str = DEFAULT_DATABASE_URL,
    echo: bool = False,
    pool_size: int = 5,
) -> Engine:
    """Create a new engine for ``url``.

    Args:
        url: SQLAlchemy database URL
        echo: Whether to log SQL statements
        pool_size: Connection pool size (ignored for SQLite)

    Returns:
        SQLAlchemy Engine instance
    """
    # Ensure data directory exists for SQLite
    if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
        db_path = url.replace("sqlite:///", "")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
        _configure_sqlite(engine)
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=10,
            pool_pre_ping=True,
        )
    return engine


def make_session_factory(
    url: str = DEFAULT_DATABASE_URL,
    echo: bool = False,
    pool_size: int = 5,
    create_schema: bool = True,
) -> sessionmaker[Session]:
    """Create a session factory bound to its own engine."""
    engine = create_db_engine(url, echo=echo, pool_size=pool_size)
    if create_schema:
        Base.metadata.create_all(bind=engine)
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def get_engine(
    url: str = DEFAULT_DATABASE_URL,
    echo: bool = False,
    pool_size: int = 5,
) -> Engine:
    """Get or create the process-wide engine for ``url``."""
    engine = _engines.get(url)
    if engine is None:
        engine = create_db_engine(url, echo=echo, pool_size=pool_size)
        _engines[url] = engine
    return engine


# =============================================================================
# Database Initialization
# =============================================================================


def init_db(url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> None:
    """Initialize the database schema.

    Creates all tables if they don't exist. For production use,
    prefer Alembic migrations.
    """
    engine = get_engine(url, echo=echo)
    Base.metadata.create_all(bind=engine)


def drop_db(url: str = DEFAULT_DATABASE_URL) -> None:
    """Drop all database tables.

    WARNING: This will delete all data!
    """
    engine = get_engine(url)
    Base.metadata.drop_all(bind=engine)
