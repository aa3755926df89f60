"""Database persistence layer."""

from .db import drop_db, get_engine, init_db, make_session_factory
from .gateway import PersistenceError, SessionStore, SqlSessionStore
from .models import Base, PatrolRunRow, ScannedItemRow
from .repo import PatrolRunRepository

__all__ = [
    "get_engine",
    "drop_db",
    "init_db",
    "make_session_factory",
    "Base",
    "PatrolRunRow",
    "ScannedItemRow",
    "PatrolRunRepository",
    "PersistenceError",
    "SessionStore",
    "SqlSessionStore",
]
