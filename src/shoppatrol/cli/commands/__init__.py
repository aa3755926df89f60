"""CLI command modules."""

from . import credentials, db, runs, scan

__all__ = [
    "credentials",
    "db",
    "runs",
    "scan",
]
