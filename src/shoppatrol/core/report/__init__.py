"""Result aggregation and export."""

from .results import CSV_HEADER, ResultSet, read_csv, to_csv, write_csv

__all__ = [
    "CSV_HEADER",
    "ResultSet",
    "read_csv",
    "to_csv",
    "write_csv",
]
