"""
Dialect-aware column types for bracket tables.

Station rotations and event payloads are stored as JSON:
JSONB on PostgreSQL, generic JSON on SQLite.
"""
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator
from sqlalchemy.engine import Dialect


class UniversalJSON(TypeDecorator):
    """JSONB for PostgreSQL, JSON for everything else."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


class StationNameList(UniversalJSON):
    """
    Ordered list of station names (the rotation).

    Names are stripped and upper-cased on write, blanks dropped.
    """
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return [str(name).strip().upper() for name in value if str(name).strip()]

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return list(value)
