"""
Dialect-aware column types for the allocation tables.
Run counters and cursors are stored as JSONB on PostgreSQL
and as plain JSON on SQLite.
"""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator


class PortableJSON(TypeDecorator):
    """JSON column that upgrades to JSONB when the backend supports it."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())
