"""Dialect-aware INSERT construction.

PostgreSQL and SQLite both support ``INSERT ... ON CONFLICT``; SQLAlchemy
exposes it through dialect-specific ``insert`` constructs with the same
API. Repositories pick the right one from the session's bind.
"""

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import DatabaseError


def upsert_insert(session: AsyncSession, model: Any) -> Any:
    """Return an ON CONFLICT-capable insert for the session's dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    msg = f"Unsupported database dialect for upserts: {dialect!r}"
    raise DatabaseError(msg, details={"dialect": dialect})
