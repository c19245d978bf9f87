"""
Dialect-aware INSERT ... ON CONFLICT.

PostgreSQL in deployed environments, SQLite for local runs and tests; both
dialects expose ``on_conflict_do_nothing`` / ``on_conflict_do_update`` on
their own ``insert`` construct.
"""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def conflict_insert(session: AsyncSession, entity_class):
    """Return an ``insert(entity_class)`` supporting ON CONFLICT clauses."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(entity_class)
    if dialect == "sqlite":
        return sqlite.insert(entity_class)
    raise NotImplementedError(f"ON CONFLICT is not supported for dialect {dialect}")
