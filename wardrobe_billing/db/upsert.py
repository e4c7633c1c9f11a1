"""
Dialect-aware INSERT .. ON CONFLICT builder.
PostgreSQL in production, SQLite in tests; both support the same upsert clauses.
"""
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def insert_for(db: Session, model):
    """Return a dialect insert() for model that exposes on_conflict_do_update/do_nothing."""
    dialect = db.get_bind().dialect.name
    factory = _INSERTS.get(dialect)
    if factory is None:
        raise NotImplementedError(f"upsert is not supported for dialect {dialect!r}")
    return factory(model)
