from __future__ import annotations

from sqlalchemy.orm import Session


def insert_for(db: Session, table):
    """
    INSERT propre au dialecte, pour disposer de ON CONFLICT DO UPDATE.
    PostgreSQL en production, SQLite pour les tests.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Upsert not supported for dialect {dialect!r}")
    return insert(table)
