"""
Migrations Alembic.

L'URL vient toujours de Settings (DATABASE_URL / .env) ; alembic.ini ne
porte que script_location et la config logging. La racine du dépôt est
mise sur sys.path par `prepend_sys_path = .`.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from backend.app.core.config import settings
from backend.app.db.base import Base
from backend.app.db.models import models_v1  # noqa: F401  (enregistre les tables)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

DB_URL = settings.database_url_normalized
target_metadata = Base.metadata

CONFIGURE_OPTS = dict(
    target_metadata=target_metadata,
    compare_type=True,
    compare_server_default=True,
    # Une seule transaction pour toute la chaîne de révisions
    transaction_per_migration=False,
)


def run_migrations_offline() -> None:
    """Génère le SQL sans connexion (alembic upgrade --sql)."""
    context.configure(
        url=DB_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **CONFIGURE_OPTS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(DB_URL, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **CONFIGURE_OPTS)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
