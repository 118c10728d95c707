from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# apothecary/alembic/env.py -> racine du repo sur sys.path pour "apothecary.*"
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from apothecary.app.core.config import DATABASE_URL  # noqa: E402
from apothecary.app.db.base import Base  # noqa: E402
from apothecary.app.db.models import models_v1  # noqa: F401,E402  (tables enregistrées sur Base.metadata)

# DATABASE_URL (env) prime sur alembic.ini
config.set_main_option("sqlalchemy.url", DATABASE_URL)

target_metadata = Base.metadata


def _configure_kwargs(url: str) -> dict:
    # SQLite ne sait pas faire ALTER COLUMN : mode batch
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "compare_server_default": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    """Génère le SQL sans connexion (alembic upgrade --sql)."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs(DATABASE_URL))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
