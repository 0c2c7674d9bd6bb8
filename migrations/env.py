# migrations/env.py
from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context

# --- Caminho do projeto (raiz/migrations/.. -> raiz) ---
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Config do Alembic
config = context.config

# Logging (usa alembic.ini)
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from storedash import create_app  # noqa: E402
from storedash.extensions import db  # noqa: E402

# create_app importa todos os módulos de modelos
app = create_app()
target_metadata = db.Model.metadata


def run_migrations_offline() -> None:
    """Migrations em modo offline (usa URL)."""
    url = os.environ.get("DATABASE_URL") or app.config["SQLALCHEMY_DATABASE_URI"]

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Migrations em modo online usando o engine do Flask."""
    with app.app_context():
        connectable = db.engine

        with connectable.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                compare_type=True,
                compare_server_default=True,
            )

            with context.begin_transaction():
                context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
