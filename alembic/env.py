# alembic/env.py
from __future__ import annotations

import os
import re
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection
from sqlalchemy.pool import NullPool

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from wmsalloc.db.base import Base, init_models  # noqa: E402

# ---------------------------------------------------------------------------
# URL: WMS_ALLOC_TEST_DATABASE_URL / WMS_ALLOC_DATABASE_URL / alembic.ini
# ---------------------------------------------------------------------------

_DRV_RE = re.compile(r"\+asyncpg\b|\+psycopg2\b|\+pg8000\b", re.I)


def normalize_pg_url(url: str) -> str:
    """Migrations run synchronously: always the psycopg (v3) driver."""
    if not url:
        return url
    url = _DRV_RE.sub("+psycopg", url)
    url = re.sub(r"^postgres://", "postgresql+psycopg://", url, flags=re.I)
    if url.lower().startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def get_url() -> str:
    url = (
        os.getenv("WMS_ALLOC_TEST_DATABASE_URL")
        or os.getenv("WMS_ALLOC_DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
    )
    if not url:
        raise RuntimeError(
            "alembic: no database URL; set WMS_ALLOC_DATABASE_URL or sqlalchemy.url in alembic.ini"
        )

    url = url.strip()
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    return normalize_pg_url(url)


def run_migrations_offline() -> None:
    init_models()
    context.configure(
        url=get_url(),
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=False,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    init_models()
    engine = create_engine(get_url(), poolclass=NullPool, future=True)
    db_schema = os.getenv("DB_SCHEMA")

    with engine.connect() as connection:  # type: Connection
        if db_schema:
            connection.exec_driver_sql(f"SET search_path TO {db_schema}")

        context.configure(
            connection=connection,
            target_metadata=Base.metadata,
            compare_type=True,
            compare_server_default=False,
            version_table_schema=db_schema if db_schema else None,
            include_schemas=bool(db_schema),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
