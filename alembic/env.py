import logging
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import create_engine, pool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import get_settings  # noqa: E402
from database import Base  # noqa: E402
import models  # noqa: E402,F401

alembic_config = context.config
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

logger = logging.getLogger("alembic.env")


def database_url() -> str:
    """``alembic -x url=...`` wins over FINANCE_DATABASE_URL."""
    override = context.get_x_argument(as_dictionary=True).get("url")
    return override or get_settings().database_url


def migration_options(dialect_name: str) -> dict:
    return {
        "target_metadata": Base.metadata,
        "compare_type": True,
        # SQLite cannot ALTER most constraints in place
        "render_as_batch": dialect_name == "sqlite",
    }


def migrate_offline(url: str) -> None:
    dialect_name = url.split(":", 1)[0].split("+", 1)[0]
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **migration_options(dialect_name),
    )
    with context.begin_transaction():
        context.run_migrations()


def migrate_online(url: str) -> None:
    engine = create_engine(url, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            dialect_name = connection.dialect.name
            logger.info(f"finance_migrations: dialect={dialect_name}")
            context.configure(
                connection=connection, **migration_options(dialect_name)
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


url = database_url()
if context.is_offline_mode():
    migrate_offline(url)
else:
    migrate_online(url)
