"""Database initialization and helpers."""

from __future__ import annotations

import logging
import secrets
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from .config import settings
from .database import engine, get_session
from .models import Meta
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")


def init_db() -> None:
    upgrade_database(make_backup=False)
    ensure_signing_secret()


def _alembic_config() -> Config:
    package_dir = Path(__file__).resolve().parent
    script_location = package_dir / "alembic"
    ini_path = script_location.parent / "alembic.ini"

    config = Config(str(ini_path)) if ini_path.exists() else Config()
    config.set_main_option("script_location", str(script_location))
    config.set_main_option("sqlalchemy.url", str(engine.url))
    return config


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Upgrade the database schema in-place.

    Returns a list of applied actions; empty if already up-to-date.
    """
    actions: list[str] = []
    db_path = Path(settings.database_path)

    if make_backup and db_path.exists():
        backup_path = db_path.with_suffix(db_path.suffix + ".bak")
        shutil.copy(db_path, backup_path)
        actions.append(f"Backup created at {backup_path}")

    inspector = inspect(engine)
    has_alembic = inspector.has_table("alembic_version")
    has_events = inspector.has_table("events")
    config = _alembic_config()

    if not has_alembic and not has_events:
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    elif not has_alembic:
        # Tables created outside Alembic (e.g. metadata.create_all): baseline them.
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    else:
        command.upgrade(config, "head")
        actions.append("Applied Alembic migrations to head")

    return actions


def ensure_signing_secret() -> str:
    with get_session() as session:
        existing = session.get(Meta, settings.signing_secret_key)
        if existing:
            return existing.value
        secret = secrets.token_urlsafe(32)
        meta = Meta(key=settings.signing_secret_key, value=secret, updated_at=utcnow())
        session.merge(meta)
        logger.info("Generated a new identity signing secret")
        return secret


def rotate_signing_secret() -> str:
    secret = secrets.token_urlsafe(32)
    with get_session() as session:
        meta = Meta(key=settings.signing_secret_key, value=secret, updated_at=utcnow())
        session.merge(meta)
    logger.info("Rotated identity signing secret; previously issued tokens are void")
    return secret


def fetch_signing_secret() -> str:
    with get_session() as session:
        meta = session.get(Meta, settings.signing_secret_key)
        if not meta:
            return ensure_signing_secret()
        return meta.value


def vacuum_database() -> None:
    if engine.dialect.name != "sqlite":
        return
    with engine.connect() as connection:
        connection.execution_options(isolation_level="AUTOCOMMIT").exec_driver_sql(
            "VACUUM"
        )
    logger.debug("SQLite VACUUM complete")
