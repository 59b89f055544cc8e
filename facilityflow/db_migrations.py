from __future__ import annotations

from pathlib import Path

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask

from facilityflow.db import connect_database


_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_URL_SCHEMES = ("postgresql://", "postgresql+", "sqlite://", "sqlite+pysqlite://")


def to_sqlalchemy_url(raw_db_path: str) -> str:
    """Map a ``DB_PATH`` value (file path or DSN) to a SQLAlchemy URL."""
    raw = (raw_db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH is not set; cannot run migrations.")
    if raw.startswith("postgres://"):
        raw = "postgresql://" + raw[len("postgres://") :]
    if raw.startswith(_URL_SCHEMES):
        return raw
    return f"sqlite:///{Path(raw).expanduser().resolve().as_posix()}"


def build_alembic_config(app: Flask) -> AlembicConfig:
    alembic_ini = _PROJECT_ROOT / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError("alembic.ini not found at the project root.")

    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", (_PROJECT_ROOT / "migrations").as_posix())
    alembic_cfg.set_main_option("sqlalchemy.url", to_sqlalchemy_url(app.config["DB_PATH"]))
    return alembic_cfg


def schema_state(db_path: str) -> str:
    """``empty``, ``versioned`` or ``unversioned`` (tables created by DB_AUTO_INIT)."""
    db = connect_database(db_path)
    try:
        if db.backend == "postgres":
            rows = db.execute("SELECT tablename AS name FROM pg_tables WHERE schemaname = current_schema()").fetchall()
        else:
            rows = db.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    finally:
        db.close()
    tables = {row["name"] for row in rows}
    if "alembic_version" in tables:
        return "versioned"
    return "unversioned" if "rfqs" in tables else "empty"


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Schema migrations (Alembic)."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        command.upgrade(build_alembic_config(app), revision)
        click.echo(f"Upgraded to {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        command.downgrade(build_alembic_config(app), revision)
        click.echo(f"Downgraded to {revision}.")

    @db_group.command("stamp")
    @click.argument("revision", required=False, default="head")
    def db_stamp(revision: str) -> None:
        command.stamp(build_alembic_config(app), revision)
        click.echo(f"Stamped {revision}.")

    @db_group.command("bootstrap")
    def db_bootstrap() -> None:
        """Bring any database under migration control."""
        state = schema_state(app.config["DB_PATH"])
        cfg = build_alembic_config(app)
        if state == "unversioned":
            # The baseline matches what DB_AUTO_INIT creates.
            command.stamp(cfg, "head")
            click.echo("Existing schema stamped at head.")
        else:
            command.upgrade(cfg, "head")
            click.echo(f"Upgraded {state} database to head.")

    @db_group.command("current")
    def db_current() -> None:
        command.current(build_alembic_config(app), verbose=True)
