"""
Release phase: migrate, check the schema, seed.

- DATABASE_URL is required (no silent SQLite fallback in production).
- Alembic upgrades to head.
- Every table the models map must exist afterwards.
- Permissions, roles and the first admin are seeded idempotently; existing passwords are left alone.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise RuntimeError(f"Missing required environment variable {name}.")
    return v


def missing_tables(db_url: str) -> list[str]:
    from sqlalchemy import inspect

    import app.studio.models  # noqa: F401
    from app.studio.db import make_engine
    from app.studio.models import Base

    engine = make_engine(db_url)
    try:
        present = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    return sorted(set(Base.metadata.tables) - present)


def run_release() -> None:
    db_url = _require_env("DATABASE_URL")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")

    print(f"=== studio release start (ENV={env or 'unset'}) ===", flush=True)

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")
    print("Migrations complete.", flush=True)

    missing = missing_tables(db_url)
    if missing:
        raise RuntimeError(f"Schema is missing tables after upgrade: {', '.join(missing)}")

    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("=== studio release done ===", flush=True)


if __name__ == "__main__":
    run_release()
