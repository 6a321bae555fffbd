"""
Release phase for the marketplace: migrate to the head revision, confirm the database
actually reached it, then seed roles, permissions and the admin user.

Seeding is idempotent and never overwrites an existing admin password.

Usage:
  python scripts/release.py           # migrate + seed
  python scripts/release.py --check   # only report whether the schema is at head
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("Missing required environment variable DATABASE_URL.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")
    return db_url


def _alembic_config(db_url: str):
    from alembic.config import Config

    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def schema_revisions(db_url: str) -> tuple[str | None, str | None]:
    """(revision stamped in the database, head revision of migrations/versions)."""
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    from app.marketplace.db import build_engine

    head = ScriptDirectory.from_config(_alembic_config(db_url)).get_current_head()
    engine = build_engine(db_url)
    try:
        with engine.connect() as conn:
            current = MigrationContext.configure(conn).get_current_revision()
    finally:
        engine.dispose()
    return current, head


def run_release(*, check_only: bool = False) -> None:
    db_url = database_url()
    current, head = schema_revisions(db_url)
    print("=== marketplace release start ===", flush=True)
    print(f"Schema revision: {current or '(empty)'} -> head {head}", flush=True)

    if check_only:
        if current != head:
            raise RuntimeError(f"Database is at {current or '(empty)'}, expected {head}.")
        print("Schema is at head.", flush=True)
        return

    if current != head:
        from alembic import command

        print("Running Alembic migrations...", flush=True)
        command.upgrade(_alembic_config(db_url), "head")
        current, _ = schema_revisions(db_url)
        if current != head:
            raise RuntimeError(f"Migration finished at {current or '(empty)'}, expected {head}.")
        print("Migrations complete.", flush=True)

    print("Seeding roles/permissions/admin (idempotent)...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("=== marketplace release done ===", flush=True)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Migrate and seed the marketplace database.")
    parser.add_argument("--check", action="store_true", help="only verify the schema is at the head revision")
    args = parser.parse_args(argv)
    try:
        run_release(check_only=args.check)
    except RuntimeError as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
