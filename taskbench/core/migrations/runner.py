"""Schema migration runner.

Migrations are `NNN_name.py` modules in this package exposing `async def up(db)`.
Each one runs in its own transaction together with its `schema_migrations`
row, so a failing migration leaves neither schema changes nor a version
record behind. Migrations must not commit themselves.
"""

import importlib.util
import logging
import re
from pathlib import Path
from typing import Awaitable, Callable, cast

import aiosqlite

from taskbench.core.migrations.constants import INIT_FILE_NAME, MIGRATION_FILE_PATTERN, MIGRATIONS_TABLE

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent

UpFn = Callable[[aiosqlite.Connection], Awaitable[None]]


def discover_migrations(directory: Path = MIGRATIONS_DIR) -> list[Path]:
    """Migration modules in version order."""
    return sorted(
        path
        for path in directory.glob("*.py")
        if path.name != INIT_FILE_NAME and re.match(MIGRATION_FILE_PATTERN, path.name)
    )


def _load_up(path: Path) -> UpFn:
    spec = importlib.util.spec_from_file_location(f"taskbench_migration_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Failed to load migration: {path.stem}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    up = getattr(module, "up", None)
    if up is None:
        raise RuntimeError(f"Migration {path.stem} missing up() function")
    return cast(UpFn, up)


async def _applied_versions(db: aiosqlite.Connection) -> set[str]:
    await db.execute(
        f"CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} ("
        "version TEXT PRIMARY KEY, applied_at TEXT DEFAULT CURRENT_TIMESTAMP)"
    )
    await db.commit()
    cursor = await db.execute(f"SELECT version FROM {MIGRATIONS_TABLE}")
    return {cast(str, row[0]) for row in await cursor.fetchall()}


async def _apply(db: aiosqlite.Connection, version: str, up: UpFn) -> None:
    await db.execute("BEGIN")
    try:
        await up(db)
        await db.execute(f"INSERT INTO {MIGRATIONS_TABLE} (version) VALUES (?)", (version,))
    except Exception:
        await db.rollback()
        logger.error("Migration %s failed, rolled back", version)
        raise
    await db.commit()


async def run_pending_migrations(db: aiosqlite.Connection, directory: Path = MIGRATIONS_DIR) -> int:
    """Apply every migration not yet recorded, in version order.

    Returns:
        Number of migrations applied

    Raises:
        RuntimeError: If a migration file cannot be loaded or has no up()
    """
    applied = await _applied_versions(db)
    pending = [path for path in discover_migrations(directory) if path.stem not in applied]

    for path in pending:
        logger.info("Applying migration: %s", path.stem)
        await _apply(db, path.stem, _load_up(path))
    return len(pending)
