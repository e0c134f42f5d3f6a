"""Add execution mode and queue position to tasks.

execution_mode: 'parallel' (default) or 'sequential'
queue_position: ordering for sequential tasks (NULL for parallel tasks)
"""

# mypy: disable-error-code="misc"
# Migration files handle untyped sqlite rows

import logging
from typing import cast

import aiosqlite

from taskbench.core.migrations.constants import COLUMN_EXECUTION_MODE, COLUMN_QUEUE_POSITION, TABLE_TASKS

logger = logging.getLogger(__name__)


async def up(db: aiosqlite.Connection) -> None:
    """Add the sequential queue columns and their index if missing."""
    cursor = await db.execute(f"PRAGMA table_info({TABLE_TASKS})")
    rows = await cursor.fetchall()
    existing_columns = {cast(str, row[1]) for row in rows}

    if COLUMN_EXECUTION_MODE not in existing_columns:
        await db.execute(
            "ALTER TABLE tasks ADD COLUMN execution_mode TEXT NOT NULL DEFAULT 'parallel' "
            "CHECK (execution_mode IN ('parallel', 'sequential'))"
        )
        logger.info("Added execution_mode column to tasks table")
    if COLUMN_QUEUE_POSITION not in existing_columns:
        await db.execute("ALTER TABLE tasks ADD COLUMN queue_position INTEGER")
        logger.info("Added queue_position column to tasks table")

    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_tasks_sequential_queue "
        "ON tasks (project_id, execution_mode, queue_position) WHERE execution_mode = 'sequential'"
    )
