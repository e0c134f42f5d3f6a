"""Database manager for taskbench - repositories, tasks, workspaces and the sequential queue."""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

import aiosqlite

from taskbench.constants import LOG_ID_LEN
from taskbench.core.migrations.runner import run_pending_migrations
from taskbench.core.models import (
    ExecutionMode,
    RepoWorkspaceInput,
    Repository,
    Task,
    TaskStatus,
    Workspace,
    WorkspaceStatus,
)

logger = logging.getLogger(__name__)

_SEQUENTIAL = ExecutionMode.SEQUENTIAL.value
_QUEUE_ORDER = "ORDER BY queue_position IS NULL, queue_position ASC, created_at ASC"


def _now() -> str:
    return datetime.now().isoformat()


class Db:
    """Database interface for task, workspace and queue state."""

    def __init__(self, db_path: str) -> None:
        """Initialize database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Connect and bring the schema up to date."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute("PRAGMA busy_timeout = 5000")

        applied = await run_pending_migrations(self._db)
        if applied:
            logger.info("Applied %d database migrations", applied)

    @property
    def conn(self) -> aiosqlite.Connection:
        """Get database connection, asserting it's initialized.

        Raises:
            RuntimeError: If database not initialized
        """
        if self._db is None:
            raise RuntimeError("Database not initialized - call initialize() first")
        return self._db

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    # Repositories

    async def create_repository(self, name: str, path: Path, repo_id: Optional[str] = None) -> Repository:
        repository = Repository(id=repo_id or str(uuid.uuid4()), name=name, path=path)
        await self.conn.execute(
            "INSERT INTO repositories (id, name, path) VALUES (?, ?, ?)",
            (repository.id, repository.name, str(repository.path)),
        )
        await self.conn.commit()
        return repository

    # Tasks

    async def create_task(
        self,
        project_id: str,
        title: str,
        *,
        status: TaskStatus = TaskStatus.TODO,
        execution_mode: ExecutionMode = ExecutionMode.PARALLEL,
        task_id: Optional[str] = None,
    ) -> Task:
        """Create a task; sequential tasks are appended to their project's queue.

        Returns:
            The persisted task (with its queue position)
        """
        task_id = task_id or str(uuid.uuid4())
        now = _now()
        await self.conn.execute(
            """
            INSERT INTO tasks (id, project_id, title, status, execution_mode, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (task_id, project_id, title, status.value, ExecutionMode.PARALLEL.value, now, now),
        )
        await self.conn.commit()
        if execution_mode == ExecutionMode.SEQUENTIAL:
            await self.add_to_queue(task_id, project_id)

        task = await self.get_task(task_id)
        if task is None:
            raise RuntimeError(f"Task {task_id} vanished after insert")
        return task

    async def get_task(self, task_id: str) -> Optional[Task]:
        """Get task by ID.

        Returns:
            Task or None if not found
        """
        cursor = await self.conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        row = await cursor.fetchone()
        return Task.from_dict(dict(row)) if row else None

    async def update_task_status(self, task_id: str, status: TaskStatus) -> None:
        await self.conn.execute(
            "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ?",
            (status.value, _now(), task_id),
        )
        await self.conn.commit()

    async def update_queue_positions(self, assignments: Sequence[tuple[str, int]]) -> None:
        """Write several queue positions in one transaction."""
        now = _now()
        try:
            await self.conn.executemany(
                "UPDATE tasks SET queue_position = ?, updated_at = ? WHERE id = ?",
                [(position, now, task_id) for task_id, position in assignments],
            )
            await self.conn.commit()
        except aiosqlite.Error:
            await self.conn.rollback()
            raise

    async def add_to_queue(self, task_id: str, project_id: str) -> None:
        """Mark the task sequential and append it after the project's last queued task.

        A task already in the queue is moved to the end, closing its old slot.
        """
        try:
            await self._compact_queue_slot(task_id)
            await self.conn.execute(
                """
                UPDATE tasks SET
                    execution_mode = ?,
                    queue_position = (
                        SELECT COALESCE(MAX(queue_position), 0) + 1 FROM tasks
                        WHERE project_id = ? AND execution_mode = ? AND id != ?
                    ),
                    updated_at = ?
                WHERE id = ?
                """,
                (_SEQUENTIAL, project_id, _SEQUENTIAL, task_id, _now(), task_id),
            )
            await self.conn.commit()
        except aiosqlite.Error:
            await self.conn.rollback()
            raise

    async def remove_from_queue(self, task_id: str) -> None:
        """Clear the task's queue position (back to parallel) and close the gap it leaves."""
        try:
            await self._compact_queue_slot(task_id)
            await self.conn.execute(
                "UPDATE tasks SET execution_mode = ?, queue_position = NULL, updated_at = ? WHERE id = ?",
                (ExecutionMode.PARALLEL.value, _now(), task_id),
            )
            await self.conn.commit()
        except aiosqlite.Error:
            await self.conn.rollback()
            raise

    async def find_sequential_queue_for_project(self, project_id: str) -> list[Task]:
        cursor = await self.conn.execute(
            f"SELECT * FROM tasks WHERE project_id = ? AND execution_mode = ? {_QUEUE_ORDER}",
            (project_id, _SEQUENTIAL),
        )
        rows = await cursor.fetchall()
        return [Task.from_dict(dict(row)) for row in rows]

    async def get_next_in_queue(self, project_id: str) -> Optional[Task]:
        cursor = await self.conn.execute(
            f"SELECT * FROM tasks WHERE project_id = ? AND execution_mode = ? AND status = ? {_QUEUE_ORDER} LIMIT 1",
            (project_id, _SEQUENTIAL, TaskStatus.TODO.value),
        )
        row = await cursor.fetchone()
        return Task.from_dict(dict(row)) if row else None

    async def has_running_sequential_task(self, project_id: str, exclude_task_id: Optional[str] = None) -> bool:
        query = "SELECT 1 FROM tasks WHERE project_id = ? AND execution_mode = ? AND status = ?"
        params: list[object] = [project_id, _SEQUENTIAL, TaskStatus.IN_PROGRESS.value]
        if exclude_task_id:
            query += " AND id != ?"
            params.append(exclude_task_id)
        cursor = await self.conn.execute(query + " LIMIT 1", params)
        return await cursor.fetchone() is not None

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task and (by cascade) its workspace records.

        Returns:
            True if a task was deleted
        """
        try:
            await self._compact_queue_slot(task_id)
            cursor = await self.conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            await self.conn.commit()
        except aiosqlite.Error:
            await self.conn.rollback()
            raise
        deleted = cursor.rowcount > 0
        if deleted:
            logger.debug("Deleted task %s from database", task_id[:LOG_ID_LEN])
        return deleted

    async def _compact_queue_slot(self, task_id: str) -> None:
        """Shift queued tasks behind `task_id` up by one (no commit)."""
        cursor = await self.conn.execute(
            "SELECT project_id, execution_mode, queue_position FROM tasks WHERE id = ?", (task_id,)
        )
        row = await cursor.fetchone()
        if not row or row["execution_mode"] != _SEQUENTIAL or row["queue_position"] is None:
            return
        await self.conn.execute(
            """
            UPDATE tasks SET queue_position = queue_position - 1
            WHERE project_id = ? AND execution_mode = ? AND queue_position > ? AND id != ?
            """,
            (row["project_id"], _SEQUENTIAL, row["queue_position"], task_id),
        )

    # Workspaces

    async def create_workspace(
        self,
        task_id: str,
        branch: str,
        container_ref: Optional[str],
        repos: Sequence[RepoWorkspaceInput] = (),
        *,
        agent_working_dir: Optional[str] = None,
        workspace_id: Optional[str] = None,
    ) -> Workspace:
        """Persist a workspace record and its repository attachments."""
        now = datetime.now()
        workspace = Workspace(
            id=workspace_id or str(uuid.uuid4()),
            task_id=task_id,
            branch=branch,
            container_ref=container_ref,
            agent_working_dir=agent_working_dir,
            status=WorkspaceStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        data = workspace.to_dict()
        try:
            await self.conn.execute(
                """
                INSERT INTO workspaces (
                    id, task_id, branch, container_ref, agent_working_dir, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["id"],
                    data["task_id"],
                    data["branch"],
                    data["container_ref"],
                    data["agent_working_dir"],
                    data["status"],
                    data["created_at"],
                    data["updated_at"],
                ),
            )
            await self.conn.executemany(
                """
                INSERT INTO workspace_repositories (workspace_id, repository_id, target_branch, position)
                VALUES (?, ?, ?, ?)
                """,
                [(workspace.id, item.repository.id, item.target_branch, idx) for idx, item in enumerate(repos)],
            )
            await self.conn.commit()
        except aiosqlite.Error:
            await self.conn.rollback()
            raise
        return workspace

    async def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        cursor = await self.conn.execute("SELECT * FROM workspaces WHERE id = ?", (workspace_id,))
        row = await cursor.fetchone()
        return Workspace.from_dict(dict(row)) if row else None

    async def list_workspaces_for_task(self, task_id: str) -> list[Workspace]:
        cursor = await self.conn.execute(
            "SELECT * FROM workspaces WHERE task_id = ? ORDER BY created_at ASC", (task_id,)
        )
        rows = await cursor.fetchall()
        return [Workspace.from_dict(dict(row)) for row in rows]

    async def list_workspaces(self, status: Optional[WorkspaceStatus] = None) -> list[Workspace]:
        if status is None:
            cursor = await self.conn.execute("SELECT * FROM workspaces ORDER BY created_at ASC")
        else:
            cursor = await self.conn.execute(
                "SELECT * FROM workspaces WHERE status = ? ORDER BY created_at ASC", (status.value,)
            )
        rows = await cursor.fetchall()
        return [Workspace.from_dict(dict(row)) for row in rows]

    async def update_workspace(self, workspace_id: str, **fields: object) -> None:
        """Update workspace columns.

        Args:
            workspace_id: Workspace ID
            **fields: Columns to update (status, container_ref, agent_working_dir, ...)
        """
        if not fields:
            return
        if isinstance(fields.get("status"), WorkspaceStatus):
            fields["status"] = fields["status"].value  # type: ignore[union-attr]
        fields["updated_at"] = _now()

        set_clause = ", ".join(f"{key} = ?" for key in fields)
        values = list(fields.values()) + [workspace_id]
        await self.conn.execute(f"UPDATE workspaces SET {set_clause} WHERE id = ?", values)
        await self.conn.commit()

    async def get_workspace_repositories(self, workspace_id: str) -> list[RepoWorkspaceInput]:
        """Repositories attached to a workspace, in creation order."""
        cursor = await self.conn.execute(
            """
            SELECT r.id, r.name, r.path, wr.target_branch
            FROM workspace_repositories wr
            JOIN repositories r ON r.id = wr.repository_id
            WHERE wr.workspace_id = ?
            ORDER BY wr.position ASC
            """,
            (workspace_id,),
        )
        rows = await cursor.fetchall()
        return [
            RepoWorkspaceInput(repository=Repository.from_dict(dict(row)), target_branch=str(row["target_branch"]))
            for row in rows
        ]

    async def workspace_record_exists_for_path(self, path: str) -> bool:
        """True if any workspace record references `path` as its shared directory."""
        cursor = await self.conn.execute("SELECT 1 FROM workspaces WHERE container_ref = ? LIMIT 1", (path,))
        return await cursor.fetchone() is not None
