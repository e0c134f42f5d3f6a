"""Create repositories, tasks, workspaces and workspace_repositories tables."""

import aiosqlite

_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS repositories (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        path TEXT NOT NULL UNIQUE,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        title TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'todo'
            CHECK (status IN ('todo', 'inprogress', 'inreview', 'done', 'cancelled')),
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks (project_id)",
    """
    CREATE TABLE IF NOT EXISTS workspaces (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL REFERENCES tasks (id) ON DELETE CASCADE,
        branch TEXT NOT NULL,
        container_ref TEXT,
        agent_working_dir TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_workspaces_task ON workspaces (task_id)",
    "CREATE INDEX IF NOT EXISTS idx_workspaces_container_ref ON workspaces (container_ref)",
    """
    CREATE TABLE IF NOT EXISTS workspace_repositories (
        workspace_id TEXT NOT NULL REFERENCES workspaces (id) ON DELETE CASCADE,
        repository_id TEXT NOT NULL REFERENCES repositories (id),
        target_branch TEXT NOT NULL,
        position INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (workspace_id, repository_id)
    )
    """,
)


async def up(db: aiosqlite.Connection) -> None:
    """Create the base schema.

    Statements run one by one; `executescript` would commit the runner's transaction.
    """
    for statement in _STATEMENTS:
        await db.execute(statement)
