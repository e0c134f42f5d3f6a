"""SQLModel definitions for the taskbench database schema.

These models mirror the tables created by `taskbench/core/migrations/` for
synchronous, out-of-process readers (the CLI). The daemon itself goes through
`taskbench.core.db.Db`.
"""

from __future__ import annotations

from typing import Optional

from sqlmodel import Field, SQLModel


class Repository(SQLModel, table=True):
    """repositories table."""

    __tablename__ = "repositories"
    __table_args__ = {"extend_existing": True}

    id: str = Field(primary_key=True)
    name: str
    path: str
    created_at: Optional[str] = None


class Task(SQLModel, table=True):
    """tasks table."""

    __tablename__ = "tasks"
    __table_args__ = {"extend_existing": True}

    id: str = Field(primary_key=True)
    project_id: str
    title: str
    status: str = "todo"
    execution_mode: str = "parallel"
    queue_position: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Workspace(SQLModel, table=True):
    """workspaces table."""

    __tablename__ = "workspaces"
    __table_args__ = {"extend_existing": True}

    id: str = Field(primary_key=True)
    task_id: str
    branch: str
    container_ref: Optional[str] = None
    agent_working_dir: Optional[str] = None
    status: str = "pending"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
