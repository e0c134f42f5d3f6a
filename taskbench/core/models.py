"""Data models for taskbench tasks, repositories and workspaces."""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class TaskStatus(str, Enum):
    """Task board status (persisted values match the tasks.status column)."""

    TODO = "todo"
    IN_PROGRESS = "inprogress"
    IN_REVIEW = "inreview"
    DONE = "done"
    CANCELLED = "cancelled"


# Statuses after which a sequential task no longer holds the project's execution slot
QUEUE_RELEASE_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.CANCELLED, TaskStatus.IN_REVIEW})


class ExecutionMode(str, Enum):
    """How a task is scheduled relative to other tasks of its project."""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class WorkspaceStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class WorkspaceLayoutState(str, Enum):
    """On-disk state of one repository slot (`{shared_dir}/{repo_name}`).

    CURRENT: slot is absent or already a symlink to the sibling worktree.
    LEGACY_UNMIGRATED: slot is a real worktree (has a `.git` file) that must be moved out.
    LEGACY_SYMLINK_STALE: slot holds something else (stale link, plain dir or file).
    """

    CURRENT = "current"
    LEGACY_UNMIGRATED = "legacy_unmigrated"
    LEGACY_SYMLINK_STALE = "legacy_symlink_stale"


def _parse_datetime(value: object) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return None


@dataclass(frozen=True)
class Repository:
    """A git checkout on local disk. Immutable once referenced by a workspace."""

    id: str
    name: str
    path: Path

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Repository":
        return cls(id=str(data["id"]), name=str(data["name"]), path=Path(str(data["path"])))


@dataclass(frozen=True)
class RepoWorkspaceInput:
    """One repository to materialize in a workspace, based on `target_branch`."""

    repository: Repository
    target_branch: str


@dataclass(frozen=True)
class RepoWorktree:
    """Materialized worktree for one repository inside one workspace."""

    repo_id: str
    repo_name: str
    source_repo_path: Path
    worktree_path: Path


@dataclass(frozen=True)
class WorktreeContainer:
    """Result of a successful workspace build (not persisted)."""

    shared_directory: Path
    worktrees: list[RepoWorktree] = field(default_factory=list)


@dataclass(frozen=True)
class WorktreeCleanup:
    """Cleanup request for one worktree; `repo_path` is resolved from the worktree when unknown."""

    worktree_path: Path
    repo_path: Optional[Path] = None


@dataclass
class Workspace:  # pylint: disable=too-many-instance-attributes  # Mirrors the workspaces table
    """Persisted workspace record. `container_ref` is the shared directory path."""

    id: str
    task_id: str
    branch: str
    container_ref: Optional[str] = None
    agent_working_dir: Optional[str] = None
    status: WorkspaceStatus = WorkspaceStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def shared_directory(self) -> Optional[Path]:
        return Path(self.container_ref) if self.container_ref else None

    def to_dict(self) -> dict[str, object]:
        """Convert workspace to a dict of column values."""
        data: dict[str, object] = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Workspace":
        """Create workspace from a database row."""
        known = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known}
        filtered["status"] = WorkspaceStatus(str(filtered.get("status") or WorkspaceStatus.PENDING.value))
        filtered["created_at"] = _parse_datetime(filtered.get("created_at"))
        filtered["updated_at"] = _parse_datetime(filtered.get("updated_at"))
        return cls(**filtered)  # type: ignore[arg-type]  # DB deserialization


@dataclass
class Task:  # pylint: disable=too-many-instance-attributes  # Mirrors the tasks table
    """Task entity carrying status and sequential-queue state.

    `queue_position` is set iff `execution_mode` is SEQUENTIAL, and forms a
    dense 1..N sequence among a project's sequential tasks.
    """

    id: str
    project_id: str
    title: str
    status: TaskStatus = TaskStatus.TODO
    execution_mode: ExecutionMode = ExecutionMode.PARALLEL
    queue_position: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_sequential(self) -> bool:
        return self.execution_mode == ExecutionMode.SEQUENTIAL

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Task":
        """Create task from a database row (unknown columns are ignored)."""
        known = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known}
        filtered["status"] = TaskStatus(str(filtered.get("status") or TaskStatus.TODO.value))
        filtered["execution_mode"] = ExecutionMode(
            str(filtered.get("execution_mode") or ExecutionMode.PARALLEL.value)
        )
        position = filtered.get("queue_position")
        filtered["queue_position"] = int(position) if position is not None else None  # type: ignore[call-overload]
        filtered["created_at"] = _parse_datetime(filtered.get("created_at"))
        filtered["updated_at"] = _parse_datetime(filtered.get("updated_at"))
        return cls(**filtered)  # type: ignore[arg-type]  # DB deserialization
