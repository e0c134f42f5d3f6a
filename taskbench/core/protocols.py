"""Protocol definitions for the capabilities the workspace and queue services consume."""

from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Sequence, runtime_checkable

from taskbench.core.models import Task, TaskStatus, WorktreeCleanup

# Ownership predicate used by the orphan sweeper: does a workspace record reference this path?
RecordExistsFn = Callable[[str], Awaitable[bool]]


@runtime_checkable
class WorktreeOps(Protocol):
    """Git worktree primitives.

    Implementations own the actual git invocations and their timeouts. The
    workspace layer only sequences these calls and handles rollback.
    """

    async def create(
        self,
        repo_path: Path,
        branch: str,
        worktree_path: Path,
        base_branch: str,
        checkout: bool = True,
    ) -> None:
        """Create a worktree for `branch` at `worktree_path`.

        The branch is created from `base_branch` when it does not exist yet.

        Raises:
            WorktreeError: If git refuses to create the worktree
        """
        ...

    async def move(self, repo_path: Path, src: Path, dst: Path) -> None:
        """Move a registered worktree to a new path.

        Raises:
            WorktreeError: If the move fails
        """
        ...

    async def ensure_exists(self, repo_path: Path, branch: str, worktree_path: Path) -> None:
        """Create the worktree if absent; no-op when present and valid.

        Raises:
            WorktreeError: If the worktree cannot be (re)created
        """
        ...

    async def cleanup(self, cleanup: WorktreeCleanup) -> None:
        """Remove one worktree and its git registration.

        Raises:
            WorktreeError: If removal fails
        """
        ...

    async def batch_cleanup(self, cleanups: Sequence[WorktreeCleanup]) -> list[tuple[WorktreeCleanup, Exception]]:
        """Remove many worktrees, continuing past failures.

        Returns:
            (request, error) pairs for every cleanup that failed
        """
        ...

    async def cleanup_suspected(self, path: Path) -> bool:
        """Remove `path` if it looks like a worktree (has a `.git` file).

        Returns:
            True if a worktree was found and cleaned up
        """
        ...

    def base_directory(self) -> Path:
        """Directory under which shared workspace directories are created."""
        ...


@runtime_checkable
class WorkspaceRecordStore(Protocol):
    """Persistence lookups needed by the orphan sweeper."""

    async def workspace_record_exists_for_path(self, path: str) -> bool: ...


@runtime_checkable
class TaskStore(Protocol):
    """Task persistence used by the sequential queue scheduler."""

    async def get_task(self, task_id: str) -> Optional[Task]: ...

    async def update_task_status(self, task_id: str, status: TaskStatus) -> None: ...

    async def update_queue_positions(self, assignments: Sequence[tuple[str, int]]) -> None: ...

    async def add_to_queue(self, task_id: str, project_id: str) -> None: ...

    async def remove_from_queue(self, task_id: str) -> None: ...

    async def find_sequential_queue_for_project(self, project_id: str) -> list[Task]: ...

    async def get_next_in_queue(self, project_id: str) -> Optional[Task]: ...

    async def has_running_sequential_task(self, project_id: str, exclude_task_id: Optional[str] = None) -> bool: ...
