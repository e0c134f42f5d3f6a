"""Exception hierarchy for workspace lifecycle and sequential scheduling."""

from pathlib import Path
from typing import Optional


class TaskbenchError(Exception):
    """Base class for all taskbench errors."""


class WorktreeError(TaskbenchError):
    """A git worktree primitive failed (create/move/ensure/cleanup)."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


class WorkspaceError(TaskbenchError):
    """Workspace lifecycle failure."""


class NoRepositories(WorkspaceError):
    def __init__(self) -> None:
        super().__init__("No repositories provided")


class PartialCreation(WorkspaceError):
    """A worktree failed mid-build; everything created before it was rolled back."""

    def __init__(self, repo_name: str, detail: str) -> None:
        super().__init__(f"Partial workspace creation failed: failed to create worktree for repo '{repo_name}': {detail}")
        self.repo_name = repo_name
        self.detail = detail


class WorkspaceIOError(WorkspaceError):
    """Filesystem failure outside the worktree primitive."""

    def __init__(self, message: str, path: Path) -> None:
        super().__init__(f"{message}: {path}")
        self.path = path


class SequentialQueueError(TaskbenchError):
    """Sequential queue precondition failure."""


class TaskNotFound(SequentialQueueError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class NotSequentialMode(SequentialQueueError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} is not in sequential mode")
        self.task_id = task_id


class SequentialSlotOccupied(SequentialQueueError):
    """Another sequential task of the project is already in progress."""

    def __init__(self, project_id: str, running_task_id: Optional[str] = None) -> None:
        super().__init__(f"A sequential task is already running in project {project_id}")
        self.project_id = project_id
        self.running_task_id = running_task_id
