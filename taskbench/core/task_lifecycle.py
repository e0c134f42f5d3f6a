"""Task lifecycle - starting, finishing, re-moding and deleting tasks.

Coordinates persistence (`Db`), on-disk workspaces (`WorkspaceManager`) and
sequential scheduling (`SequentialQueueService`). Workspace records are written
before anything touches the disk, so a crash mid-build leaves a record the
orphan sweeper will not collect and `resume_workspace` can repair.
"""

import logging
import uuid
from typing import Optional, Sequence

from taskbench.constants import BRANCH_PREFIX, LOG_ID_LEN, WORKSPACE_ID_PREFIX_LEN
from taskbench.core.db import Db
from taskbench.core.errors import SequentialSlotOccupied, TaskNotFound
from taskbench.core.models import (
    ExecutionMode,
    RepoWorkspaceInput,
    Repository,
    Task,
    TaskStatus,
    Workspace,
    WorkspaceStatus,
)
from taskbench.core.sequential_queue import SequentialQueueService
from taskbench.core.workspace_manager import WorkspaceManager
from taskbench.utils import slugify

logger = logging.getLogger(__name__)


def workspace_dir_name(workspace_id: str, title: str) -> str:
    """`{workspace id prefix}-{title slug}`, shared by branch and workspace directory names.

    Named after the workspace, not the task, so every attempt at a task gets
    its own branch and worktrees.
    """
    return f"{workspace_id[:WORKSPACE_ID_PREFIX_LEN]}-{slugify(title)}"


def default_branch_name(workspace_id: str, title: str) -> str:
    return f"{BRANCH_PREFIX}/{workspace_dir_name(workspace_id, title)}"


class TaskLifecycle:
    """Drives a task's workspace and queue state through its status changes."""

    def __init__(self, db: Db, workspace_manager: WorkspaceManager, queue: SequentialQueueService) -> None:
        self._db = db
        self._workspaces = workspace_manager
        self._queue = queue

    async def _require_task(self, task_id: str) -> Task:
        task = await self._db.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    async def start_task(
        self,
        task_id: str,
        repos: Sequence[RepoWorkspaceInput],
        branch: Optional[str] = None,
    ) -> Workspace:
        """Materialize a workspace for the task and mark it in progress.

        Args:
            task_id: Task to start
            repos: Repositories (with base branches) the workspace spans
            branch: Branch for every worktree (default `tb/{workspace id prefix}-{slug}`)

        Returns:
            The workspace record, status READY

        Raises:
            TaskNotFound: Unknown task
            SequentialSlotOccupied: Task is sequential and another task of the project is running
            WorkspaceError: Build failed; the record is left FAILED
        """
        task = await self._require_task(task_id)
        if task.is_sequential and await self._queue.has_running(task.project_id, exclude_task_id=task.id):
            raise SequentialSlotOccupied(task.project_id)

        workspace_id = str(uuid.uuid4())
        branch = branch or default_branch_name(workspace_id, task.title)
        shared_directory = self._workspaces.workspace_base_directory() / workspace_dir_name(workspace_id, task.title)
        workspace = await self._db.create_workspace(
            task.id, branch, str(shared_directory), repos, workspace_id=workspace_id
        )
        logger.info(
            "Starting task %s in workspace %s (%d repos, branch %s)",
            task.id[:LOG_ID_LEN],
            workspace.id[:LOG_ID_LEN],
            len(repos),
            branch,
        )

        try:
            container = await self._workspaces.build(shared_directory, repos, branch)
        except Exception:
            await self._db.update_workspace(workspace.id, status=WorkspaceStatus.FAILED)
            logger.error("Workspace %s for task %s failed to build", workspace.id[:LOG_ID_LEN], task.id[:LOG_ID_LEN])
            raise

        workspace.status = WorkspaceStatus.READY
        workspace.agent_working_dir = str(container.shared_directory)
        await self._db.update_workspace(
            workspace.id,
            status=workspace.status,
            agent_working_dir=workspace.agent_working_dir,
        )
        await self._db.update_task_status(task.id, TaskStatus.IN_PROGRESS)
        return workspace

    async def update_status(self, task_id: str, status: TaskStatus) -> Optional[Task]:
        """Persist a status change and pick the next sequential task if the slot was released.

        Returns:
            The task that should start next, or None

        Raises:
            TaskNotFound: Unknown task
            SequentialSlotOccupied: Moving a sequential task to IN_PROGRESS while
                another sequential task of the project is running
        """
        task = await self._require_task(task_id)
        if task.status == status:
            return None
        if (
            status == TaskStatus.IN_PROGRESS
            and task.is_sequential
            and await self._queue.has_running(task.project_id, exclude_task_id=task.id)
        ):
            raise SequentialSlotOccupied(task.project_id)
        await self._db.update_task_status(task_id, status)
        task.status = status
        logger.debug("Task %s status -> %s", task_id[:LOG_ID_LEN], status.value)
        return await self._queue.advance(task)

    async def set_execution_mode(self, task_id: str, mode: ExecutionMode) -> Task:
        """Switch a task between parallel and sequential scheduling.

        Entering sequential mode appends the task to its project's queue;
        leaving it closes the gap the task leaves behind.
        """
        task = await self._require_task(task_id)
        if task.execution_mode == mode:
            return task

        if mode == ExecutionMode.SEQUENTIAL:
            await self._queue.enqueue(task.id, task.project_id)
        else:
            await self._queue.dequeue(task.id)
        logger.info("Task %s execution mode -> %s", task_id[:LOG_ID_LEN], mode.value)
        return await self._require_task(task_id)

    async def resume_workspace(self, workspace_id: str) -> Workspace:
        """Repair a persisted workspace on disk after a restart.

        Single-repository workspaces created before per-repo slots existed are
        migrated first; then every repository slot is reconciled.

        Raises:
            ValueError: Unknown workspace or workspace without a shared directory
        """
        workspace = await self._db.get_workspace(workspace_id)
        if workspace is None:
            raise ValueError(f"Workspace {workspace_id} not found")
        shared_directory = workspace.shared_directory
        if shared_directory is None:
            raise ValueError(f"Workspace {workspace_id} has no shared directory")

        repos = [item.repository for item in await self._db.get_workspace_repositories(workspace.id)]
        if len(repos) == 1:
            await self._workspaces.migrate_legacy_single_tree(shared_directory, repos[0])
        await self._workspaces.reconcile(shared_directory, repos, workspace.branch)
        logger.info("Resumed workspace %s at %s", workspace.id[:LOG_ID_LEN], shared_directory)
        return workspace

    async def delete_task(self, task_id: str) -> bool:
        """Delete the task's rows, then tear down its workspaces best effort.

        Returns:
            True if the task existed
        """
        workspaces = await self._db.list_workspaces_for_task(task_id)
        teardown: list[tuple[Workspace, list[Repository]]] = []
        for workspace in workspaces:
            repos = [item.repository for item in await self._db.get_workspace_repositories(workspace.id)]
            teardown.append((workspace, repos))

        deleted = await self._db.delete_task(task_id)
        if not deleted:
            return False

        for workspace, repos in teardown:
            shared_directory = workspace.shared_directory
            if shared_directory is None:
                continue
            try:
                failures = await self._workspaces.destroy(shared_directory, repos, workspace.branch)
            except Exception as exc:  # noqa: BLE001 - rows are gone; leftovers go to the orphan sweeper
                logger.error("Failed to clean up workspace %s: %s", workspace.id[:LOG_ID_LEN], exc)
                continue
            if failures:
                logger.warning(
                    "Workspace %s cleanup left %d worktrees behind", workspace.id[:LOG_ID_LEN], len(failures)
                )
        logger.info("Deleted task %s", task_id[:LOG_ID_LEN])
        return True
