"""Sequential task queue.

Tasks in sequential mode run one at a time per project, in queue order. The
queue is not a separate structure: it is the set of a project's sequential
tasks ordered by `queue_position` (dense, 1-based). This service only selects
the next task; starting it is the caller's job.
"""

import logging
from typing import Optional

from taskbench.constants import LOG_ID_LEN
from taskbench.core.errors import NotSequentialMode, TaskNotFound
from taskbench.core.models import QUEUE_RELEASE_STATUSES, Task
from taskbench.core.protocols import TaskStore

logger = logging.getLogger(__name__)


class SequentialQueueService:
    """Maintains per-project ordering of sequential tasks."""

    def __init__(self, store: TaskStore) -> None:
        self._store = store

    async def get_queue(self, project_id: str) -> list[Task]:
        """All sequential tasks of the project, ascending by position."""
        return await self._store.find_sequential_queue_for_project(project_id)

    async def get_next_pending(self, project_id: str) -> Optional[Task]:
        """First queued task that is still TODO, or None."""
        return await self._store.get_next_in_queue(project_id)

    async def has_running(self, project_id: str, exclude_task_id: Optional[str] = None) -> bool:
        """True if a sequential task of the project is IN_PROGRESS."""
        return await self._store.has_running_sequential_task(project_id, exclude_task_id=exclude_task_id)

    async def enqueue(self, task_id: str, project_id: str) -> None:
        """Append the task to the end of the project's queue."""
        await self._store.add_to_queue(task_id, project_id)
        logger.debug("Enqueued task %s in project %s", task_id[:LOG_ID_LEN], project_id[:LOG_ID_LEN])

    async def dequeue(self, task_id: str) -> None:
        """Take the task out of sequential scheduling; later tasks move up one slot."""
        await self._store.remove_from_queue(task_id)
        logger.debug("Dequeued task %s", task_id[:LOG_ID_LEN])

    async def update_position(self, task_id: str, new_position: int) -> None:
        """Move a task to `new_position` within its own project's queue."""
        task = await self._store.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        await self.reorder(task.project_id, task_id, new_position)

    async def reorder(self, project_id: str, task_id: str, new_position: int) -> None:
        """Move a task to `new_position`, shifting the others to keep positions dense.

        Positions outside 1..len(queue) are clamped to the nearest end.

        Raises:
            TaskNotFound: If the task does not exist in this project
            NotSequentialMode: If the task is not in sequential mode
        """
        task = await self._store.get_task(task_id)
        if task is None or task.project_id != project_id:
            raise TaskNotFound(task_id)
        if not task.is_sequential:
            raise NotSequentialMode(task_id)

        if task.queue_position == new_position:
            return

        queue = await self._store.find_sequential_queue_for_project(project_id)
        others = [t for t in queue if t.id != task_id]
        target = min(max(new_position, 1), len(others) + 1)
        if task.queue_position == target:
            return

        # Leave a gap at `target` for the moved task
        insert_at = target - 1
        assignments = [(t.id, idx + 1 if idx < insert_at else idx + 2) for idx, t in enumerate(others)]
        assignments.append((task_id, target))
        await self._store.update_queue_positions(assignments)
        logger.info(
            "Moved task %s to queue position %d in project %s",
            task_id[:LOG_ID_LEN],
            target,
            project_id[:LOG_ID_LEN],
        )

    async def advance(self, completed_task: Task) -> Optional[Task]:
        """Select the task that should run after `completed_task` released the project slot.

        Returns:
            Next TODO task in queue order, or None when the task was not
            sequential, did not release the slot, or another sequential task
            of the project is still running
        """
        if not completed_task.is_sequential:
            return None
        if completed_task.status not in QUEUE_RELEASE_STATUSES:
            return None

        project_id = completed_task.project_id
        if await self.has_running(project_id, exclude_task_id=completed_task.id):
            logger.debug(
                "Sequential task %s completed but another sequential task is still running",
                completed_task.id[:LOG_ID_LEN],
            )
            return None

        next_task = await self.get_next_pending(project_id)
        if next_task is None or next_task.id == completed_task.id:
            return None

        logger.info(
            "Sequential task %s completed, next task in queue: %s (position: %s)",
            completed_task.id[:LOG_ID_LEN],
            next_task.id[:LOG_ID_LEN],
            next_task.queue_position,
        )
        return next_task
