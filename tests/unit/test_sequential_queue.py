"""Unit tests for sequential_queue.py."""

import random

import pytest

from taskbench.core.errors import NotSequentialMode, TaskNotFound
from taskbench.core.models import ExecutionMode, TaskStatus
from taskbench.core.sequential_queue import SequentialQueueService

PROJECT = "project-p"


async def _sequential(db, title, project_id=PROJECT, status=TaskStatus.TODO):
    return await db.create_task(project_id, title, status=status, execution_mode=ExecutionMode.SEQUENTIAL)


async def _order(queue, project_id=PROJECT):
    return [(t.title, t.queue_position) for t in await queue.get_queue(project_id)]


@pytest.fixture
def queue(test_db):
    return SequentialQueueService(test_db)


class TestEnqueueDequeue:
    @pytest.mark.asyncio
    async def test_sequential_tasks_get_dense_positions(self, test_db, queue):
        for title in ("T1", "T2", "T3"):
            await _sequential(test_db, title)
        await test_db.create_task(PROJECT, "parallel")

        assert await _order(queue) == [("T1", 1), ("T2", 2), ("T3", 3)]

    @pytest.mark.asyncio
    async def test_enqueue_appends_and_sets_mode(self, test_db, queue):
        await _sequential(test_db, "T1")
        task = await test_db.create_task(PROJECT, "T2")
        assert task.queue_position is None

        await queue.enqueue(task.id, PROJECT)

        stored = await test_db.get_task(task.id)
        assert stored.execution_mode == ExecutionMode.SEQUENTIAL
        assert stored.queue_position == 2

    @pytest.mark.asyncio
    async def test_dequeue_closes_gap_and_clears_position(self, test_db, queue):
        t1 = await _sequential(test_db, "T1")
        await _sequential(test_db, "T2")
        await _sequential(test_db, "T3")

        await queue.dequeue(t1.id)

        assert await _order(queue) == [("T2", 1), ("T3", 2)]
        stored = await test_db.get_task(t1.id)
        assert stored.execution_mode == ExecutionMode.PARALLEL
        assert stored.queue_position is None

    @pytest.mark.asyncio
    async def test_queues_are_per_project(self, test_db, queue):
        await _sequential(test_db, "T1")
        await _sequential(test_db, "Q1", project_id="other")

        assert await _order(queue) == [("T1", 1)]
        assert await _order(queue, "other") == [("Q1", 1)]


class TestReorder:
    @pytest.mark.asyncio
    async def test_move_last_to_front(self, test_db, queue):
        await _sequential(test_db, "T1")
        await _sequential(test_db, "T2")
        t3 = await _sequential(test_db, "T3")

        await queue.reorder(PROJECT, t3.id, 1)

        assert await _order(queue) == [("T3", 1), ("T1", 2), ("T2", 3)]

    @pytest.mark.asyncio
    async def test_move_front_to_middle(self, test_db, queue):
        t1 = await _sequential(test_db, "T1")
        await _sequential(test_db, "T2")
        await _sequential(test_db, "T3")

        await queue.reorder(PROJECT, t1.id, 2)

        assert await _order(queue) == [("T2", 1), ("T1", 2), ("T3", 3)]

    @pytest.mark.asyncio
    async def test_out_of_range_positions_are_clamped(self, test_db, queue):
        t1 = await _sequential(test_db, "T1")
        await _sequential(test_db, "T2")
        t3 = await _sequential(test_db, "T3")

        await queue.reorder(PROJECT, t1.id, 99)
        assert await _order(queue) == [("T2", 1), ("T3", 2), ("T1", 3)]

        await queue.reorder(PROJECT, t3.id, 0)
        assert await _order(queue) == [("T3", 1), ("T2", 2), ("T1", 3)]

    @pytest.mark.asyncio
    async def test_update_position_uses_task_project(self, test_db, queue):
        await _sequential(test_db, "T1")
        t2 = await _sequential(test_db, "T2")

        await queue.update_position(t2.id, 1)

        assert await _order(queue) == [("T2", 1), ("T1", 2)]

    @pytest.mark.asyncio
    async def test_positions_stay_dense_across_mixed_operations(self, test_db, queue):
        rng = random.Random(7)
        tasks = [await _sequential(test_db, f"T{i}") for i in range(6)]

        for step in range(20):
            task = rng.choice(tasks)
            current = await test_db.get_task(task.id)
            if step % 7 == 3 and current.is_sequential:
                await queue.dequeue(task.id)
            elif not current.is_sequential:
                await queue.enqueue(task.id, PROJECT)
            else:
                await queue.reorder(PROJECT, task.id, rng.randint(-1, 8))

            positions = [position for _, position in await _order(queue)]
            assert positions == list(range(1, len(positions) + 1))

    @pytest.mark.asyncio
    async def test_unknown_task_raises(self, queue):
        with pytest.raises(TaskNotFound):
            await queue.reorder(PROJECT, "missing", 1)

    @pytest.mark.asyncio
    async def test_task_from_other_project_raises(self, test_db, queue):
        task = await _sequential(test_db, "Q1", project_id="other")

        with pytest.raises(TaskNotFound):
            await queue.reorder(PROJECT, task.id, 1)

    @pytest.mark.asyncio
    async def test_parallel_task_raises(self, test_db, queue):
        task = await test_db.create_task(PROJECT, "parallel")

        with pytest.raises(NotSequentialMode):
            await queue.reorder(PROJECT, task.id, 1)


class TestAdvance:
    @pytest.mark.asyncio
    async def test_returns_none_while_another_task_runs(self, test_db, queue):
        t0 = await _sequential(test_db, "T0", status=TaskStatus.IN_PROGRESS)
        await _sequential(test_db, "T1", status=TaskStatus.IN_PROGRESS)
        await _sequential(test_db, "T2")

        await test_db.update_task_status(t0.id, TaskStatus.DONE)
        t0 = await test_db.get_task(t0.id)

        assert await queue.advance(t0) is None

    @pytest.mark.asyncio
    async def test_returns_next_todo_when_slot_released(self, test_db, queue):
        t1 = await _sequential(test_db, "T1", status=TaskStatus.IN_PROGRESS)
        t2 = await _sequential(test_db, "T2")
        await _sequential(test_db, "T3")

        await test_db.update_task_status(t1.id, TaskStatus.DONE)
        t1 = await test_db.get_task(t1.id)

        next_task = await queue.advance(t1)
        assert next_task is not None
        assert next_task.id == t2.id

    @pytest.mark.asyncio
    async def test_in_review_and_cancelled_release_the_slot(self, test_db, queue):
        t1 = await _sequential(test_db, "T1", status=TaskStatus.IN_REVIEW)
        t2 = await _sequential(test_db, "T2")

        assert (await queue.advance(t1)).id == t2.id

        await test_db.update_task_status(t1.id, TaskStatus.CANCELLED)
        t1 = await test_db.get_task(t1.id)
        assert (await queue.advance(t1)).id == t2.id

    @pytest.mark.asyncio
    async def test_still_running_task_does_not_advance(self, test_db, queue):
        t1 = await _sequential(test_db, "T1", status=TaskStatus.IN_PROGRESS)
        await _sequential(test_db, "T2")

        assert await queue.advance(t1) is None

    @pytest.mark.asyncio
    async def test_parallel_task_does_not_advance(self, test_db, queue):
        task = await test_db.create_task(PROJECT, "parallel", status=TaskStatus.DONE)
        await _sequential(test_db, "T1")

        assert await queue.advance(task) is None

    @pytest.mark.asyncio
    async def test_skips_finished_tasks_in_queue(self, test_db, queue):
        t1 = await _sequential(test_db, "T1", status=TaskStatus.DONE)
        await _sequential(test_db, "T2", status=TaskStatus.DONE)
        t3 = await _sequential(test_db, "T3")

        assert (await queue.advance(t1)).id == t3.id

    @pytest.mark.asyncio
    async def test_empty_queue_returns_none(self, test_db, queue):
        t1 = await _sequential(test_db, "T1", status=TaskStatus.DONE)

        assert await queue.advance(t1) is None
