"""Integration tests for TaskService."""

from datetime import timedelta

import pytest

from questline.database.models import Task, TaskCompletion, TaskStatus
from questline.modules.shared.exceptions import NotFoundError, StateConflictError
from tests.conftest import TEST_NOW
from tests.fixtures.factories import (
    character_for,
    count_rows,
    make_character,
    make_task,
    published_events,
    reload,
    seed,
)

pytestmark = [pytest.mark.asyncio, pytest.mark.integration, pytest.mark.database]


async def seed_task(session_factory, **overrides):
    await seed(session_factory, make_character(1))
    (task,) = await seed(session_factory, make_task(1, **overrides))
    return task


class TestCompleteTask:
    async def test_awards_scored_xp(self, session_factory, uow_factory, task_service, mock_event_bus):
        task = await seed_task(session_factory, difficulty="hard", priority="high")

        async with uow_factory() as uow:
            result = await task_service.complete_task(uow, 1, task.id, notes="done", duration_minutes=40)

        assert result.xp_earned == 60
        assert result.to_dict()["status"] == TaskStatus.COMPLETED.value

        stored = await reload(session_factory, Task, task.id)
        assert stored.status == TaskStatus.COMPLETED.value
        assert stored.completed_at is not None

        character = await character_for(session_factory, 1)
        assert character.total_xp == 60
        assert character.total_tasks_completed == 1

        payload = next(data for name, data in published_events(mock_event_bus) if name == "task.completed")
        assert payload["xp_earned"] == 60
        assert payload["was_early"] is False

    async def test_early_completion_bonus(self, session_factory, uow_factory, task_service):
        task = await seed_task(session_factory, due_date=TEST_NOW + timedelta(days=3))

        async with uow_factory() as uow:
            result = await task_service.complete_task(uow, 1, task.id)

        assert result.xp_earned == 29
        assert result.was_early and not result.was_late

    async def test_late_completion_penalty(self, session_factory, uow_factory, task_service):
        task = await seed_task(session_factory, due_date=TEST_NOW - timedelta(days=2))

        async with uow_factory() as uow:
            result = await task_service.complete_task(uow, 1, task.id)

        assert result.xp_earned == 23
        assert result.was_late

    async def test_already_completed(self, session_factory, uow_factory, task_service):
        task = await seed_task(session_factory)

        async with uow_factory() as uow:
            await task_service.complete_task(uow, 1, task.id)

        with pytest.raises(StateConflictError) as exc_info:
            async with uow_factory() as uow:
                await task_service.complete_task(uow, 1, task.id)
        assert exc_info.value.rule == "already_completed"
        assert await count_rows(session_factory, TaskCompletion) == 1

    async def test_other_users_task_is_not_found(self, session_factory, uow_factory, task_service):
        task = await seed_task(session_factory)
        await seed(session_factory, make_character(2))

        with pytest.raises(NotFoundError):
            async with uow_factory() as uow:
                await task_service.complete_task(uow, 2, task.id)

    async def test_deleted_task_is_not_found(self, session_factory, uow_factory, task_service):
        task = await seed_task(session_factory, status=TaskStatus.DELETED.value)

        with pytest.raises(NotFoundError):
            async with uow_factory() as uow:
                await task_service.complete_task(uow, 1, task.id)


class TestSubtasks:
    async def test_incomplete_subtasks_block_completion(self, session_factory, uow_factory, task_service):
        parent = await seed_task(session_factory)
        await seed(
            session_factory,
            make_task(1, title="Outline", parent_task_id=parent.id),
            make_task(1, title="Draft", parent_task_id=parent.id, status=TaskStatus.COMPLETED.value),
        )

        with pytest.raises(StateConflictError) as exc_info:
            async with uow_factory() as uow:
                await task_service.complete_task(uow, 1, parent.id)

        assert exc_info.value.rule == "incomplete_subtasks"
        assert exc_info.value.details["incomplete_subtasks"] == 1

    async def test_all_subtasks_done_earns_bonus(self, session_factory, uow_factory, task_service):
        parent = await seed_task(session_factory, difficulty="hard")
        await seed(
            session_factory,
            make_task(1, title="Draft", parent_task_id=parent.id, status=TaskStatus.COMPLETED.value),
            make_task(1, title="Abandoned", parent_task_id=parent.id, status=TaskStatus.DELETED.value),
        )

        async with uow_factory() as uow:
            result = await task_service.complete_task(uow, 1, parent.id)

        assert result.xp_earned == 55


class TestRecurringTasks:
    async def test_can_complete_repeatedly(self, session_factory, uow_factory, task_service, clock):
        task = await seed_task(session_factory, is_recurring=True)

        async with uow_factory() as uow:
            first = await task_service.complete_task(uow, 1, task.id)
        clock.advance(days=1)
        async with uow_factory() as uow:
            second = await task_service.complete_task(uow, 1, task.id)

        assert first.task.status == second.task.status == TaskStatus.PENDING.value
        assert await count_rows(session_factory, TaskCompletion, TaskCompletion.task_id == task.id) == 2
        character = await character_for(session_factory, 1)
        assert character.total_xp == 50


class TestUncompleteTask:
    async def test_restores_xp_and_reopens(self, session_factory, uow_factory, task_service, mock_event_bus):
        task = await seed_task(session_factory)

        async with uow_factory() as uow:
            await task_service.complete_task(uow, 1, task.id)
        async with uow_factory() as uow:
            result = await task_service.uncomplete_task(uow, 1, task.id)

        assert result.xp_earned == -25
        stored = await reload(session_factory, Task, task.id)
        assert stored.status == TaskStatus.PENDING.value
        assert stored.completed_at is None

        character = await character_for(session_factory, 1)
        assert (character.total_xp, character.total_tasks_completed) == (0, 0)
        assert await count_rows(session_factory, TaskCompletion) == 0
        assert published_events(mock_event_bus)[-1][0] == "task.uncompleted"

    async def test_not_completed(self, session_factory, uow_factory, task_service):
        task = await seed_task(session_factory)

        with pytest.raises(StateConflictError) as exc_info:
            async with uow_factory() as uow:
                await task_service.uncomplete_task(uow, 1, task.id)
        assert exc_info.value.rule == "not_completed"


class TestSetParentTask:
    async def test_self_parent_is_a_cycle(self, session_factory, uow_factory, task_service):
        task = await seed_task(session_factory)

        with pytest.raises(StateConflictError) as exc_info:
            async with uow_factory() as uow:
                await task_service.set_parent_task(uow, 1, task.id, task.id)
        assert exc_info.value.rule == "cycle"

    async def test_descendant_parent_is_a_cycle(self, session_factory, uow_factory, task_service):
        root = await seed_task(session_factory, title="Root")
        (child,) = await seed(session_factory, make_task(1, title="Child", parent_task_id=root.id))
        (grandchild,) = await seed(session_factory, make_task(1, title="Grandchild", parent_task_id=child.id))

        with pytest.raises(StateConflictError) as exc_info:
            async with uow_factory() as uow:
                await task_service.set_parent_task(uow, 1, root.id, grandchild.id)
        assert exc_info.value.rule == "cycle"

        stored = await reload(session_factory, Task, root.id)
        assert stored.parent_task_id is None

    async def test_valid_reparent_and_detach(self, session_factory, uow_factory, task_service):
        first = await seed_task(session_factory, title="First")
        (second,) = await seed(session_factory, make_task(1, title="Second"))

        async with uow_factory() as uow:
            await task_service.set_parent_task(uow, 1, second.id, first.id)
        assert (await reload(session_factory, Task, second.id)).parent_task_id == first.id

        async with uow_factory() as uow:
            await task_service.set_parent_task(uow, 1, second.id, None)
        assert (await reload(session_factory, Task, second.id)).parent_task_id is None
