"""Unit tests for the clock and the UnitOfWork event buffer."""

from datetime import date, datetime, timezone

import pytest

from questline.core.clock import Clock, FixedClock, SystemClock
from questline.core.database.unit_of_work import UnitOfWork


class TestClock:
    def test_fixed_clock_advances(self):
        clock = FixedClock(datetime(2025, 1, 6, 23, 30, tzinfo=timezone.utc))
        clock.advance(hours=1)
        assert clock.now() == datetime(2025, 1, 7, 0, 30, tzinfo=timezone.utc)

    def test_naive_start_is_utc(self):
        clock = FixedClock(datetime(2025, 1, 6, 12))
        assert clock.now().tzinfo is timezone.utc
        clock.set(datetime(2025, 2, 1))
        assert clock.now() == datetime(2025, 2, 1, tzinfo=timezone.utc)

    def test_clocks_satisfy_protocol(self):
        assert isinstance(SystemClock(), Clock)
        assert isinstance(FixedClock(datetime(2025, 1, 1)), Clock)
        assert SystemClock().now().tzinfo is timezone.utc


class TestUnitOfWorkEvents:
    def test_now_and_today_follow_clock(self, mocker, clock):
        uow = UnitOfWork(mocker.MagicMock(), clock)
        assert uow.now() == clock.now()
        assert uow.today() == date(2025, 1, 6)

    def test_record_and_filter(self, mocker, clock):
        uow = UnitOfWork(mocker.MagicMock(), clock)
        payload = {"user_id": 1}

        uow.record_event("progression.xp_changed", payload)
        uow.record_event("progression.level_up", {"user_id": 1, "new_level": 2})
        payload["user_id"] = 99

        assert [name for name, _ in uow.pending_events] == [
            "progression.xp_changed",
            "progression.level_up",
        ]
        assert uow.events_named("progression.xp_changed") == [{"user_id": 1}]

    def test_discard(self, mocker, clock):
        uow = UnitOfWork(mocker.MagicMock(), clock)
        uow.record_event("habit.completed", {})
        uow.discard_events()
        assert uow.pending_events == []


@pytest.mark.asyncio
class TestPublishEvents:
    async def test_publishes_in_order_and_clears(self, mocker, clock, mock_event_bus):
        uow = UnitOfWork(mocker.MagicMock(), clock)
        uow.record_event("task.completed", {"task_id": 1})
        uow.record_event("progression.xp_changed", {"user_id": 1})

        assert await uow.publish_events(mock_event_bus) == 2
        assert [call.args[0] for call in mock_event_bus.publish.await_args_list] == [
            "task.completed",
            "progression.xp_changed",
        ]
        assert uow.pending_events == []

    async def test_publish_failure_is_logged_not_raised(self, mocker, clock, mock_event_bus):
        mock_event_bus.publish.side_effect = [RuntimeError("bus down"), []]
        uow = UnitOfWork(mocker.MagicMock(), clock)
        uow.record_event("task.completed", {})
        uow.record_event("progression.xp_changed", {})

        assert await uow.publish_events(mock_event_bus) == 1
        assert mock_event_bus.publish.await_count == 2

    async def test_no_bus(self, mocker, clock):
        uow = UnitOfWork(mocker.MagicMock(), clock)
        uow.record_event("task.completed", {})
        assert await uow.publish_events(None) == 0
        assert uow.pending_events == []
