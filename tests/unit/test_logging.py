"""Unit tests for the logging formatters and operation context."""

import json
import logging
import sys

import pytest

from questline.core.logging.logger import (
    ContextFilter,
    JSONFormatter,
    LogContext,
    clear_log_context,
    get_log_context,
    get_logging_health,
    set_log_context,
)


def make_record(name="questline.modules.habits.service", msg="Habit completed", **extra):
    record = logging.LogRecord(name, logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def clean_context():
    clear_log_context()
    yield
    clear_log_context()


class TestLogContext:
    def test_scoped_fields_are_restored(self):
        with LogContext(user_id=7, operation="complete_habit") as ctx:
            assert get_log_context()["user_id"] == "7"
            assert get_log_context()["operation"] == "complete_habit"
            assert len(ctx.context["correlation_id"]) == 8
        assert get_log_context() == {}

    def test_nested_block_inherits_correlation_id(self):
        with LogContext(user_id=1, correlation_id="abc12345"):
            with LogContext(challenge_id=9) as inner:
                assert inner.context["correlation_id"] == "abc12345"
                assert inner.context["user_id"] == "1"
                assert inner.context["challenge_id"] == "9"

    async def test_async_usage(self):
        async with LogContext(operation="finalize_due"):
            assert get_log_context()["operation"] == "finalize_due"
        assert "operation" not in get_log_context()

    def test_set_log_context_merges(self):
        set_log_context(user_id=3)
        set_log_context(operation="uncomplete_task", attempt=2)
        assert get_log_context() == {"user_id": "3", "operation": "uncomplete_task", "attempt": 2}


class TestContextFilter:
    def test_fills_fields_from_context(self):
        record = make_record()
        with LogContext(user_id=5, operation="join"):
            assert ContextFilter().filter(record) is True

        assert record.user_id == "5"
        assert record.operation == "join"
        assert record.challenge_id is None
        assert record.component == "service"

    def test_explicit_extra_wins(self):
        record = make_record(user_id="99", component="scheduler")
        with LogContext(user_id=5):
            ContextFilter().filter(record)

        assert record.user_id == "99"
        assert record.component == "scheduler"


class TestJSONFormatter:
    def test_context_and_extra_fields(self):
        record = make_record(user_id="5", challenge_id=None, xp_awarded=25)

        payload = json.loads(JSONFormatter().format(record))

        assert payload["level"] == "INFO"
        assert payload["message"] == "Habit completed"
        assert payload["user_id"] == "5"
        assert "challenge_id" not in payload
        assert payload["extra"] == {"xp_awarded": 25}

    def test_exception_is_rendered(self):
        try:
            raise ValueError("bad streak")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        payload = json.loads(JSONFormatter().format(record))
        assert "ValueError: bad streak" in payload["exception"]


def test_health_reports_initialized_queue():
    health = get_logging_health()
    assert health.initialized is True
    assert health.queue_capacity > 0
    assert health.dropped >= 0
