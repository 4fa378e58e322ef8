"""Tests for structured logging."""

import asyncio
import json
import logging

import pytest

from agentbus.logging_config import (
    ContextFilter,
    JSONFormatter,
    bind_context,
    get_logger,
    setup_logging,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="agentbus.dispatch",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg="Trigger %s fired",
        args=("ISSUE_OPENED",),
        exc_info=None,
    )
    record.__dict__.update(extra)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)


class TestJSONFormatter:
    def test_includes_context(self):
        record = make_record(context={"cluster_id": "c1", "event_id": 3})

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "agentbus.dispatch"
        assert data["message"] == "Trigger ISSUE_OPENED fired"
        assert data["where"].endswith(":10")
        assert data["context"] == {"cluster_id": "c1", "event_id": 3}

    def test_timestamp_is_record_time(self):
        record = make_record()
        record.created = 0.0

        data = json.loads(JSONFormatter().format(record))

        assert data["timestamp"] == "1970-01-01T00:00:00+00:00"
        assert "context" not in data


class TestBindContext:
    def test_bound_fields_merge_with_explicit_context(self):
        record = make_record(context={"event_id": 7, "agent_id": "explicit"})

        with bind_context(cluster_id="c1", agent_id="bound"):
            ContextFilter().filter(record)

        assert record.context == {"cluster_id": "c1", "agent_id": "explicit", "event_id": 7}

    def test_nothing_bound_leaves_record_alone(self):
        record = make_record()

        assert ContextFilter().filter(record) is True
        assert not hasattr(record, "context")

    async def test_tasks_inherit_bound_fields(self):
        seen = []

        async def child():
            record = make_record()
            ContextFilter().filter(record)
            seen.append(record.context)

        with bind_context(cluster_id="c1"):
            await asyncio.create_task(child())

        with bind_context(agent_id="a"):
            pass
        record = make_record()
        ContextFilter().filter(record)

        assert seen == [{"cluster_id": "c1"}]
        assert not hasattr(record, "context")


class TestSetupLogging:
    def test_writes_json_file_with_bound_context(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "logs" / "app.log"

        setup_logging("DEBUG", str(log_file), console=False)
        with bind_context(cluster_id="c9"):
            get_logger("agentbus.test").info("hello %s", "world")
        for handler in restore_root_logger.handlers:
            handler.flush()

        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        data = json.loads(line)
        assert data["message"] == "hello world"
        assert data["context"] == {"cluster_id": "c9"}

    def test_quiets_chatty_libraries(self, tmp_path, restore_root_logger):
        setup_logging("DEBUG", str(tmp_path / "app.log"), console=False)

        assert logging.getLogger("aiosqlite").level == logging.WARNING
        assert restore_root_logger.level == logging.DEBUG
