"""Tests for the JSON log formatter and the thread-scoped adapter."""

import json
import logging

from forge_ledger.utils.logging_config import (
    JSONFormatter,
    ThreadAdapter,
    get_logger,
    split_event,
)


def make_record(msg, *args, **extra):
    record = logging.LogRecord(
        name="forge_ledger.test", level=logging.INFO, pathname=__file__,
        lineno=1, msg=msg, args=args, exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSplitEvent:

    def test_key_value_segments(self):
        event, fields = split_event("turn_processed | kind=snapshot | changes=3")
        assert event == "turn_processed"
        assert fields == {"kind": "snapshot", "changes": "3"}

    def test_free_text_segment_kept_as_detail(self):
        event, fields = split_event("turn_warning | dropped perk XY: name too short")
        assert event == "turn_warning"
        assert fields == {"detail": "dropped perk XY: name too short"}

    def test_plain_message_has_no_event(self):
        assert split_event("startup complete") == (None, {})


class TestJSONFormatter:

    def test_structured_entry(self):
        record = make_record("threshold_crossed | multiples=%s", [1, 2], thread_id="t1", turn_id=7)
        entry = json.loads(JSONFormatter().format(record))
        assert entry["event"] == "threshold_crossed"
        assert entry["fields"] == {"multiples": "[1, 2]"}
        assert entry["message"] == "threshold_crossed | multiples=[1, 2]"
        assert entry["thread_id"] == "t1"
        assert entry["turn_id"] == 7
        assert entry["level"] == "INFO"

    def test_unset_context_is_omitted(self):
        entry = json.loads(JSONFormatter().format(make_record("startup complete")))
        assert "event" not in entry
        assert "thread_id" not in entry


class TestThreadAdapter:

    def test_bind_extends_context(self):
        adapter = ThreadAdapter(logging.getLogger("forge_ledger.test"), "t1")
        bound = adapter.bind(turn_id=4)
        assert bound.extra == {"thread_id": "t1", "turn_id": 4}
        assert adapter.extra == {"thread_id": "t1"}

    def test_explicit_extra_wins(self):
        adapter = ThreadAdapter(logging.getLogger("forge_ledger.test"), "t1", turn_id=4)
        _, kwargs = adapter.process("msg", {"extra": {"turn_id": 9}})
        assert kwargs["extra"] == {"turn_id": 9, "thread_id": "t1"}


class TestGetLogger:

    def test_namespacing(self):
        assert get_logger("service").name == "forge_ledger.service"
        assert get_logger("forge_ledger.utils.economy").name == "forge_ledger.utils.economy"
        assert get_logger().name == "forge_ledger"
