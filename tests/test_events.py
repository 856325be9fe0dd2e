"""Tests for event emission and traces."""

from __future__ import annotations

import io
import json
from pathlib import Path

from xlagent.observe.events import EventEmitter, Timer, TraceRecorder


def test_disabled_emitter_writes_nothing():
    stream = io.StringIO()
    EventEmitter(stream=stream).emit("session.received")
    assert stream.getvalue() == ""


def test_bound_fields_are_added():
    stream = io.StringIO()
    base = EventEmitter(enabled=True, stream=stream)
    base.bind(command="ops").bind(file="book.xlsx").emit("command.start", {"n": 1})

    event = json.loads(stream.getvalue())
    assert event["event"] == "command.start"
    assert event["command"] == "ops"
    assert event["file"] == "book.xlsx"
    assert event["data"] == {"n": 1}
    assert base.fields == {}


def test_trace_entries_are_numbered(tmp_path: Path):
    trace = TraceRecorder()
    trace.record("session", {"state": "received"})
    trace.record("session", {"state": "parsed"})
    path = trace.save(tmp_path / "trace.json")

    saved = json.loads(Path(path).read_text())
    assert [e["step"] for e in saved["entries"]] == [1, 2]
    assert saved["entries"][1]["state"] == "parsed"


def test_timer_measures():
    with Timer() as t:
        pass
    assert t.elapsed_ms >= 0
