"""Tests for the session controller state machine."""

from __future__ import annotations

import asyncio
import io
import json

from conftest import FakeClient

from xlagent.contracts.cells import CellValue
from xlagent.contracts.common import ClientError
from xlagent.contracts.reports import SessionState
from xlagent.engine.grid import GridModel
from xlagent.engine.session import SessionController
from xlagent.observe.events import EventEmitter, TraceRecorder

FULL_HISTORY = [
    SessionState.RECEIVED,
    SessionState.MODEL_QUERIED,
    SessionState.PARSED,
    SessionState.VALIDATED,
    SessionState.EXECUTED,
    SessionState.REPORTED,
]


def test_instruction_runs_every_state(grid: GridModel):
    client = FakeClient("SetCell Sheet1 A1 = Item")
    session = SessionController(grid, client)
    result = asyncio.run(session.handle("rename the first header"))

    assert result.ok
    assert result.history == FULL_HISTORY
    assert len(result.applied) == 1
    assert result.model_response == "SetCell Sheet1 A1 = Item"
    assert grid.get_cell("Sheet1", 0, 0).value == CellValue.text("Item")


def test_model_sees_instruction_and_summary(grid: GridModel):
    client = FakeClient("SetCell Sheet1 A1 = x")
    asyncio.run(SessionController(grid, client).handle("do it"))
    instruction, summary = client.calls[0]
    assert instruction == "do it"
    assert "Headers: Name, Qty, Price" in summary


def test_partial_application_with_out_of_bounds(grid: GridModel):
    client = FakeClient("SetCell Sheet1 A1 = ok\nSetCell Sheet1 Z999 = far")
    result = asyncio.run(SessionController(grid, client).handle("write two cells"))

    assert result.ok
    assert len(result.applied) == 1
    assert len(result.rejected) == 1
    problems = result.problems()
    assert problems[0].stage == "validate"
    assert problems[0].reason == "OutOfBounds"
    assert "Z999" in problems[0].line


def test_prose_line_is_reported_and_rest_applies(grid: GridModel):
    client = FakeClient("Make it pretty please\nApplyFormat Sheet1 A1:C1 bold=true")
    result = asyncio.run(SessionController(grid, client).handle("make it pretty"))

    assert result.ok
    assert len(result.applied) == 1
    assert result.problems()[0].reason == "ParseError"
    assert grid.get_cell("Sheet1", 0, 2).format.bold is True


def test_no_operations_fails(grid: GridModel):
    client = FakeClient("I cannot do that with these operations.")
    result = asyncio.run(SessionController(grid, client).handle("draw a chart"))

    assert not result.ok
    assert result.state == SessionState.FAILED
    assert result.error.code == "ERR_NO_OPERATIONS"
    assert len(result.parse_errors) == 1


def test_client_error_fails_without_changes(grid: GridModel):
    client = FakeClient(error=ClientError("timeout"))
    before = grid.sheet("Sheet1").copy()
    result = asyncio.run(SessionController(grid, client).handle("anything"))

    assert result.history == [SessionState.RECEIVED, SessionState.FAILED]
    assert result.error.code == "ERR_MODEL_CLIENT"
    assert grid.sheet("Sheet1").same_content(before)


def test_missing_client(grid: GridModel):
    result = asyncio.run(SessionController(grid).handle("anything"))
    assert result.error.code == "ERR_MODEL_UNAVAILABLE"


def test_apply_text_skips_the_model(grid: GridModel):
    result = asyncio.run(SessionController(grid).apply_text("InsertRow Sheet1 3"))
    assert result.ok
    assert SessionState.MODEL_QUERIED not in result.history
    assert grid.sheet("Sheet1").row_count == 4


def test_dry_run_leaves_grid_unchanged(grid: GridModel):
    session = SessionController(grid, FakeClient("SetCell Sheet1 A1 = changed"))
    result = asyncio.run(session.handle("change it", dry_run=True))

    assert result.ok
    assert result.applied[0].after.cells["A1"].value == CellValue.text("changed")
    assert grid.get_cell("Sheet1", 0, 0).value == CellValue.text("Name")


def test_instructions_are_serialized(grid: GridModel):
    session = SessionController(grid)

    async def both():
        return await asyncio.gather(
            session.apply_text("InsertRow Sheet1 3\nSetCell Sheet1 A4 = one"),
            session.apply_text("InsertRow Sheet1 4\nSetCell Sheet1 A5 = two"),
        )

    first, second = asyncio.run(both())
    assert first.ok and second.ok
    assert grid.sheet("Sheet1").row_count == 5
    assert grid.get_cell("Sheet1", 4, 0).value == CellValue.text("two")


def test_events_and_trace(grid: GridModel):
    stream = io.StringIO()
    trace = TraceRecorder()
    session = SessionController(grid, emitter=EventEmitter(enabled=True, stream=stream), trace=trace)
    asyncio.run(session.apply_text("SetCell Sheet1 A1 = x"))

    events = [json.loads(line)["event"] for line in stream.getvalue().splitlines()]
    assert events == [
        "session.received",
        "session.parsed",
        "session.validated",
        "session.executed",
        "session.reported",
    ]
    assert [e["state"] for e in trace.entries][-1] == "reported"
