"""Tests for applying validated operations."""

from __future__ import annotations

from xlagent.contracts.cells import CellValue
from xlagent.contracts.reports import SheetShape
from xlagent.engine.executor import execute
from xlagent.engine.grid import GridModel
from xlagent.engine.parser import parse_operations
from xlagent.validation.validators import validate_operations


def _run(grid: GridModel, text: str):
    report = validate_operations(grid, parse_operations(text).operations)
    return report, execute(grid, report)


def test_applies_accepted_and_skips_rejected(grid: GridModel):
    _, changes = _run(grid, "SetCell Sheet1 A1 = Item\nSetCell Sheet1 Z999 = nope")
    assert changes.applied_count == 1
    assert len(changes.rejected) == 1
    assert grid.get_cell("Sheet1", 0, 0).value == CellValue.text("Item")


def test_insert_then_write(grid: GridModel):
    _, changes = _run(grid, "InsertRow Sheet1 0\nSetCell Sheet1 A1 = hello")
    assert changes.applied_count == 2
    sheet = grid.sheet("Sheet1")
    assert sheet.row_count == 4
    assert sheet.get_cell(0, 0).value == CellValue.text("hello")
    assert sheet.get_cell(1, 0).value == CellValue.text("Name")


def test_change_entries_carry_snapshots(grid: GridModel):
    _, changes = _run(grid, "SetCell Sheet1 B2 = 10\nDeleteRow Sheet1 2 force\nCreateSheet Notes")
    set_entry, delete_entry, create_entry = changes.applied

    assert set_entry.before.cells["B2"].value == CellValue.number(3)
    assert set_entry.after.cells["B2"].value == CellValue.number(10)
    assert set_entry.line == "SetCell Sheet1 B2 = 10"

    assert delete_entry.before.row_count == 3
    assert set(delete_entry.before.cells) == {"A3", "B3", "C3"}
    assert delete_entry.after.row_count == 2

    assert create_entry.before is None
    assert create_entry.after.sheet == "Notes"


def test_shape_drift_fails_without_rollback(grid: GridModel):
    report = validate_operations(grid, parse_operations("SetCell Sheet1 A1 = x\nSetCell Sheet1 A2 = y").operations)
    # Simulate another writer growing the sheet between validation and execution.
    report.results[1].expected_shape = SheetShape(row_count=99, column_count=3)

    changes = execute(grid, report)
    assert changes.applied_count == 1
    assert len(changes.failed) == 1
    assert "changed after validation" in changes.failed[0].message
    assert grid.get_cell("Sheet1", 0, 0).value == CellValue.text("x")
    assert grid.get_cell("Sheet1", 1, 0).value == CellValue.text("Apple")


def test_create_sheet_that_appeared_since_validation(grid: GridModel):
    report = validate_operations(grid, parse_operations("CreateSheet Late").operations)
    grid.create_sheet("Late")
    changes = execute(grid, report)
    assert changes.applied_count == 0
    assert "already exists" in changes.failed[0].message


def test_failed_apply_leaves_sheet_untouched(grid: GridModel):
    # Force an accepted-but-unapplicable operation past the validator.
    report = validate_operations(grid, parse_operations("DeleteRow Sheet1 2 force").operations)
    grid.set_cell("Sheet1", 2, 0, CellValue.text("still here"))
    report.results[0].operation = report.results[0].operation.model_copy(update={"force": False})

    before = grid.sheet("Sheet1").copy()
    changes = execute(grid, report)
    assert changes.applied_count == 0
    assert "non-empty" in changes.failed[0].message
    assert grid.sheet("Sheet1").same_content(before)
