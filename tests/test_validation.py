"""Tests for batch validation against a simulated grid."""

from __future__ import annotations

from xlagent.contracts.cells import CellFormat, CellRange, CellValue, StylePatch
from xlagent.contracts.operations import (
    ApplyFormat,
    CreateSheet,
    DeleteRow,
    InsertColumn,
    InsertRow,
    SetCell,
    SetRange,
)
from xlagent.contracts.reports import RejectReason
from xlagent.engine.grid import GridModel, Sheet
from xlagent.engine.parser import parse_operations
from xlagent.validation.validators import validate_operations


def _validate(grid: GridModel, text: str):
    return validate_operations(grid, parse_operations(text).operations)


def test_valid_batch_is_accepted(grid: GridModel):
    report = _validate(grid, "SetCell Sheet1 A1 = Item\nApplyFormat Sheet1 A1:C1 bold=true")
    assert report.valid
    assert [r.index for r in report.accepted] == [0, 1]
    assert report.accepted[0].expected_shape.row_count == 3


def test_validation_never_touches_the_grid(grid: GridModel):
    before = grid.sheet("Sheet1").copy()
    _validate(grid, "InsertRow Sheet1 0\nSetCell Sheet1 A1 = new\nCreateSheet Extra")
    assert grid.sheet("Sheet1").same_content(before)
    assert "Extra" not in grid


def test_out_of_bounds_cell_is_rejected(grid: GridModel):
    report = _validate(grid, "SetCell Sheet1 A1 = ok\nSetCell Sheet1 Z999 = no")
    assert [r.accepted for r in report.results] == [True, False]
    assert report.results[1].reason == RejectReason.OUT_OF_BOUNDS
    assert "Z999" in report.results[1].message


def test_unknown_sheet_is_out_of_bounds(grid: GridModel):
    report = _validate(grid, "SetCell Missing A1 = 1")
    assert report.results[0].reason == RejectReason.OUT_OF_BOUNDS


def test_insert_then_write_sees_new_bounds(grid: GridModel):
    report = _validate(grid, "InsertRow Sheet1 3\nSetCell Sheet1 A4 = Plum")
    assert report.valid
    # The write was validated against the grown sheet.
    assert report.results[1].expected_shape.row_count == 4


def test_insert_past_end_is_rejected(grid: GridModel):
    report = _validate(grid, "InsertRow Sheet1 4")
    assert report.results[0].reason == RejectReason.OUT_OF_BOUNDS
    assert "last valid insertion point is 3" in report.results[0].message


def test_delete_non_empty_without_force(grid: GridModel):
    report = _validate(grid, "DeleteRow Sheet1 1")
    assert report.results[0].reason == RejectReason.NOT_EMPTY
    assert _validate(grid, "DeleteRow Sheet1 1 force").valid


def test_create_existing_sheet(grid: GridModel):
    report = _validate(grid, "CreateSheet sheet1")
    assert report.results[0].reason == RejectReason.SHEET_EXISTS


def test_create_then_write_new_sheet(grid: GridModel):
    report = _validate(grid, "CreateSheet Totals 2 2\nSetCell Totals B2 = 10")
    assert report.valid
    assert report.results[0].expected_shape is None


def test_locked_cells_conflict(grid: GridModel):
    grid.apply_format("Sheet1", CellRange.single(0, 0), StylePatch(locked=True))
    report = _validate(
        grid,
        "SetCell Sheet1 A1 = x\nApplyFormat Sheet1 A1:B1 bold=true\nSetCell Sheet1 B1 = y\nDeleteRow Sheet1 0 force",
    )
    reasons = [r.reason for r in report.results]
    assert reasons == [
        RejectReason.FORMAT_CONFLICT,
        RejectReason.FORMAT_CONFLICT,
        None,
        RejectReason.FORMAT_CONFLICT,
    ]


def test_protected_sheet_allows_unlocked_input_only():
    sheet = Sheet("Form", 3, 2, protected=True)
    sheet.put(1, 1, sheet.get_cell(1, 1).model_copy(update={"format": CellFormat(locked=False)}))
    grid = GridModel([sheet])
    report = _validate(grid, "SetCell Form B2 = Ada\nSetCell Form A2 = x\nInsertRow Form 3")
    assert [r.reason for r in report.results] == [
        None,
        RejectReason.FORMAT_CONFLICT,
        RejectReason.FORMAT_CONFLICT,
    ]


def test_column_types(grid: GridModel):
    sheet = grid.sheet("Sheet1")
    sheet.column_types = {1: "number"}
    sheet.header_rows = 1
    report = _validate(
        grid,
        "\n".join([
            "SetCell Sheet1 B2 = 7",
            "SetCell Sheet1 B3 = seven",
            "SetCell Sheet1 B1 = Quantity",
            "SetCell Sheet1 B3 = =B2*2",
            "SetCell Sheet1 B3 =",
        ]),
    )
    assert [r.reason for r in report.results] == [None, RejectReason.TYPE_MISMATCH, None, None, None]
    assert "accepts number values, got text" in report.results[1].message


def test_set_range_type_mismatch(grid: GridModel):
    grid.sheet("Sheet1").column_types = {1: "number"}
    report = _validate(grid, "SetRange Sheet1 A2:B2 = Kiwi, lots")
    assert report.results[0].reason == RejectReason.TYPE_MISMATCH


def test_rejected_insert_taints_later_rows(grid: GridModel):
    ops = [
        InsertRow(sheet="Sheet1", index=1),
        SetCell(sheet="Sheet1", row=0, col=0, value=CellValue.text("above")),
        SetCell(sheet="Sheet1", row=2, col=0, value=CellValue.text("below")),
        ApplyFormat(
            sheet="Sheet1",
            range=CellRange(first_row=0, first_col=0, last_row=1, last_col=0),
            style=StylePatch(italic=True),
        ),
    ]
    sheet = grid.sheet("Sheet1")
    sheet.protected = True
    sheet.apply_format(CellRange(first_row=0, first_col=0, last_row=2, last_col=2), StylePatch(locked=False))

    report = validate_operations(grid, ops)
    assert [r.reason for r in report.results] == [
        RejectReason.FORMAT_CONFLICT,
        None,
        RejectReason.DEPENDENCY_FAILED,
        RejectReason.DEPENDENCY_FAILED,
    ]


def test_rejected_column_insert_taints_columns(grid: GridModel):
    ops = [
        InsertColumn(sheet="Sheet1", index=9),
        SetCell(sheet="Sheet1", row=0, col=0, value=CellValue.text("ok")),
        SetRange(
            sheet="Sheet1",
            range=CellRange(first_row=0, first_col=1, last_row=0, last_col=2),
            values=((CellValue.number(1), CellValue.number(2)),),
        ),
    ]
    report = validate_operations(grid, ops)
    assert report.results[0].reason == RejectReason.OUT_OF_BOUNDS
    assert report.results[1].accepted
    # Columns 1..2 lie before the tainted column 9.
    assert report.results[2].accepted


def test_rejected_create_sheet_taints_that_sheet():
    grid = GridModel([Sheet("Data", 1, 1)])
    ops = [
        CreateSheet(sheet="Data"),
        SetCell(sheet="Data", row=0, col=0, value=CellValue.number(1)),
    ]
    report = validate_operations(grid, ops)
    assert report.results[0].reason == RejectReason.SHEET_EXISTS
    assert report.results[1].reason == RejectReason.DEPENDENCY_FAILED


def test_taint_is_per_sheet():
    grid = GridModel([Sheet("A", 2, 2), Sheet("B", 2, 2)])
    ops = [
        DeleteRow(sheet="A", index=5),
        SetCell(sheet="B", row=1, col=1, value=CellValue.number(1)),
    ]
    report = validate_operations(grid, ops)
    assert report.results[1].accepted


def test_non_vocabulary_operation_is_rejected(grid: GridModel):
    report = validate_operations(grid, [{"action": "delete_workbook"}])
    assert report.results[0].reason == RejectReason.VOCABULARY_VIOLATION


def _column_with_value_in_row_4() -> GridModel:
    sheet = Sheet("Sheet1", 5, 1)
    sheet.set_cell(3, 0, CellValue.text("keep"))
    return GridModel([sheet])


def test_taint_follows_an_earlier_delete():
    report = _validate(
        _column_with_value_in_row_4(),
        "DeleteRow Sheet1 3\nDeleteRow Sheet1 0 force\nSetCell Sheet1 A3 = overwrite",
    )
    assert [r.reason for r in report.results] == [
        RejectReason.NOT_EMPTY,
        None,
        RejectReason.DEPENDENCY_FAILED,
    ]


def test_taint_follows_an_earlier_insert_and_chains():
    report = _validate(
        _column_with_value_in_row_4(),
        "DeleteRow Sheet1 3\n"
        "InsertRow Sheet1 4\n"
        "InsertRow Sheet1 0\n"
        "SetCell Sheet1 A4 = independent\n"
        "SetCell Sheet1 A5 = shifted\n"
        "SetCell Sheet1 A6 = dependent",
    )
    assert [r.reason for r in report.results] == [
        RejectReason.NOT_EMPTY,
        # Depends on the rejected delete, and taints rows from 4 itself.
        RejectReason.DEPENDENCY_FAILED,
        None,
        None,
        RejectReason.DEPENDENCY_FAILED,
        RejectReason.DEPENDENCY_FAILED,
    ]
