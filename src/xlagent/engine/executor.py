"""Executor: applies validated operations to the real Grid Model.

Only operations the validator accepted are applied, strictly in batch order.
Each application is atomic: the addressed sheet is restored if anything goes
wrong part-way. Earlier successes are never rolled back; a failure is
recorded and execution moves on to the next accepted operation.
"""

from __future__ import annotations

from xlagent.contracts.cells import CellRange, cell_a1
from xlagent.contracts.common import ExecutionError, GridError
from xlagent.contracts.operations import (
    ApplyFormat,
    CreateSheet,
    DeleteColumn,
    DeleteRow,
    InsertColumn,
    InsertRow,
    Operation,
    SetCell,
    SetRange,
)
from xlagent.contracts.reports import (
    ChangeEntry,
    ChangeReport,
    ExecutionFailure,
    SheetSnapshot,
    ValidationReport,
    ValidationResult,
)
from xlagent.engine.grid import GridModel, Sheet


def apply_operation(grid: GridModel, op: Operation) -> None:
    """Apply one operation to a grid. Shared by the validator's simulation."""
    if isinstance(op, SetCell):
        grid.set_cell(op.sheet, op.row, op.col, op.value)
    elif isinstance(op, SetRange):
        grid.set_range(op.sheet, op.range, op.values)
    elif isinstance(op, InsertRow):
        grid.insert_row(op.sheet, op.index, op.count)
    elif isinstance(op, InsertColumn):
        grid.insert_column(op.sheet, op.index, op.count)
    elif isinstance(op, DeleteRow):
        grid.delete_row(op.sheet, op.index, op.count, force=op.force)
    elif isinstance(op, DeleteColumn):
        grid.delete_column(op.sheet, op.index, op.count, force=op.force)
    elif isinstance(op, ApplyFormat):
        grid.apply_format(op.sheet, op.range, op.style)
    elif isinstance(op, CreateSheet):
        grid.create_sheet(op.sheet, op.rows, op.columns)
    else:
        raise ExecutionError(f"Unsupported operation: {type(op).__name__}")


def footprint_range(op: Operation) -> CellRange | None:
    """Cell range addressed by a value or format operation."""
    fp = op.footprint()
    if fp.rows is None or fp.cols is None:
        return None
    return CellRange(first_row=fp.rows[0], first_col=fp.cols[0], last_row=fp.rows[1], last_col=fp.cols[1])


def _shape_only(sheet: Sheet) -> SheetSnapshot:
    return SheetSnapshot(sheet=sheet.name, row_count=sheet.row_count, column_count=sheet.column_count)


def _deleted_cells(sheet: Sheet, op: DeleteRow | DeleteColumn) -> SheetSnapshot:
    last = op.index + op.count - 1
    by_row = isinstance(op, DeleteRow)
    cells = {
        cell_a1(r, c): cell
        for r, c, cell in sheet.iter_cells()
        if op.index <= (r if by_row else c) <= last
    }
    return SheetSnapshot(
        sheet=sheet.name, row_count=sheet.row_count, column_count=sheet.column_count, cells=cells,
    )


def _capture_before(sheet: Sheet, op: Operation) -> SheetSnapshot:
    if isinstance(op, (DeleteRow, DeleteColumn)):
        return _deleted_cells(sheet, op)
    rng = footprint_range(op)
    if rng is None:
        return _shape_only(sheet)
    return sheet.snapshot(rng)


def _capture_after(sheet: Sheet, op: Operation) -> SheetSnapshot:
    rng = footprint_range(op)
    if rng is None:
        return _shape_only(sheet)
    return sheet.snapshot(rng)


def _apply_atomic(grid: GridModel, result: ValidationResult) -> ChangeEntry:
    op = result.operation
    if isinstance(op, CreateSheet):
        if op.sheet in grid:
            raise ExecutionError(f"Sheet already exists: {op.sheet}")
        try:
            created = grid.create_sheet(op.sheet, op.rows, op.columns)
        except BaseException:
            if op.sheet in grid:
                grid.remove_sheet(op.sheet)
            raise
        return ChangeEntry(
            index=result.index, operation=op, line=op.to_line(),
            before=None, after=_shape_only(created),
        )

    sheet = grid.find(op.sheet)
    if sheet is None:
        raise ExecutionError(f"Sheet not found: {op.sheet}")
    expected = result.expected_shape
    if expected is not None and sheet.shape != expected:
        raise ExecutionError(
            f"sheet '{sheet.name}' is {sheet.row_count}x{sheet.column_count} but validation "
            f"expected {expected.row_count}x{expected.column_count}; it changed after validation"
        )

    before = _capture_before(sheet, op)
    backup = sheet.copy()
    try:
        apply_operation(grid, op)
    except BaseException:
        grid.replace_sheet(backup)
        raise
    return ChangeEntry(
        index=result.index, operation=op, line=op.to_line(),
        before=before, after=_capture_after(grid.sheet(sheet.name), op),
    )


def execute(grid: GridModel, report: ValidationReport) -> ChangeReport:
    """Apply every accepted operation of ``report`` in order."""
    changes = ChangeReport(rejected=report.rejected)
    for result in report.accepted:
        op = result.operation
        try:
            entry = _apply_atomic(grid, result)
        except (GridError, ExecutionError, ValueError) as e:
            changes.failed.append(ExecutionFailure(
                index=result.index, operation=op, line=op.to_line(), message=str(e),
            ))
            continue
        changes.applied.append(entry)
    return changes
