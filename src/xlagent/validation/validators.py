"""Validator: semantic pre-flight checks against a simulated grid.

Operations are checked in batch order against a private copy of the grid.
Each accepted operation is applied to that copy, so a later operation is
judged against the state the earlier ones leave behind (insert a row, then
write into it). Rejections are per operation; a rejected structural
operation taints the span of its sheet that it would have shifted, and
later operations reaching into that span are rejected as DependencyFailed.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any, NamedTuple

from xlagent.contracts.cells import CellValue, cell_a1
from xlagent.contracts.common import (
    GridError,
    NotEmptyError,
    SheetExistsError,
)
from xlagent.contracts.operations import (
    MAX_COLUMNS,
    MAX_ROWS,
    ApplyFormat,
    CreateSheet,
    DeleteColumn,
    DeleteRow,
    InsertColumn,
    InsertRow,
    SetCell,
    SetRange,
    is_vocabulary_operation,
)
from xlagent.contracts.reports import RejectReason, ValidationReport, ValidationResult
from xlagent.engine.executor import apply_operation, footprint_range
from xlagent.engine.grid import GridModel, Sheet


class Rejection(Exception):
    """Internal signal carrying a rejection reason out of a check."""

    def __init__(self, reason: RejectReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


class Taint(NamedTuple):
    sheet: str  # casefolded name
    axis: str  # "row", "col" or "sheet"
    start: int


def _refs(positions: list[tuple[int, int]], limit: int = 5) -> str:
    refs = ", ".join(cell_a1(r, c) for r, c in positions[:limit])
    if len(positions) > limit:
        refs += f" and {len(positions) - limit} more"
    return refs


def _writes(op: SetCell | SetRange) -> Iterator[tuple[int, int, CellValue]]:
    if isinstance(op, SetCell):
        yield op.row, op.col, op.value
        return
    for r_off, row in enumerate(op.values):
        for c_off, value in enumerate(row):
            yield op.range.first_row + r_off, op.range.first_col + c_off, value


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------

def _depends_on(op: Any, taints: list[Taint]) -> Taint | None:
    fp = op.footprint()
    folded = fp.sheet.casefold()
    for taint in taints:
        if taint.sheet != folded:
            continue
        if taint.axis == "sheet":
            return taint
        span = fp.rows if taint.axis == "row" else fp.cols
        if span is not None and span[1] >= taint.start:
            return taint
    return None


def _check_bounds(sheet: Sheet, op: Any) -> None:
    where = f"sheet '{sheet.name}' ({sheet.row_count} rows x {sheet.column_count} columns)"
    if isinstance(op, (SetCell, SetRange, ApplyFormat)):
        rng = footprint_range(op)
        if not sheet.in_bounds(rng):
            raise Rejection(RejectReason.OUT_OF_BOUNDS, f"{rng.a1} is outside {where}")
    elif isinstance(op, InsertRow):
        if op.index > sheet.row_count:
            raise Rejection(
                RejectReason.OUT_OF_BOUNDS,
                f"row insertion point {op.index} is past the end of {where}; "
                f"the last valid insertion point is {sheet.row_count}",
            )
        if sheet.row_count + op.count > MAX_ROWS:
            raise Rejection(RejectReason.OUT_OF_BOUNDS, f"inserting {op.count} row(s) exceeds {MAX_ROWS} rows")
    elif isinstance(op, InsertColumn):
        if op.index > sheet.column_count:
            raise Rejection(
                RejectReason.OUT_OF_BOUNDS,
                f"column insertion point {op.index} is past the end of {where}; "
                f"the last valid insertion point is {sheet.column_count}",
            )
        if sheet.column_count + op.count > MAX_COLUMNS:
            raise Rejection(
                RejectReason.OUT_OF_BOUNDS, f"inserting {op.count} column(s) exceeds {MAX_COLUMNS} columns"
            )
    elif isinstance(op, DeleteRow):
        if op.index + op.count > sheet.row_count:
            raise Rejection(
                RejectReason.OUT_OF_BOUNDS,
                f"rows {op.index}..{op.index + op.count - 1} are outside {where}",
            )
    elif isinstance(op, DeleteColumn):
        if op.index + op.count > sheet.column_count:
            raise Rejection(
                RejectReason.OUT_OF_BOUNDS,
                f"columns {op.index}..{op.index + op.count - 1} are outside {where}",
            )


def _delete_span(op: DeleteRow | DeleteColumn) -> dict[str, tuple[int, int]]:
    span = (op.index, op.index + op.count - 1)
    return {"rows": span} if isinstance(op, DeleteRow) else {"cols": span}


def _check_locks(sheet: Sheet, op: Any) -> None:
    if isinstance(op, (SetCell, SetRange, ApplyFormat)):
        locked = sheet.locked_in(footprint_range(op))
        if locked:
            kind = "format" if isinstance(op, ApplyFormat) else "write"
            raise Rejection(
                RejectReason.FORMAT_CONFLICT,
                f"cannot {kind} locked cell(s) {_refs(locked)} in '{sheet.name}'",
            )
        return
    if sheet.protected:
        raise Rejection(
            RejectReason.FORMAT_CONFLICT,
            f"sheet '{sheet.name}' is protected; rows and columns cannot be inserted or deleted",
        )
    if isinstance(op, (DeleteRow, DeleteColumn)):
        locked = sheet.locked_positions(**_delete_span(op))
        if locked:
            raise Rejection(
                RejectReason.FORMAT_CONFLICT,
                f"deleting would discard locked cell(s) {_refs(locked)} in '{sheet.name}'",
            )


def _check_types(sheet: Sheet, op: Any) -> None:
    if not sheet.column_types or not isinstance(op, (SetCell, SetRange)):
        return
    for row, col, value in _writes(op):
        declared = sheet.column_types.get(col)
        if declared is None or row < sheet.header_rows:
            continue
        if value.kind not in (declared, "empty", "formula"):
            raise Rejection(
                RejectReason.TYPE_MISMATCH,
                f"{cell_a1(row, col)} in '{sheet.name}' accepts {declared} values, got {value.kind} "
                f"{value.display()!r}",
            )


def _check_not_empty(sheet: Sheet, op: Any) -> None:
    if not isinstance(op, (DeleteRow, DeleteColumn)) or op.force:
        return
    occupied = sheet.non_empty_positions(**_delete_span(op))
    if occupied:
        raise Rejection(
            RejectReason.NOT_EMPTY,
            f"deleting would discard {len(occupied)} non-empty cell(s) ({_refs(occupied)}) "
            f"in '{sheet.name}'; add force to override",
        )


def _reason_for(exc: GridError) -> RejectReason:
    if isinstance(exc, NotEmptyError):
        return RejectReason.NOT_EMPTY
    if isinstance(exc, SheetExistsError):
        return RejectReason.SHEET_EXISTS
    return RejectReason.OUT_OF_BOUNDS


def _taint_for(op: Any) -> Taint | None:
    if isinstance(op, CreateSheet):
        return Taint(op.sheet.casefold(), "sheet", 0)
    if isinstance(op, (InsertRow, DeleteRow)):
        return Taint(op.sheet.casefold(), "row", op.index)
    if isinstance(op, (InsertColumn, DeleteColumn)):
        return Taint(op.sheet.casefold(), "col", op.index)
    return None


def _shift_taints(op: Any, taints: list[Taint]) -> None:
    """Move taints on the axis an accepted insert or delete shifts.

    An accepted structural operation always lies wholly before the taints on
    its axis, so every such taint moves by the operation's count.
    """
    if isinstance(op, (InsertRow, DeleteRow)):
        axis = "row"
    elif isinstance(op, (InsertColumn, DeleteColumn)):
        axis = "col"
    else:
        return
    delta = op.count if isinstance(op, (InsertRow, InsertColumn)) else -op.count
    folded = op.sheet.casefold()
    for i, taint in enumerate(taints):
        if taint.sheet == folded and taint.axis == axis and taint.start > op.index:
            taints[i] = taint._replace(start=taint.start + delta)


# ---------------------------------------------------------------------------
# Batch validation
# ---------------------------------------------------------------------------

def _validate_one(shadow: GridModel, index: int, op: Any, taints: list[Taint]) -> ValidationResult:
    if not is_vocabulary_operation(op):
        raise Rejection(
            RejectReason.VOCABULARY_VIOLATION, f"{type(op).__name__} is not a supported operation"
        )

    taint = _depends_on(op, taints)
    if taint is not None:
        what = "the sheet" if taint.axis == "sheet" else f"{taint.axis} {taint.start} onward"
        raise Rejection(
            RejectReason.DEPENDENCY_FAILED,
            f"depends on {what} of '{op.sheet}', which an earlier rejected operation would have changed",
        )

    if isinstance(op, CreateSheet):
        if op.sheet in shadow:
            raise Rejection(RejectReason.SHEET_EXISTS, f"Sheet already exists: {op.sheet}")
        expected = None
    else:
        sheet = shadow.find(op.sheet)
        if sheet is None:
            raise Rejection(RejectReason.OUT_OF_BOUNDS, f"Sheet not found: {op.sheet}")
        _check_bounds(sheet, op)
        _check_locks(sheet, op)
        _check_types(sheet, op)
        _check_not_empty(sheet, op)
        expected = sheet.shape

    try:
        apply_operation(shadow, op)
    except GridError as e:
        raise Rejection(_reason_for(e), str(e)) from e
    return ValidationResult(index=index, operation=op, accepted=True, expected_shape=expected)


def validate_operations(grid: GridModel, operations: Iterable[Any]) -> ValidationReport:
    """Validate a batch in order. ``grid`` itself is never modified."""
    shadow = grid.copy()
    taints: list[Taint] = []
    report = ValidationReport()
    for index, op in enumerate(operations):
        try:
            result = _validate_one(shadow, index, op, taints)
        except Rejection as r:
            result = ValidationResult(
                index=index, operation=op, accepted=False, reason=r.reason, message=r.message,
            )
            taint = _taint_for(op) if is_vocabulary_operation(op) else None
            if taint is not None:
                taints.append(taint)
        else:
            _shift_taints(op, taints)
        report.results.append(result)
    return report
