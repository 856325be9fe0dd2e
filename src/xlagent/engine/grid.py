"""Grid Model: in-memory sheets, cells, value types and formats.

Cells are stored sparsely; a position inside the bounds with no stored cell
reads as an empty, unformatted cell. Every mutating method checks its whole
input before writing anything, so a raised error leaves the sheet untouched.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from openpyxl.utils import get_column_letter

from xlagent.contracts.cells import Cell, CellFormat, CellRange, CellValue, StylePatch, ValueKind, cell_a1
from xlagent.contracts.common import (
    NotEmptyError,
    OutOfBoundsError,
    SheetExistsError,
    SheetNotFoundError,
)
from xlagent.contracts.reports import SheetShape, SheetSnapshot


_BLANK = Cell()
_LOCKED_BLANK = Cell(format=CellFormat(locked=True))


class Sheet:
    """A bounded 2D grid of cells indexed by 0-based (row, column).

    ``column_types`` maps a column index to the only value kind it accepts
    (empty and formula values are always accepted); rows above
    ``header_rows`` are exempt from it.
    """

    def __init__(
        self,
        name: str,
        row_count: int = 0,
        column_count: int = 0,
        *,
        protected: bool = False,
    ) -> None:
        if row_count < 0 or column_count < 0:
            raise ValueError("sheet bounds must be non-negative")
        self.name = name
        self.row_count = row_count
        self.column_count = column_count
        self.protected = protected
        self.column_types: dict[int, ValueKind] = {}
        self.header_rows = 0
        self._cells: dict[tuple[int, int], Cell] = {}

    def __repr__(self) -> str:
        return f"Sheet({self.name!r}, {self.row_count}x{self.column_count})"

    @property
    def shape(self) -> SheetShape:
        return SheetShape(row_count=self.row_count, column_count=self.column_count)

    # -- bounds -----------------------------------------------------------
    def _check_cell(self, row: int, col: int) -> None:
        if not (0 <= row < self.row_count and 0 <= col < self.column_count):
            raise OutOfBoundsError(
                f"{cell_a1(max(row, 0), max(col, 0))} is outside sheet '{self.name}' "
                f"({self.row_count} rows x {self.column_count} columns)"
            )

    def _check_range(self, rng: CellRange) -> None:
        if rng.last_row >= self.row_count or rng.last_col >= self.column_count:
            raise OutOfBoundsError(
                f"{rng.a1} is outside sheet '{self.name}' "
                f"({self.row_count} rows x {self.column_count} columns)"
            )

    def in_bounds(self, rng: CellRange) -> bool:
        return rng.last_row < self.row_count and rng.last_col < self.column_count

    # -- reads ------------------------------------------------------------
    def get_cell(self, row: int, col: int) -> Cell:
        self._check_cell(row, col)
        return self._cells.get((row, col), self._blank())

    def iter_cells(self) -> Iterator[tuple[int, int, Cell]]:
        """Yield stored (non-blank) cells in row-major order."""
        for (row, col) in sorted(self._cells):
            yield row, col, self._cells[(row, col)]

    def cells_in(self, rng: CellRange) -> Iterator[tuple[int, int, Cell]]:
        for row, col in rng.positions():
            yield row, col, self._cells.get((row, col), self._blank())

    def non_empty_positions(
        self,
        *,
        rows: tuple[int, int] | None = None,
        cols: tuple[int, int] | None = None,
    ) -> list[tuple[int, int]]:
        """Positions holding a value within the given row or column span."""
        found = []
        for (row, col), cell in self._cells.items():
            if cell.is_empty:
                continue
            if rows is not None and not rows[0] <= row <= rows[1]:
                continue
            if cols is not None and not cols[0] <= col <= cols[1]:
                continue
            found.append((row, col))
        return sorted(found)

    def locked_positions(
        self,
        *,
        rows: tuple[int, int] | None = None,
        cols: tuple[int, int] | None = None,
    ) -> list[tuple[int, int]]:
        found = []
        for (row, col), cell in self._cells.items():
            if not cell.format.locked:
                continue
            if rows is not None and not rows[0] <= row <= rows[1]:
                continue
            if cols is not None and not cols[0] <= col <= cols[1]:
                continue
            found.append((row, col))
        return sorted(found)

    def row_values(self, row: int) -> list[CellValue]:
        return [self._cells.get((row, c), self._blank()).value for c in range(self.column_count)]

    def _blank(self) -> Cell:
        # Worksheet protection locks every cell that was not explicitly unlocked.
        return _LOCKED_BLANK if self.protected else _BLANK

    def is_locked(self, row: int, col: int) -> bool:
        return self._cells.get((row, col), self._blank()).format.locked

    def locked_in(self, rng: CellRange) -> list[tuple[int, int]]:
        if self.protected:
            return [(r, c) for r, c in rng.positions() if self.is_locked(r, c)]
        return self.locked_positions(rows=(rng.first_row, rng.last_row), cols=(rng.first_col, rng.last_col))

    # -- value / format writes ---------------------------------------------
    def _store(self, row: int, col: int, cell: Cell) -> None:
        if cell == self._blank():
            self._cells.pop((row, col), None)
        else:
            self._cells[(row, col)] = cell

    def put(self, row: int, col: int, cell: Cell) -> None:
        """Store a whole cell (value and format), as a workbook reader does."""
        self._check_cell(row, col)
        self._store(row, col, cell)

    def set_cell(self, row: int, col: int, value: CellValue) -> Cell:
        """Write a value, keeping the existing format. Returns the new cell."""
        old = self.get_cell(row, col)
        new = Cell(value=value, format=old.format)
        self._store(row, col, new)
        return new

    def set_range(self, rng: CellRange, values: Iterable[Iterable[CellValue]]) -> None:
        matrix = [list(row) for row in values]
        if len(matrix) != rng.row_span or any(len(r) != rng.col_span for r in matrix):
            raise ValueError(f"values do not match the shape of {rng.a1}")
        self._check_range(rng)
        for r_off, row in enumerate(matrix):
            for c_off, value in enumerate(row):
                r, c = rng.first_row + r_off, rng.first_col + c_off
                old = self._cells.get((r, c), self._blank())
                self._store(r, c, Cell(value=value, format=old.format))

    def apply_format(self, rng: CellRange, patch: StylePatch) -> None:
        """Merge a style patch into each cell of the range, keeping values."""
        self._check_range(rng)
        for row, col in rng.positions():
            old = self._cells.get((row, col), self._blank())
            self._store(row, col, Cell(value=old.value, format=old.format.merged(patch)))

    # -- structure --------------------------------------------------------
    def insert_rows(self, index: int, count: int = 1) -> None:
        if count < 1:
            raise ValueError("count must be at least 1")
        if not 0 <= index <= self.row_count:
            raise OutOfBoundsError(
                f"row insertion point {index} is outside sheet '{self.name}' (0..{self.row_count})"
            )
        self._cells = {
            ((row + count if row >= index else row), col): cell
            for (row, col), cell in self._cells.items()
        }
        self.row_count += count

    def insert_columns(self, index: int, count: int = 1) -> None:
        if count < 1:
            raise ValueError("count must be at least 1")
        if not 0 <= index <= self.column_count:
            raise OutOfBoundsError(
                f"column insertion point {index} is outside sheet '{self.name}' (0..{self.column_count})"
            )
        self._cells = {
            (row, (col + count if col >= index else col)): cell
            for (row, col), cell in self._cells.items()
        }
        self.column_types = {
            (col + count if col >= index else col): kind for col, kind in self.column_types.items()
        }
        self.column_count += count

    def delete_rows(self, index: int, count: int = 1, *, force: bool = False) -> None:
        if count < 1:
            raise ValueError("count must be at least 1")
        if index < 0 or index + count > self.row_count:
            raise OutOfBoundsError(
                f"rows {index}..{index + count - 1} are outside sheet '{self.name}' ({self.row_count} rows)"
            )
        last = index + count - 1
        if not force:
            occupied = self.non_empty_positions(rows=(index, last))
            if occupied:
                raise NotEmptyError(_not_empty_message(self.name, occupied))
        self._cells = {
            ((row - count if row > last else row), col): cell
            for (row, col), cell in self._cells.items()
            if not index <= row <= last
        }
        self.row_count -= count

    def delete_columns(self, index: int, count: int = 1, *, force: bool = False) -> None:
        if count < 1:
            raise ValueError("count must be at least 1")
        if index < 0 or index + count > self.column_count:
            raise OutOfBoundsError(
                f"columns {index}..{index + count - 1} are outside sheet '{self.name}' "
                f"({self.column_count} columns)"
            )
        last = index + count - 1
        if not force:
            occupied = self.non_empty_positions(cols=(index, last))
            if occupied:
                raise NotEmptyError(_not_empty_message(self.name, occupied))
        self._cells = {
            (row, (col - count if col > last else col)): cell
            for (row, col), cell in self._cells.items()
            if not index <= col <= last
        }
        self.column_types = {
            (col - count if col > last else col): kind
            for col, kind in self.column_types.items()
            if not index <= col <= last
        }
        self.column_count -= count

    # -- copies / snapshots -----------------------------------------------
    def copy(self) -> "Sheet":
        # Cells are frozen models, so a shallow dict copy is independent.
        clone = Sheet(self.name, self.row_count, self.column_count, protected=self.protected)
        clone.column_types = dict(self.column_types)
        clone.header_rows = self.header_rows
        clone._cells = dict(self._cells)
        return clone

    def snapshot(self, rng: CellRange | None = None) -> SheetSnapshot:
        """Capture the shape plus every cell of ``rng`` (stored cells only when omitted)."""
        if rng is None:
            cells = {cell_a1(r, c): cell for r, c, cell in self.iter_cells()}
        else:
            cells = {
                cell_a1(r, c): cell
                for r, c, cell in self.cells_in(rng)
                if r < self.row_count and c < self.column_count
            }
        return SheetSnapshot(
            sheet=self.name,
            row_count=self.row_count,
            column_count=self.column_count,
            cells=cells,
        )

    def same_content(self, other: "Sheet") -> bool:
        return (
            self.name == other.name
            and self.row_count == other.row_count
            and self.column_count == other.column_count
            and self.column_types == other.column_types
            and self._cells == other._cells
        )


def _not_empty_message(sheet: str, occupied: list[tuple[int, int]]) -> str:
    refs = ", ".join(cell_a1(r, c) for r, c in occupied[:5])
    more = f" and {len(occupied) - 5} more" if len(occupied) > 5 else ""
    return (
        f"deleting would discard {len(occupied)} non-empty cell(s) in '{sheet}' ({refs}{more}); "
        "pass force to override"
    )


class GridModel:
    """Ordered mapping of sheet name to Sheet."""

    def __init__(self, sheets: Iterable[Sheet] = ()) -> None:
        self._sheets: dict[str, Sheet] = {}
        for sheet in sheets:
            self.add_sheet(sheet)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.find(name) is not None

    def __iter__(self) -> Iterator[Sheet]:
        return iter(self._sheets.values())

    def __len__(self) -> int:
        return len(self._sheets)

    @property
    def sheet_names(self) -> list[str]:
        return list(self._sheets)

    def find(self, name: str) -> Sheet | None:
        """Look a sheet up by exact name, then case-insensitively."""
        if name in self._sheets:
            return self._sheets[name]
        folded = name.casefold()
        for sheet_name, sheet in self._sheets.items():
            if sheet_name.casefold() == folded:
                return sheet
        return None

    def sheet(self, name: str) -> Sheet:
        found = self.find(name)
        if found is None:
            raise SheetNotFoundError(f"Sheet not found: {name}")
        return found

    def add_sheet(self, sheet: Sheet) -> Sheet:
        if self.find(sheet.name) is not None:
            raise SheetExistsError(f"Sheet already exists: {sheet.name}")
        self._sheets[sheet.name] = sheet
        return sheet

    def create_sheet(self, name: str, rows: int = 1, columns: int = 1) -> Sheet:
        return self.add_sheet(Sheet(name, rows, columns))

    def remove_sheet(self, name: str) -> None:
        sheet = self.sheet(name)
        del self._sheets[sheet.name]

    def replace_sheet(self, sheet: Sheet) -> None:
        """Swap in a sheet object under its name, keeping sheet order."""
        if sheet.name not in self._sheets:
            raise SheetNotFoundError(f"Sheet not found: {sheet.name}")
        self._sheets[sheet.name] = sheet

    def copy(self) -> "GridModel":
        return GridModel(sheet.copy() for sheet in self._sheets.values())

    # -- delegating contract ------------------------------------------------
    def get_cell(self, sheet: str, row: int, col: int) -> Cell:
        return self.sheet(sheet).get_cell(row, col)

    def set_cell(self, sheet: str, row: int, col: int, value: CellValue) -> Cell:
        return self.sheet(sheet).set_cell(row, col, value)

    def set_range(self, sheet: str, rng: CellRange, values: Iterable[Iterable[CellValue]]) -> None:
        self.sheet(sheet).set_range(rng, values)

    def insert_row(self, sheet: str, index: int, count: int = 1) -> None:
        self.sheet(sheet).insert_rows(index, count)

    def insert_column(self, sheet: str, index: int, count: int = 1) -> None:
        self.sheet(sheet).insert_columns(index, count)

    def delete_row(self, sheet: str, index: int, count: int = 1, *, force: bool = False) -> None:
        self.sheet(sheet).delete_rows(index, count, force=force)

    def delete_column(self, sheet: str, index: int, count: int = 1, *, force: bool = False) -> None:
        self.sheet(sheet).delete_columns(index, count, force=force)

    def apply_format(self, sheet: str, rng: CellRange, patch: StylePatch) -> None:
        self.sheet(sheet).apply_format(rng, patch)

    # -- description --------------------------------------------------------
    def describe(self) -> list[dict]:
        return [
            {
                "name": s.name,
                "index": i,
                "row_count": s.row_count,
                "column_count": s.column_count,
                "protected": s.protected,
                "stored_cells": len(s._cells),
                "column_types": {get_column_letter(c + 1): k for c, k in sorted(s.column_types.items())},
            }
            for i, s in enumerate(self._sheets.values())
        ]


def summarize(grid: GridModel, sample_rows: int = 5, max_columns: int = 26) -> str:
    """Plain-text shape summary handed to the model so it can ground its answer."""
    lines: list[str] = []
    for sheet in grid:
        lines.append(
            f"Sheet: {sheet.name} ({sheet.row_count} rows x {sheet.column_count} columns)"
            + (" [protected]" if sheet.protected else "")
        )
        if sheet.column_types:
            typed = ", ".join(f"{get_column_letter(c + 1)}={k}" for c, k in sorted(sheet.column_types.items()))
            lines.append(f"Column types: {typed}")
        shown = min(sample_rows, sheet.row_count)
        if shown and sheet.column_count:
            lines.append("Headers: " + ", ".join(v.display() for v in sheet.row_values(0)[:max_columns]))
            if shown > 1:
                lines.append("First rows:")
                for row in range(1, shown):
                    lines.append("  " + ", ".join(v.display() for v in sheet.row_values(row)[:max_columns]))
    if not lines:
        lines.append("Workbook has no sheets.")
    return "\n".join(lines)
