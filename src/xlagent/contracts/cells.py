"""Cell value, format and range models shared by every stage."""

from __future__ import annotations

import datetime
from collections.abc import Iterator
from typing import Any, Literal

from openpyxl.utils import get_column_letter
from openpyxl.utils.datetime import to_excel
from pydantic import BaseModel, ConfigDict, model_validator

ValueKind = Literal["empty", "number", "text", "boolean", "formula"]

VALUE_KINDS: tuple[str, ...] = ("empty", "number", "text", "boolean", "formula")


class CellValue(BaseModel):
    """Tagged cell value: Empty | Number | Text | Boolean | Formula."""

    model_config = ConfigDict(frozen=True)

    kind: ValueKind = "empty"
    data: bool | int | float | str | None = None

    @model_validator(mode="after")
    def _check_kind(self) -> "CellValue":
        k, d = self.kind, self.data
        if k == "empty" and d is not None:
            raise ValueError("empty value cannot carry data")
        if k == "number" and (isinstance(d, bool) or not isinstance(d, (int, float))):
            raise ValueError(f"number value requires int or float, got {d!r}")
        if k == "boolean" and not isinstance(d, bool):
            raise ValueError(f"boolean value requires bool, got {d!r}")
        if k == "text" and not isinstance(d, str):
            raise ValueError(f"text value requires str, got {d!r}")
        if k == "formula" and not (isinstance(d, str) and d.startswith("=")):
            raise ValueError(f"formula must be a string starting with '=', got {d!r}")
        return self

    @classmethod
    def empty(cls) -> "CellValue":
        return cls()

    @classmethod
    def number(cls, value: int | float) -> "CellValue":
        return cls(kind="number", data=value)

    @classmethod
    def text(cls, value: str) -> "CellValue":
        return cls(kind="text", data=value)

    @classmethod
    def boolean(cls, value: bool) -> "CellValue":
        return cls(kind="boolean", data=value)

    @classmethod
    def formula(cls, value: str) -> "CellValue":
        return cls(kind="formula", data=value)

    @classmethod
    def from_python(cls, raw: Any) -> "CellValue":
        """Infer a tagged value from a raw Python/openpyxl cell value.

        Dates and times become their Excel serial number; the cell's number
        format is what keeps them displayed as dates.
        """
        if raw is None:
            return cls.empty()
        if isinstance(raw, bool):
            return cls.boolean(raw)
        if isinstance(raw, (int, float)):
            return cls.number(raw)
        if isinstance(raw, str):
            if raw.startswith("=") and len(raw) > 1:
                return cls.formula(raw)
            if raw == "":
                return cls.empty()
            return cls.text(raw)
        if isinstance(raw, (datetime.datetime, datetime.date, datetime.time)):
            return cls.number(to_excel(raw))
        return cls.text(str(raw))

    @property
    def is_empty(self) -> bool:
        return self.kind == "empty"

    def to_python(self) -> bool | int | float | str | None:
        return self.data

    def display(self) -> str:
        if self.kind == "empty":
            return ""
        if self.kind == "boolean":
            return "TRUE" if self.data else "FALSE"
        return str(self.data)


class CellFormat(BaseModel):
    """Formatting metadata of a cell, treated as an opaque style token."""

    model_config = ConfigDict(frozen=True)

    font_name: str | None = None
    font_size: float | None = None
    bold: bool = False
    italic: bool = False
    font_color: str | None = None
    fill_color: str | None = None
    number_format: str = "General"
    border: str | None = None
    locked: bool = False

    def merged(self, patch: "StylePatch") -> "CellFormat":
        """Return a copy with every field the patch sets replaced."""
        return self.model_copy(update=patch.changes())


class StylePatch(BaseModel):
    """Partial format update carried by ApplyFormat. ``None`` leaves a field alone."""

    model_config = ConfigDict(frozen=True)

    font_name: str | None = None
    font_size: float | None = None
    bold: bool | None = None
    italic: bool | None = None
    font_color: str | None = None
    fill_color: str | None = None
    number_format: str | None = None
    border: str | None = None
    locked: bool | None = None

    def changes(self) -> dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if v is not None}

    @property
    def is_empty(self) -> bool:
        return not self.changes()


class Cell(BaseModel):
    """A value plus its format."""

    model_config = ConfigDict(frozen=True)

    value: CellValue = CellValue()
    format: CellFormat = CellFormat()

    @property
    def is_empty(self) -> bool:
        return self.value.is_empty


class CellRange(BaseModel):
    """Rectangular 0-based inclusive region of a sheet."""

    model_config = ConfigDict(frozen=True)

    first_row: int
    first_col: int
    last_row: int
    last_col: int

    @model_validator(mode="after")
    def _check_order(self) -> "CellRange":
        if min(self.first_row, self.first_col) < 0:
            raise ValueError("range coordinates must be non-negative")
        if self.last_row < self.first_row or self.last_col < self.first_col:
            raise ValueError("range end must not precede its start")
        return self

    @classmethod
    def single(cls, row: int, col: int) -> "CellRange":
        return cls(first_row=row, first_col=col, last_row=row, last_col=col)

    @property
    def row_span(self) -> int:
        return self.last_row - self.first_row + 1

    @property
    def col_span(self) -> int:
        return self.last_col - self.first_col + 1

    @property
    def size(self) -> int:
        return self.row_span * self.col_span

    @property
    def a1(self) -> str:
        start = cell_a1(self.first_row, self.first_col)
        if self.size == 1:
            return start
        return f"{start}:{cell_a1(self.last_row, self.last_col)}"

    def positions(self) -> Iterator[tuple[int, int]]:
        for row in range(self.first_row, self.last_row + 1):
            for col in range(self.first_col, self.last_col + 1):
                yield row, col


def cell_a1(row: int, col: int) -> str:
    """Render a 0-based (row, col) as an A1 reference."""
    return f"{get_column_letter(col + 1)}{row + 1}"
