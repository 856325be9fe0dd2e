"""The closed operation vocabulary.

Every spreadsheet mutation the system can express is one of the frozen models
below. ``Operation`` is the discriminated union over them; nothing outside it
reaches the validator or the executor.
"""

from __future__ import annotations

import re
from typing import Annotated, ClassVar, Literal, NamedTuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from xlagent.contracts.cells import CellRange, CellValue, StylePatch, cell_a1

MAX_ROWS = 1_048_576
MAX_COLUMNS = 16_384

_INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")


class Footprint(NamedTuple):
    """Sheet region an operation addresses. ``None`` means the axis is not addressed."""

    sheet: str
    rows: tuple[int, int] | None
    cols: tuple[int, int] | None


class _OperationBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    verb: ClassVar[str]
    effect: ClassVar[Literal["value", "format", "structure"]]

    sheet: str = Field(min_length=1)

    def footprint(self) -> Footprint:
        raise NotImplementedError

    def to_line(self) -> str:
        raise NotImplementedError


class SetCell(_OperationBase):
    """Write one value; the cell's format is preserved."""

    verb: ClassVar[str] = "SetCell"
    effect: ClassVar[Literal["value"]] = "value"

    action: Literal["set_cell"] = "set_cell"
    row: int = Field(ge=0, lt=MAX_ROWS)
    col: int = Field(ge=0, lt=MAX_COLUMNS)
    value: CellValue

    def footprint(self) -> Footprint:
        return Footprint(self.sheet, (self.row, self.row), (self.col, self.col))

    def to_line(self) -> str:
        return f"SetCell {quote_name(self.sheet)} {cell_a1(self.row, self.col)} = {render_value(self.value)}"


class SetRange(_OperationBase):
    """Write a rectangular block of values row by row."""

    verb: ClassVar[str] = "SetRange"
    effect: ClassVar[Literal["value"]] = "value"

    action: Literal["set_range"] = "set_range"
    range: CellRange
    values: tuple[tuple[CellValue, ...], ...]

    @model_validator(mode="after")
    def _check_shape(self) -> "SetRange":
        if len(self.values) != self.range.row_span:
            raise ValueError(
                f"range {self.range.a1} has {self.range.row_span} row(s) but {len(self.values)} were given"
            )
        for row in self.values:
            if len(row) != self.range.col_span:
                raise ValueError(
                    f"range {self.range.a1} has {self.range.col_span} column(s) but a row has {len(row)}"
                )
        if self.range.last_row >= MAX_ROWS or self.range.last_col >= MAX_COLUMNS:
            raise ValueError(f"range {self.range.a1} exceeds worksheet limits")
        return self

    def footprint(self) -> Footprint:
        r = self.range
        return Footprint(self.sheet, (r.first_row, r.last_row), (r.first_col, r.last_col))

    def to_line(self) -> str:
        rows = "; ".join(", ".join(render_value(v, in_range=True) for v in row) for row in self.values)
        return f"SetRange {quote_name(self.sheet)} {self.range.a1} = {rows}"


class InsertRow(_OperationBase):
    """Insert ``count`` empty rows before ``index`` (``index == row_count`` appends)."""

    verb: ClassVar[str] = "InsertRow"
    effect: ClassVar[Literal["structure"]] = "structure"

    action: Literal["insert_row"] = "insert_row"
    index: int = Field(ge=0, lt=MAX_ROWS)
    count: int = Field(default=1, ge=1, le=MAX_ROWS)

    def footprint(self) -> Footprint:
        return Footprint(self.sheet, (self.index, self.index + self.count - 1), None)

    def to_line(self) -> str:
        suffix = f" {self.count}" if self.count != 1 else ""
        return f"InsertRow {quote_name(self.sheet)} {self.index}{suffix}"


class InsertColumn(_OperationBase):
    """Insert ``count`` empty columns before ``index``."""

    verb: ClassVar[str] = "InsertColumn"
    effect: ClassVar[Literal["structure"]] = "structure"

    action: Literal["insert_column"] = "insert_column"
    index: int = Field(ge=0, lt=MAX_COLUMNS)
    count: int = Field(default=1, ge=1, le=MAX_COLUMNS)

    def footprint(self) -> Footprint:
        return Footprint(self.sheet, None, (self.index, self.index + self.count - 1))

    def to_line(self) -> str:
        suffix = f" {self.count}" if self.count != 1 else ""
        return f"InsertColumn {quote_name(self.sheet)} {self.index}{suffix}"


class DeleteRow(_OperationBase):
    """Delete ``count`` rows starting at ``index``. Non-empty rows need ``force``."""

    verb: ClassVar[str] = "DeleteRow"
    effect: ClassVar[Literal["structure"]] = "structure"

    action: Literal["delete_row"] = "delete_row"
    index: int = Field(ge=0, lt=MAX_ROWS)
    count: int = Field(default=1, ge=1, le=MAX_ROWS)
    force: bool = False

    def footprint(self) -> Footprint:
        return Footprint(self.sheet, (self.index, self.index + self.count - 1), None)

    def to_line(self) -> str:
        suffix = f" {self.count}" if self.count != 1 or self.force else ""
        return f"DeleteRow {quote_name(self.sheet)} {self.index}{suffix}{' force' if self.force else ''}"


class DeleteColumn(_OperationBase):
    """Delete ``count`` columns starting at ``index``. Non-empty columns need ``force``."""

    verb: ClassVar[str] = "DeleteColumn"
    effect: ClassVar[Literal["structure"]] = "structure"

    action: Literal["delete_column"] = "delete_column"
    index: int = Field(ge=0, lt=MAX_COLUMNS)
    count: int = Field(default=1, ge=1, le=MAX_COLUMNS)
    force: bool = False

    def footprint(self) -> Footprint:
        return Footprint(self.sheet, None, (self.index, self.index + self.count - 1))

    def to_line(self) -> str:
        suffix = f" {self.count}" if self.count != 1 or self.force else ""
        return f"DeleteColumn {quote_name(self.sheet)} {self.index}{suffix}{' force' if self.force else ''}"


class ApplyFormat(_OperationBase):
    """Merge a style patch into every cell of a range; values are preserved."""

    verb: ClassVar[str] = "ApplyFormat"
    effect: ClassVar[Literal["format"]] = "format"

    action: Literal["apply_format"] = "apply_format"
    range: CellRange
    style: StylePatch

    @field_validator("style")
    @classmethod
    def _style_not_empty(cls, v: StylePatch) -> StylePatch:
        if v.is_empty:
            raise ValueError("ApplyFormat needs at least one style attribute")
        return v

    def footprint(self) -> Footprint:
        r = self.range
        return Footprint(self.sheet, (r.first_row, r.last_row), (r.first_col, r.last_col))

    def to_line(self) -> str:
        attrs = " ".join(f"{_STYLE_KEYS[k]}={_render_attr(v)}" for k, v in self.style.changes().items())
        return f"ApplyFormat {quote_name(self.sheet)} {self.range.a1} {attrs}"


class CreateSheet(_OperationBase):
    """Create a new sheet with the given initial bounds."""

    verb: ClassVar[str] = "CreateSheet"
    effect: ClassVar[Literal["structure"]] = "structure"

    action: Literal["create_sheet"] = "create_sheet"
    rows: int = Field(default=1, ge=0, le=MAX_ROWS)
    columns: int = Field(default=1, ge=0, le=MAX_COLUMNS)

    @field_validator("sheet")
    @classmethod
    def _valid_sheet_name(cls, v: str) -> str:
        if len(v) > 31:
            raise ValueError("sheet names are limited to 31 characters")
        if _INVALID_SHEET_CHARS.search(v):
            raise ValueError("sheet names cannot contain [ ] : * ? / \\")
        return v

    def footprint(self) -> Footprint:
        return Footprint(self.sheet, None, None)

    def to_line(self) -> str:
        return f"CreateSheet {quote_name(self.sheet)} {self.rows} {self.columns}"


Operation = Annotated[
    Union[SetCell, SetRange, InsertRow, InsertColumn, DeleteRow, DeleteColumn, ApplyFormat, CreateSheet],
    Field(discriminator="action"),
]

OPERATION_TYPES: tuple[type[_OperationBase], ...] = (
    SetCell, SetRange, InsertRow, InsertColumn, DeleteRow, DeleteColumn, ApplyFormat, CreateSheet,
)

# Normalized verb (lowercase, no separators) -> operation class.
VOCABULARY: dict[str, type[_OperationBase]] = {cls.verb.lower(): cls for cls in OPERATION_TYPES}


def is_vocabulary_operation(op: object) -> bool:
    return type(op) in OPERATION_TYPES


# ---------------------------------------------------------------------------
# Canonical text rendering
# ---------------------------------------------------------------------------
_STYLE_KEYS = {
    "font_name": "font",
    "font_size": "size",
    "bold": "bold",
    "italic": "italic",
    "font_color": "color",
    "fill_color": "fill",
    "number_format": "number_format",
    "border": "border",
    "locked": "locked",
}

_NUMBER_LITERAL = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def quote_name(name: str) -> str:
    if re.search(r"[\s\"'=]", name):
        return quote(name)
    return name


def render_value(value: CellValue, *, in_range: bool = False) -> str:
    """Render a value so the parser reads back exactly the same value."""
    if value.kind == "empty":
        return ""
    if value.kind == "boolean":
        return "true" if value.data else "false"
    if value.kind == "number":
        return repr(value.data)
    text = str(value.data)
    if value.kind == "formula":
        return quote(text) if in_range and re.search(r"[,;\"]", text) else text
    needs_quotes = (
        text != text.strip()
        or text.lower() in ("true", "false")
        or text.startswith(("=", '"'))
        or _NUMBER_LITERAL.fullmatch(text) is not None
        or (in_range and re.search(r"[,;]", text) is not None)
    )
    return quote(text) if needs_quotes else text


def _render_attr(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    return quote(text) if re.search(r"[\s\"']", text) else text
