"""Intent parser: model response text -> typed operations.

The parser is a pure function of its input text. It never looks at a loaded
workbook, so bounds are not checked here, only syntax: every argument must be
well formed and every index non-negative. Lines that do not map to exactly
one operation are collected as ``ParseError`` records and the rest of the
batch is still parsed.
"""

from __future__ import annotations

import re
import shlex

from openpyxl.utils import column_index_from_string
from pydantic import ValidationError

from xlagent.contracts.cells import CellRange, CellValue, StylePatch
from xlagent.contracts.operations import (
    MAX_COLUMNS,
    MAX_ROWS,
    VOCABULARY,
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
from xlagent.contracts.reports import ParseError, ParseResult


class ParseFailure(ValueError):
    """Raised by the line parsers; collected into a ParseError by the batch parser."""


_LIST_MARKER = re.compile(r"^(?:[-*•]|\d+[.)])\s+")
_CELL_REF = re.compile(r"\$?([A-Za-z]{1,3})\$?(\d+)")
_NUMBER = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_INT = re.compile(r"[+-]?\d+")
_FORCE_WORDS = frozenset({"force", "--force", "force=true", "!"})

# Largest block a single SetRange may write; fill values are expanded per cell.
MAX_RANGE_CELLS = 100_000


# ---------------------------------------------------------------------------
# batch entry point
# ---------------------------------------------------------------------------
def parse_operations(text: str, *, max_operations: int | None = None) -> ParseResult:
    """Parse every line of ``text``; keep source order, collect failures."""
    result = ParseResult()
    for line_no, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("```"):
            continue
        line = _LIST_MARKER.sub("", line, count=1)
        if len(line) > 1 and line.startswith("`") and line.endswith("`"):
            line = line.strip("`").strip()
        if max_operations is not None and len(result.operations) >= max_operations:
            result.errors.append(ParseError(
                line_no=line_no, raw_line=raw,
                reason=f"batch limit of {max_operations} operations exceeded",
            ))
            continue
        try:
            op = parse_line(line)
        except ParseFailure as e:
            result.errors.append(ParseError(line_no=line_no, raw_line=raw, reason=str(e)))
            continue
        result.operations.append(op)
        result.line_numbers.append(line_no)
    return result


def parse_line(line: str) -> Operation:
    """Parse a single instruction line into one operation."""
    parts = line.split(None, 1)
    if not parts:
        raise ParseFailure("empty line")
    verb = parts[0]
    rest = parts[1] if len(parts) > 1 else ""
    key = re.sub(r"[\s_-]", "", verb).lower()
    cls = VOCABULARY.get(key)
    if cls is None:
        raise ParseFailure(f"unknown action '{verb}'")
    try:
        return _LINE_PARSERS[cls.verb](rest)
    except ValidationError as e:
        err = e.errors()[0]
        raise ParseFailure(f"{cls.verb}: {err['msg']}") from e


# ---------------------------------------------------------------------------
# per-action parsers
# ---------------------------------------------------------------------------
def _parse_set_cell(rest: str) -> SetCell:
    head, value_text = _split_assignment(rest)
    if value_text is None:
        raise ParseFailure("SetCell needs '<sheet> <cell> = <value>'")
    sheet, ref = _sheet_and_ref(_tokens(head), "SetCell")
    rng = parse_range_ref(ref)
    if rng.size != 1:
        raise ParseFailure(f"SetCell takes a single cell, got range {ref}")
    return SetCell(sheet=sheet, row=rng.first_row, col=rng.first_col, value=parse_value(value_text))


def _parse_set_range(rest: str) -> SetRange:
    head, value_text = _split_assignment(rest)
    if value_text is None:
        raise ParseFailure("SetRange needs '<sheet> <range> = <v>, <v>; <v>, <v>'")
    sheet, ref = _sheet_and_ref(_tokens(head), "SetRange")
    rng = parse_range_ref(ref)
    matrix = parse_matrix(value_text)
    height, width = len(matrix), len(matrix[0])
    if rng.size == 1 and (height, width) != (1, 1):
        # Anchor form: the block extends from the given cell.
        rng = CellRange(
            first_row=rng.first_row, first_col=rng.first_col,
            last_row=rng.first_row + height - 1, last_col=rng.first_col + width - 1,
        )
    if rng.size > MAX_RANGE_CELLS:
        raise ParseFailure(
            f"range {rng.a1} covers {rng.size} cells; SetRange writes at most {MAX_RANGE_CELLS}"
        )
    if (height, width) == (1, 1):
        matrix = [[matrix[0][0]] * rng.col_span for _ in range(rng.row_span)]
    elif (height, width) != (rng.row_span, rng.col_span):
        raise ParseFailure(
            f"range {rng.a1} is {rng.row_span}x{rng.col_span} but {height}x{width} values were given"
        )
    return SetRange(sheet=sheet, range=rng, values=tuple(tuple(row) for row in matrix))


def _parse_insert_row(rest: str) -> InsertRow:
    toks = _tokens(rest)
    if len(toks) not in (2, 3):
        raise ParseFailure("InsertRow needs '<sheet> <index> [count]'")
    count = _parse_count(toks[2]) if len(toks) == 3 else 1
    return InsertRow(sheet=toks[0], index=parse_row_index(toks[1]), count=count)


def _parse_insert_column(rest: str) -> InsertColumn:
    toks = _tokens(rest)
    if len(toks) not in (2, 3):
        raise ParseFailure("InsertColumn needs '<sheet> <index|letter> [count]'")
    count = _parse_count(toks[2]) if len(toks) == 3 else 1
    return InsertColumn(sheet=toks[0], index=parse_column_index(toks[1]), count=count)


def _parse_delete_row(rest: str) -> DeleteRow:
    toks, force = _pop_force(_tokens(rest))
    if len(toks) not in (2, 3):
        raise ParseFailure("DeleteRow needs '<sheet> <index> [count] [force]'")
    count = _parse_count(toks[2]) if len(toks) == 3 else 1
    return DeleteRow(sheet=toks[0], index=parse_row_index(toks[1]), count=count, force=force)


def _parse_delete_column(rest: str) -> DeleteColumn:
    toks, force = _pop_force(_tokens(rest))
    if len(toks) not in (2, 3):
        raise ParseFailure("DeleteColumn needs '<sheet> <index|letter> [count] [force]'")
    count = _parse_count(toks[2]) if len(toks) == 3 else 1
    return DeleteColumn(sheet=toks[0], index=parse_column_index(toks[1]), count=count, force=force)


def _parse_apply_format(rest: str) -> ApplyFormat:
    toks = _tokens(rest)
    if len(toks) < 2:
        raise ParseFailure("ApplyFormat needs '<sheet> <range> key=value ...'")
    if "!" in toks[0] and "=" not in toks[0]:
        sheet, ref = toks[0].rsplit("!", 1)
        attrs = toks[1:]
    else:
        if len(toks) < 3:
            raise ParseFailure("ApplyFormat needs at least one key=value style attribute")
        sheet, ref, attrs = toks[0], toks[1], toks[2:]
    return ApplyFormat(sheet=sheet, range=parse_range_ref(ref), style=parse_style(attrs))


def _parse_create_sheet(rest: str) -> CreateSheet:
    toks = _tokens(rest)
    if len(toks) == 1:
        return CreateSheet(sheet=toks[0])
    if len(toks) == 3:
        return CreateSheet(
            sheet=toks[0],
            rows=_parse_non_negative(toks[1], "row count"),
            columns=_parse_non_negative(toks[2], "column count"),
        )
    raise ParseFailure("CreateSheet needs '<name> [rows columns]'")


_LINE_PARSERS = {
    "SetCell": _parse_set_cell,
    "SetRange": _parse_set_range,
    "InsertRow": _parse_insert_row,
    "InsertColumn": _parse_insert_column,
    "DeleteRow": _parse_delete_row,
    "DeleteColumn": _parse_delete_column,
    "ApplyFormat": _parse_apply_format,
    "CreateSheet": _parse_create_sheet,
}


# ---------------------------------------------------------------------------
# tokens, refs and indices
# ---------------------------------------------------------------------------
def _tokens(text: str) -> list[str]:
    try:
        return shlex.split(text)
    except ValueError as e:
        raise ParseFailure(f"cannot tokenize arguments: {e}") from e


def _split_assignment(text: str) -> tuple[str, str | None]:
    """Split at the first '=' outside quotes into (head, value text)."""
    quote: str | None = None
    for i, ch in enumerate(text):
        if quote:
            if ch == "\\":
                continue
            if ch == quote and text[i - 1] != "\\":
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == "=":
            return text[:i], text[i + 1:]
    return text, None


def _sheet_and_ref(toks: list[str], verb: str) -> tuple[str, str]:
    if len(toks) == 1 and "!" in toks[0]:
        sheet, ref = toks[0].rsplit("!", 1)
        if sheet:
            return sheet, ref
    if len(toks) != 2:
        raise ParseFailure(f"{verb} needs a sheet name and a cell reference")
    return toks[0], toks[1]


def _pop_force(toks: list[str]) -> tuple[list[str], bool]:
    if toks and toks[-1].lower() in _FORCE_WORDS:
        return toks[:-1], True
    return toks, False


def parse_cell_ref(ref: str) -> tuple[int, int]:
    """Parse an A1 reference into a 0-based (row, col)."""
    m = _CELL_REF.fullmatch(ref.strip())
    if not m:
        raise ParseFailure(f"invalid cell reference '{ref}'")
    row = int(m.group(2))
    if row < 1 or row > MAX_ROWS:
        raise ParseFailure(f"row {row} in '{ref}' is outside 1..{MAX_ROWS}")
    try:
        col = column_index_from_string(m.group(1).upper())
    except ValueError as e:
        raise ParseFailure(f"invalid column in '{ref}'") from e
    if col > MAX_COLUMNS:
        raise ParseFailure(f"column {m.group(1).upper()} in '{ref}' is beyond XFD")
    return row - 1, col - 1


def parse_range_ref(ref: str) -> CellRange:
    """Parse 'A1' or 'A1:B2' (either corner order) into a 0-based range."""
    parts = ref.split(":")
    if len(parts) > 2:
        raise ParseFailure(f"invalid range reference '{ref}'")
    r1, c1 = parse_cell_ref(parts[0])
    r2, c2 = parse_cell_ref(parts[1]) if len(parts) == 2 else (r1, c1)
    return CellRange(
        first_row=min(r1, r2), first_col=min(c1, c2),
        last_row=max(r1, r2), last_col=max(c1, c2),
    )


def _parse_non_negative(token: str, what: str) -> int:
    if not _INT.fullmatch(token):
        raise ParseFailure(f"{what} must be a non-negative integer, got '{token}'")
    value = int(token)
    if value < 0:
        raise ParseFailure(f"{what} must be a non-negative integer, got {value}")
    return value


def _parse_count(token: str) -> int:
    value = _parse_non_negative(token, "count")
    if value < 1:
        raise ParseFailure("count must be at least 1")
    return value


def parse_row_index(token: str) -> int:
    value = _parse_non_negative(token, "row index")
    if value >= MAX_ROWS:
        raise ParseFailure(f"row index {value} exceeds the worksheet limit")
    return value


def parse_column_index(token: str) -> int:
    """A 0-based integer, or a column letter (A -> 0)."""
    if token.isalpha():
        try:
            col = column_index_from_string(token.upper())
        except ValueError as e:
            raise ParseFailure(f"invalid column '{token}'") from e
        if col > MAX_COLUMNS:
            raise ParseFailure(f"column {token.upper()} is beyond XFD")
        return col - 1
    value = _parse_non_negative(token, "column index")
    if value >= MAX_COLUMNS:
        raise ParseFailure(f"column index {value} exceeds the worksheet limit")
    return value


# ---------------------------------------------------------------------------
# values
# ---------------------------------------------------------------------------
def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def parse_value(text: str) -> CellValue:
    """Type a raw value: empty, "quoted" text, =formula, boolean, number or text."""
    raw = text.strip()
    if not raw:
        return CellValue.empty()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "\"'":
        inner = _unquote(raw)
        if inner.startswith("=") and len(inner) > 1:
            return CellValue.formula(inner)
        return CellValue.text(inner) if inner else CellValue.empty()
    if raw.startswith("=") and len(raw) > 1:
        return CellValue.formula(raw)
    lowered = raw.lower()
    if lowered in ("true", "false"):
        return CellValue.boolean(lowered == "true")
    if _NUMBER.fullmatch(raw):
        if re.fullmatch(r"[+-]?\d+", raw):
            return CellValue.number(int(raw))
        return CellValue.number(float(raw))
    return CellValue.text(raw)


def _at_field_start(buf: list[str]) -> bool:
    text = "".join(buf)
    last = max(text.rfind(","), text.rfind(";"))
    return not text[last + 1:].strip()


def _split_outside_quotes(text: str, sep: str) -> list[str]:
    parts: list[str] = []
    buf: list[str] = []
    quote: str | None = None
    escaped = False
    for ch in text:
        if escaped:
            buf.append(ch)
            escaped = False
            continue
        if quote and ch == "\\":
            buf.append(ch)
            escaped = True
            continue
        if quote:
            if ch == quote:
                quote = None
        elif ch in "\"'" and _at_field_start(buf):
            quote = ch
        elif ch == sep:
            parts.append("".join(buf))
            buf = []
            continue
        buf.append(ch)
    if quote:
        raise ParseFailure("unbalanced quotes in values")
    parts.append("".join(buf))
    return parts


def parse_matrix(text: str) -> list[list[CellValue]]:
    """Parse 'a, b; c, d' into rows of typed values (rows ';', columns ',')."""
    rows = _split_outside_quotes(text, ";")
    if len(rows) > 1 and not rows[-1].strip():
        rows = rows[:-1]
    matrix = [[parse_value(v) for v in _split_outside_quotes(row, ",")] for row in rows]
    width = len(matrix[0])
    if any(len(r) != width for r in matrix):
        raise ParseFailure("every row of values must have the same number of columns")
    return matrix


# ---------------------------------------------------------------------------
# styles
# ---------------------------------------------------------------------------
_STYLE_ALIASES = {
    "bold": "bold",
    "italic": "italic",
    "font": "font_name",
    "font_name": "font_name",
    "size": "font_size",
    "font_size": "font_size",
    "color": "font_color",
    "font_color": "font_color",
    "fill": "fill_color",
    "fill_color": "fill_color",
    "background": "fill_color",
    "number_format": "number_format",
    "format": "number_format",
    "border": "border",
    "locked": "locked",
    "style": "style",
    "decimals": "decimals",
}

_NAMED_COLORS = {
    "black": "000000",
    "white": "FFFFFF",
    "red": "FF0000",
    "green": "00B050",
    "blue": "0070C0",
    "yellow": "FFFF00",
    "orange": "FFC000",
    "gray": "808080",
    "grey": "808080",
}

BORDER_STYLES = frozenset({
    "thin", "medium", "thick", "dashed", "dotted", "double", "hair",
    "mediumDashed", "dashDot", "mediumDashDot", "dashDotDot", "slantDashDot",
})

NUMBER_STYLES = frozenset({"number", "percent", "currency", "date", "text"})


def _parse_bool(value: str, key: str) -> bool:
    lowered = value.lower()
    if lowered in ("true", "yes", "on", "1"):
        return True
    if lowered in ("false", "no", "off", "0"):
        return False
    raise ParseFailure(f"{key} must be true or false, got '{value}'")


def _parse_color(value: str, key: str) -> str:
    named = _NAMED_COLORS.get(value.lower())
    if named:
        return named
    hex_part = value.lstrip("#")
    if re.fullmatch(r"[0-9A-Fa-f]{6}|[0-9A-Fa-f]{8}", hex_part):
        return hex_part.upper()
    raise ParseFailure(f"{key} must be a hex color like FF0000, got '{value}'")


def number_format_for(style: str, decimals: int = 2) -> str:
    if style not in NUMBER_STYLES:
        raise ParseFailure(f"unknown number style '{style}'. Valid: {', '.join(sorted(NUMBER_STYLES))}")
    frac = f".{'0' * decimals}" if decimals else ""
    fmt_map = {
        "number": f"#,##0{frac}",
        "percent": f"0{frac}%",
        "currency": f"$#,##0{frac}",
        "date": "YYYY-MM-DD",
        "text": "@",
    }
    return fmt_map[style]


def parse_style(attrs: list[str]) -> StylePatch:
    """Parse key=value tokens into a style patch."""
    fields: dict[str, object] = {}
    style: str | None = None
    decimals: int | None = None
    for attr in attrs:
        key, sep, value = attr.partition("=")
        if not sep:
            # Bare flags such as "bold" or "italic".
            key, value = attr, "true"
        name = _STYLE_ALIASES.get(key.lower())
        if name is None:
            raise ParseFailure(f"unknown style attribute '{key}'")
        if name in ("bold", "italic", "locked"):
            fields[name] = _parse_bool(value, key)
        elif name in ("font_color", "fill_color"):
            fields[name] = _parse_color(value, key)
        elif name == "font_size":
            if not _NUMBER.fullmatch(value) or float(value) <= 0:
                raise ParseFailure(f"size must be a positive number, got '{value}'")
            fields[name] = float(value)
        elif name == "border":
            if value.lower() == "none":
                fields[name] = "none"
            elif value in BORDER_STYLES:
                fields[name] = value
            else:
                raise ParseFailure(f"unknown border style '{value}'")
        elif name == "style":
            style = value.lower()
        elif name == "decimals":
            decimals = _parse_non_negative(value, "decimals")
            if decimals > 10:
                raise ParseFailure("decimals must be at most 10")
        elif not value:
            raise ParseFailure(f"{key} needs a value")
        else:
            fields[name] = value
    if style is not None:
        if "number_format" in fields:
            raise ParseFailure("use either style or number_format, not both")
        fields["number_format"] = number_format_for(style, 2 if decimals is None else decimals)
    elif decimals is not None:
        raise ParseFailure("decimals requires style")
    if not fields:
        raise ParseFailure("ApplyFormat needs at least one style attribute")
    return StylePatch(**fields)
