"""Tests for the intent parser."""

from __future__ import annotations

import pytest

from xlagent.contracts.cells import CellRange, CellValue
from xlagent.contracts.operations import (
    ApplyFormat,
    CreateSheet,
    DeleteColumn,
    DeleteRow,
    InsertColumn,
    InsertRow,
    SetCell,
    SetRange,
)
from xlagent.engine.parser import (
    ParseFailure,
    parse_cell_ref,
    parse_line,
    parse_matrix,
    parse_operations,
    parse_value,
)


def test_set_cell_line():
    op = parse_line("SetCell Sheet1 B3 = 42")
    assert op == SetCell(sheet="Sheet1", row=2, col=1, value=CellValue.number(42))


def test_verbs_are_case_and_separator_insensitive():
    assert isinstance(parse_line("set_cell Sheet1 A1 = x"), SetCell)
    assert isinstance(parse_line("insert-row Sheet1 0"), InsertRow)


def test_quoted_sheet_and_text():
    op = parse_line('SetCell "Q1 Sales" A1 = "North region"')
    assert op.sheet == "Q1 Sales"
    assert op.value == CellValue.text("North region")


def test_sheet_bang_reference():
    op = parse_line("SetCell Data!C1 = =SUM(A1:B1)")
    assert op.sheet == "Data"
    assert (op.row, op.col) == (0, 2)
    assert op.value == CellValue.formula("=SUM(A1:B1)")


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("", CellValue.empty()),
        ("5", CellValue.number(5)),
        ("-2.5", CellValue.number(-2.5)),
        ("TRUE", CellValue.boolean(True)),
        ("hello world", CellValue.text("hello world")),
        ('"42"', CellValue.text("42")),
        ("=A1*2", CellValue.formula("=A1*2")),
    ],
)
def test_parse_value_types(text: str, expected: CellValue):
    assert parse_value(text) == expected


def test_set_range_with_explicit_range():
    op = parse_line("SetRange Sheet1 A1:B2 = 1, 2; 3, 4")
    assert isinstance(op, SetRange)
    assert op.range == CellRange(first_row=0, first_col=0, last_row=1, last_col=1)
    assert op.values[1] == (CellValue.number(3), CellValue.number(4))


def test_set_range_anchor_form_grows_from_cell():
    op = parse_line("SetRange Sheet1 B2 = a, b, c")
    assert op.range.a1 == "B2:D2"


def test_set_range_single_value_fills_range():
    op = parse_line("SetRange Sheet1 A1:A3 = 0")
    assert op.values == ((CellValue.number(0),),) * 3


def test_whole_sheet_fill_is_a_parse_error():
    result = parse_operations("SetRange Sheet1 A1:XFD1048576 = 0\nInsertRow Sheet1 0")
    assert len(result.errors) == 1
    assert "at most" in result.errors[0].reason
    assert result.errors[0].line_no == 1
    assert [op.to_line() for op in result.operations] == ["InsertRow Sheet1 0"]


def test_set_range_shape_mismatch():
    with pytest.raises(ParseFailure, match="2x2"):
        parse_line("SetRange Sheet1 A1:B2 = 1, 2, 3")


def test_ragged_matrix_rejected():
    with pytest.raises(ParseFailure):
        parse_matrix("1, 2; 3")


def test_quoted_commas_stay_in_one_value():
    matrix = parse_matrix('"Smith, J", 3')
    assert matrix == [[CellValue.text("Smith, J"), CellValue.number(3)]]


def test_structural_lines():
    assert parse_line("InsertRow Sheet1 0") == InsertRow(sheet="Sheet1", index=0)
    assert parse_line("InsertColumn Sheet1 C 2") == InsertColumn(sheet="Sheet1", index=2, count=2)
    assert parse_line("DeleteRow Sheet1 4 2 force") == DeleteRow(sheet="Sheet1", index=4, count=2, force=True)
    assert parse_line("DeleteColumn Sheet1 1") == DeleteColumn(sheet="Sheet1", index=1)
    assert parse_line("CreateSheet Totals 10 4") == CreateSheet(sheet="Totals", rows=10, columns=4)
    assert parse_line("CreateSheet Notes") == CreateSheet(sheet="Notes")


def test_negative_index_is_a_parse_error():
    with pytest.raises(ParseFailure):
        parse_line("InsertRow Sheet1 -1")


def test_apply_format_attributes():
    op = parse_line("ApplyFormat Sheet1 A1:C1 bold=true fill=yellow size=12")
    assert isinstance(op, ApplyFormat)
    assert op.style.bold is True
    assert op.style.fill_color == "FFFF00"
    assert op.style.font_size == 12.0
    assert op.style.italic is None


def test_apply_format_number_style():
    op = parse_line("ApplyFormat Sheet1 C2:C5 style=currency decimals=0")
    assert op.style.number_format == "$#,##0"


def test_apply_format_without_attributes_fails():
    with pytest.raises(ParseFailure):
        parse_line("ApplyFormat Sheet1 A1")


def test_unknown_style_attribute():
    with pytest.raises(ParseFailure, match="unknown style attribute"):
        parse_line("ApplyFormat Sheet1 A1 sparkle=true")


def test_cell_ref_limits():
    assert parse_cell_ref("$AA$10") == (9, 26)
    with pytest.raises(ParseFailure):
        parse_cell_ref("A0")
    with pytest.raises(ParseFailure):
        parse_cell_ref("ZZZZ1")


def test_batch_keeps_order_and_collects_errors():
    text = "\n".join([
        "SetCell Sheet1 A1 = 1",
        "Make it pretty please",
        "",
        "```",
        "- SetCell Sheet1 A2 = 2",
        "```",
    ])
    result = parse_operations(text)
    assert [op.row for op in result.operations] == [0, 1]
    assert result.line_numbers == [1, 5]
    assert len(result.errors) == 1
    assert result.errors[0].line_no == 2
    assert result.errors[0].raw_line == "Make it pretty please"
    assert "unknown action" in result.errors[0].reason


def test_batch_limit():
    text = "\n".join(f"SetCell Sheet1 A{i} = {i}" for i in range(1, 5))
    result = parse_operations(text, max_operations=2)
    assert len(result.operations) == 2
    assert len(result.errors) == 2
    assert "limit" in result.errors[0].reason


def test_to_line_reads_back():
    for line in [
        'SetCell "My Sheet" A1 = "007"',
        "SetRange Sheet1 A1:B1 = x, true",
        "ApplyFormat Sheet1 A1:B2 bold=true number_format=0.00",
        "DeleteRow Sheet1 3 1 force",
    ]:
        op = parse_line(line)
        assert parse_line(op.to_line()) == op
