"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Protection

from xlagent.contracts.cells import CellRange, CellValue
from xlagent.engine.grid import GridModel, Sheet


class FakeClient:
    """Model client stand-in returning canned operation text."""

    def __init__(self, response: str = "", *, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    async def query(self, instruction: str, document_summary: str) -> str:
        self.calls.append((instruction, document_summary))
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def grid() -> GridModel:
    """In-memory grid: one 3x3 sheet with a header row."""
    sheet = Sheet("Sheet1", 3, 3)
    sheet.set_range(
        CellRange(first_row=0, first_col=0, last_row=2, last_col=2),
        [
            [CellValue.text("Name"), CellValue.text("Qty"), CellValue.text("Price")],
            [CellValue.text("Apple"), CellValue.number(3), CellValue.number(1.5)],
            [CellValue.text("Pear"), CellValue.number(5), CellValue.number(2.25)],
        ],
    )
    return GridModel([sheet])


@pytest.fixture()
def sales_workbook(tmp_path: Path) -> Path:
    """Workbook with a styled Sales sheet and a Summary sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Sales"

    ws.append(["Region", "Product", "Sales"])
    ws.append(["North", "Widget", 1000])
    ws.append(["South", "Widget", 1500])
    ws.append(["East", "Gadget", 2000])
    ws.append(["West", "Gadget", 800])
    for cell in ws[1]:
        cell.font = Font(bold=True)
    ws["C2"].number_format = "#,##0"
    ws["A5"].fill = PatternFill(fill_type="solid", fgColor="FFFF00")

    ws2 = wb.create_sheet("Summary")
    ws2["A1"] = "Total Sales"
    ws2["B1"] = "=SUM(Sales!C2:C5)"

    path = tmp_path / "sales.xlsx"
    wb.save(str(path))
    return path


@pytest.fixture()
def protected_workbook(tmp_path: Path) -> Path:
    """Protected sheet where only B2:B3 are unlocked for input."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Form"
    ws["A1"] = "Field"
    ws["B1"] = "Value"
    ws["A2"] = "Name"
    ws["A3"] = "Age"
    ws["B2"].protection = Protection(locked=False)
    ws["B3"].protection = Protection(locked=False)
    ws.protection.sheet = True

    path = tmp_path / "form.xlsx"
    wb.save(str(path))
    return path


@pytest.fixture()
def policy_file(tmp_path: Path) -> Path:
    """Policy beside the sales workbook: typed Sales columns, a locked header."""
    path = tmp_path / "xlagent-policy.yaml"
    path.write_text(
        "locked_ranges:\n"
        '  - "Sales!A1:C1"\n'
        "column_types:\n"
        "  Sales:\n"
        "    A: text\n"
        "    C: number\n"
        "header_rows:\n"
        "  Sales: 1\n"
        "max_operations: 20\n"
    )
    return path
