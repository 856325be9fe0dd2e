"""Tests for loading and saving workbook files."""

from __future__ import annotations

from pathlib import Path

import pytest
from openpyxl import Workbook

from xlagent.contracts.cells import CellValue
from xlagent.contracts.common import FingerprintConflictError, LoadError
from xlagent.engine.context import DocumentContext, create_workbook
from xlagent.io.fileops import fingerprint


def test_create_workbook(tmp_path: Path):
    path = create_workbook(tmp_path / "new.xlsx", ["Revenue", "Summary"])
    ctx = DocumentContext(path)
    assert ctx.grid.sheet_names == ["Revenue", "Summary"]
    assert ctx.fp == fingerprint(path)


def test_create_refuses_existing(sales_workbook: Path):
    with pytest.raises(FileExistsError):
        create_workbook(sales_workbook)


def test_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        DocumentContext(tmp_path / "missing.xlsx")


def test_corrupt_file(tmp_path: Path):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"PK\x03\x04garbage")
    with pytest.raises(LoadError):
        DocumentContext(path)


def test_save_updates_fingerprint(sales_workbook: Path):
    ctx = DocumentContext(sales_workbook)
    old = ctx.fp
    ctx.grid.set_cell("Sales", 1, 2, CellValue.number(1234))
    info = ctx.save()

    assert info["fingerprint"] == fingerprint(sales_workbook)
    assert info["fingerprint"] != old
    assert info["backup"] is None
    assert DocumentContext(sales_workbook).grid.get_cell("Sales", 1, 2).value == CellValue.number(1234)


def test_save_with_backup(sales_workbook: Path):
    original = sales_workbook.read_bytes()
    ctx = DocumentContext(sales_workbook)
    ctx.grid.set_cell("Sales", 0, 0, CellValue.text("Area"))
    info = ctx.save(make_backup=True)

    backup = Path(info["backup"])
    assert backup.exists()
    assert backup.read_bytes() == original


def test_save_refuses_when_file_changed(sales_workbook: Path):
    ctx = DocumentContext(sales_workbook)
    wb = Workbook()
    wb.active["A1"] = "someone else"
    wb.save(str(sales_workbook))

    with pytest.raises(FingerprintConflictError):
        ctx.save()


def test_save_to_other_path(sales_workbook: Path, tmp_path: Path):
    ctx = DocumentContext(sales_workbook)
    out = tmp_path / "copy.xlsx"
    info = ctx.save(out)
    assert info["path"] == str(out.resolve())
    assert ctx.fp == fingerprint(sales_workbook)


def test_policy_is_discovered_next_to_workbook(sales_workbook: Path, policy_file: Path):
    ctx = DocumentContext(sales_workbook)
    sales = ctx.grid.sheet("Sales")
    assert ctx.max_operations == 20
    assert sales.column_types == {0: "text", 2: "number"}
    assert sales.header_rows == 1
    assert sales.is_locked(0, 0)
    assert ctx.policy_warnings == []


def test_policy_discovery_can_be_disabled(sales_workbook: Path, policy_file: Path):
    ctx = DocumentContext(sales_workbook, discover_policy=False)
    assert ctx.policy is None
    assert ctx.grid.sheet("Sales").column_types == {}
