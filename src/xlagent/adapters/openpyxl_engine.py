"""openpyxl-based conversion between .xlsx bytes and the Grid Model."""

from __future__ import annotations

from io import BytesIO

import openpyxl
from openpyxl.cell.cell import Cell as XlCell
from openpyxl.styles import Border, Font, PatternFill, Protection, Side
from openpyxl.styles.colors import Color
from openpyxl.styles.fonts import DEFAULT_FONT
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from xlagent.contracts.cells import Cell, CellFormat, CellValue
from xlagent.contracts.common import LoadError, SaveError
from xlagent.engine.grid import GridModel, Sheet


def _rgb(color: Color | None) -> str | None:
    """Six-digit hex for an explicit RGB color; theme and indexed colors read as None."""
    if color is None or color.type != "rgb" or not isinstance(color.rgb, str):
        return None
    rgb = color.rgb.upper()
    return rgb[2:] if len(rgb) == 8 else rgb


def _border_style(cell: XlCell) -> str | None:
    for side in (cell.border.left, cell.border.right, cell.border.top, cell.border.bottom):
        if side is not None and side.style:
            return side.style
    return None


def _format_from(cell: XlCell, protected: bool) -> CellFormat:
    locked = protected and bool(cell.protection.locked)
    if not cell.has_style:
        return CellFormat(locked=protected)
    font = cell.font
    fill = cell.fill
    return CellFormat(
        font_name=font.name if font.name and font.name != DEFAULT_FONT.name else None,
        font_size=float(font.sz) if font.sz and float(font.sz) != float(DEFAULT_FONT.sz) else None,
        bold=bool(font.b),
        italic=bool(font.i),
        font_color=_rgb(font.color),
        fill_color=_rgb(fill.fgColor) if fill.fill_type == "solid" else None,
        number_format=cell.number_format or "General",
        border=_border_style(cell),
        locked=locked,
    )


def _read_sheet(ws: Worksheet) -> Sheet:
    protected = bool(ws.protection.sheet)
    # openpyxl reports an empty sheet as 1x1.
    sheet = Sheet(ws.title, ws.max_row, ws.max_column, protected=protected)
    for row in ws.iter_rows():
        for xc in row:
            if xc.value is None and not xc.has_style:
                continue
            cell = Cell(value=CellValue.from_python(xc.value), format=_format_from(xc, protected))
            sheet.put(xc.row - 1, xc.column - 1, cell)
    return sheet


def load_grid(data: bytes) -> GridModel:
    """Read .xlsx bytes into a Grid Model. Chart sheets are skipped."""
    try:
        wb = openpyxl.load_workbook(BytesIO(data))
    except Exception as e:
        raise LoadError(f"Cannot open workbook: {e}") from e
    try:
        return GridModel(_read_sheet(ws) for ws in wb.worksheets)
    finally:
        wb.close()


def _write_format(xc: XlCell, fmt: CellFormat, protected: bool) -> None:
    if fmt.font_name or fmt.font_size or fmt.bold or fmt.italic or fmt.font_color:
        xc.font = Font(
            name=fmt.font_name or DEFAULT_FONT.name,
            sz=fmt.font_size or DEFAULT_FONT.sz,
            b=fmt.bold,
            i=fmt.italic,
            color=fmt.font_color,
        )
    if fmt.fill_color:
        xc.fill = PatternFill(fill_type="solid", fgColor=fmt.fill_color)
    if fmt.border and fmt.border != "none":
        side = Side(style=fmt.border)
        xc.border = Border(left=side, right=side, top=side, bottom=side)
    if fmt.number_format != "General":
        xc.number_format = fmt.number_format
    if protected:
        xc.protection = Protection(locked=fmt.locked)


def save_grid(grid: GridModel) -> bytes:
    """Write a Grid Model out as .xlsx bytes.

    The workbook is rebuilt from the grid, so parts the grid does not model
    (charts, images, merged cells, conditional formats) are not carried over.
    """
    if len(grid) == 0:
        raise SaveError("Cannot save a workbook with no sheets")
    wb = Workbook()
    wb.remove(wb.active)
    try:
        for sheet in grid:
            ws = wb.create_sheet(sheet.name)
            for row, col, cell in sheet.iter_cells():
                xc = ws.cell(row=row + 1, column=col + 1)
                if not cell.value.is_empty:
                    xc.value = cell.value.to_python()
                _write_format(xc, cell.format, sheet.protected)
            if sheet.row_count and sheet.column_count:
                # Touch the far corner so the bounds survive a reload.
                ws.cell(row=sheet.row_count, column=sheet.column_count)
            if sheet.protected:
                ws.protection.sheet = True
        buf = BytesIO()
        wb.save(buf)
    except (ValueError, TypeError) as e:
        raise SaveError(f"Cannot write workbook: {e}") from e
    finally:
        wb.close()
    return buf.getvalue()
