from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from openpyxl import load_workbook

from compras.errors import CsvImportError


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float):
        # Keep prices like 1500.0 looking like the CSV export ("1500").
        if value.is_integer():
            return str(int(value))
        return str(Decimal(str(value)))
    if isinstance(value, (datetime, date)):
        return value.strftime("%d/%m/%Y")
    return str(value).strip()


def read_price_rows(xlsx_path: Path, worksheet_name: str | None = None) -> list[list[str]]:
    """Read a price list workbook into the same row shape the CSV parser produces.

    Uses the named worksheet when present, otherwise the first one. Empty rows
    are dropped and empty trailing cells are trimmed.
    """
    p = Path(xlsx_path)
    if not p.exists():
        raise CsvImportError(f"Archivo no encontrado: {p}")

    try:
        # read_only=True avoids creating cell objects for big exports.
        wb = load_workbook(filename=p, data_only=True, read_only=True)
    except Exception as e:
        raise CsvImportError(
            "Error al procesar el archivo Excel. Verifique que el archivo tenga el formato correcto y no esté dañado."
        ) from e

    try:
        if not wb.sheetnames:
            raise CsvImportError("El archivo Excel está vacío o no tiene hojas")

        wanted = (worksheet_name or "").strip().casefold()
        name = next((n for n in wb.sheetnames if wanted and n.strip().casefold() == wanted), wb.sheetnames[0])
        ws = wb[name]

        rows: list[list[str]] = []
        for row_vals in ws.iter_rows(values_only=True):
            cells = [_cell_text(v) for v in (row_vals or ())]
            while cells and not cells[-1]:
                cells.pop()
            if any(cells):
                rows.append(cells)
        return rows
    finally:
        wb.close()
