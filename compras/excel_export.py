from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from openpyxl import Workbook, load_workbook


@dataclass(frozen=True)
class ExportRow:
    sku: str
    product: str
    packaging: str
    quantity: Decimal
    price: Decimal
    subtotal: Decimal


HEADERS = ["CODIGO", "PRODUCTO", "EMPAQUE", "CANTIDAD", "PRECIO", "SUBTOTAL"]


def export_order_to_excel(
    *,
    xlsx_path: Path,
    worksheet_name: str,
    provider_name: str,
    order_date: str,
    rows: list[ExportRow],
    total: Decimal,
) -> int:
    """Write one order to its own worksheet, replacing a sheet with the same name.

    Other sheets of an existing workbook are preserved. Returns number of lines written.
    """
    p = Path(xlsx_path).expanduser().resolve()
    if p.suffix.lower() != ".xlsx":
        raise RuntimeError("El archivo debe ser .xlsx")

    if p.exists():
        wb = load_workbook(filename=p)
    else:
        wb = Workbook()
        # Drop the default empty sheet; ours is created below.
        wb.remove(wb.active)

    title = (worksheet_name or "PEDIDO").strip()[:31] or "PEDIDO"
    for existing in list(wb.sheetnames):
        if existing.strip().casefold() == title.casefold():
            wb.remove(wb[existing])
    ws = wb.create_sheet(title=title)

    ws.cell(row=1, column=1, value="PROVEEDOR")
    ws.cell(row=1, column=2, value=str(provider_name or ""))
    ws.cell(row=2, column=1, value="FECHA")
    ws.cell(row=2, column=2, value=str(order_date or ""))

    for c, h in enumerate(HEADERS, start=1):
        ws.cell(row=4, column=c, value=h)

    write_row = 5
    for r in rows:
        ws.cell(row=write_row, column=1, value=str(r.sku or "").strip())
        ws.cell(row=write_row, column=2, value=str(r.product or "").strip())
        ws.cell(row=write_row, column=3, value=str(r.packaging or "").strip())
        ws.cell(row=write_row, column=4, value=float(r.quantity))
        ws.cell(row=write_row, column=5, value=float(r.price))
        ws.cell(row=write_row, column=6, value=float(r.subtotal))
        write_row += 1

    ws.cell(row=write_row + 1, column=5, value="TOTAL")
    ws.cell(row=write_row + 1, column=6, value=float(total))

    wb.save(p)
    return len(rows)
