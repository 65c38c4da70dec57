from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from compras.db import create_engine_from_url, init_db, make_session_factory
from compras.errors import CsvImportError
from compras.price_import import IMPORT_PURCHASE, IMPORT_SALE
from compras.services import PriceImportService
from compras.settings import Settings


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Importa una lista de precios (CSV o XLSX)")
    p.add_argument("path", help="Archivo .csv o .xlsx")
    p.add_argument("--type", dest="import_type", choices=[IMPORT_PURCHASE, IMPORT_SALE], default=IMPORT_PURCHASE)
    p.add_argument("--dry-run", action="store_true", help="Solo informar, sin actualizar precios")
    args = p.parse_args(argv)

    settings = Settings()
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    settings.ensure_instance()

    engine = create_engine_from_url(settings.DATABASE_URL)
    init_db(engine)
    sf = make_session_factory(engine)

    service = PriceImportService(sf, settings)
    try:
        result = service.import_file(Path(args.path), args.import_type, dry_run=args.dry_run)
    except CsvImportError as e:
        print("error:", e)
        return 1

    for line in result.report_lines():
        print(line)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
