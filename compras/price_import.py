from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Callable, Iterable

from compras.csv_parser import parse_csv_content
from compras.errors import CsvImportError
from compras.money import differs, money_es, parse_price
from compras.tipos import ProductInfo, ProviderInfo, RecipeInfo
from compras.validation import clean_rut

logger = logging.getLogger(__name__)

IMPORT_PURCHASE = "purchase"
IMPORT_SALE = "sale"

REQUIRED_HEADERS: dict[str, list[str]] = {
    IMPORT_PURCHASE: ["fecha", "rut", "codigo", "nombre", "precio"],
    IMPORT_SALE: ["codigo", "nombre", "contado"],
}

# Accounting exports name the description column "Artículo".
HEADER_ALIASES: dict[str, str] = {
    "articulo": "nombre",
}

MATCH_FIELDS = ("sku", "supplier_code")

_CODE_DECORATION_RE = re.compile(r"[°\[\]]")

UpdateFn = Callable[[str, dict], None]


@dataclass(frozen=True)
class UpdatedEntry:
    name: str
    old_price: Decimal
    new_price: Decimal
    csv_name: str
    kind: str = "product"


@dataclass(frozen=True)
class NotFoundEntry:
    code: str
    csv_name: str
    provider_rut: str | None = None


@dataclass(frozen=True)
class InvalidRow:
    row: int
    reason: str


@dataclass
class ImportResult:
    updated: int = 0
    errors: list[str] = field(default_factory=list)
    updated_products: list[UpdatedEntry] = field(default_factory=list)
    not_found_products: list[NotFoundEntry] = field(default_factory=list)
    invalid_rows: list[InvalidRow] = field(default_factory=list)

    def add_invalid(self, row: int, reason: str) -> None:
        self.invalid_rows.append(InvalidRow(row=row, reason=reason))
        self.errors.append(f"Fila {row}: {reason}")

    def to_dict(self) -> dict:
        def plain(entry) -> dict:
            out = asdict(entry)
            for k, v in out.items():
                if isinstance(v, Decimal):
                    out[k] = float(v)
            return out

        return {
            "updated": int(self.updated),
            "errors": list(self.errors),
            "details": {
                "updated_products": [plain(e) for e in self.updated_products],
                "not_found_products": [plain(e) for e in self.not_found_products],
                "invalid_rows": [plain(e) for e in self.invalid_rows],
            },
        }

    def report_lines(self) -> list[str]:
        """Human readable summary, prices in 12.345,67 form."""
        lines = [
            f"{e.name}: {money_es(e.old_price)} -> {money_es(e.new_price)} ({e.csv_name})" for e in self.updated_products
        ]
        lines += [f"no encontrado: {e.code} {e.csv_name}" for e in self.not_found_products]
        lines += [f"fila {e.row}: {e.reason}" for e in self.invalid_rows]
        lines.append(
            f"actualizados {self.updated}, no encontrados {len(self.not_found_products)}, inválidos {len(self.invalid_rows)}"
        )
        return lines


def normalize_header(value: str) -> str:
    s = str(value or "").strip().lower()
    s = unicodedata.normalize("NFD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return HEADER_ALIASES.get(s, s)


def clean_code(value: str) -> str:
    return _CODE_DECORATION_RE.sub("", str(value or "")).strip()


def _noop_update(_id: str, _fields: dict) -> None:
    return None


def reconcile(
    csv_text: str,
    products: Iterable[ProductInfo],
    providers: Iterable[ProviderInfo],
    recipes: Iterable[RecipeInfo],
    import_type: str = IMPORT_PURCHASE,
    *,
    update_product: UpdateFn | None = None,
    update_recipe: UpdateFn | None = None,
    match_field: str = "sku",
) -> ImportResult:
    """Compare a CSV price list against the catalog and apply the changed prices.

    ``update_product`` / ``update_recipe`` receive ``(id, fields)`` for every
    price that changed, one call at a time in file order. Without them the
    import is a dry run that only reports what would change.

    Raises CsvImportError for problems with the file as a whole. Problems with
    single rows are reported in the result and never stop the import.
    """
    if not (csv_text or "").strip():
        raise CsvImportError("El archivo está vacío")

    rows = parse_csv_content(csv_text)
    return reconcile_rows(
        rows,
        products,
        providers,
        recipes,
        import_type,
        update_product=update_product,
        update_recipe=update_recipe,
        match_field=match_field,
    )


def reconcile_rows(
    rows: list[list[str]],
    products: Iterable[ProductInfo],
    providers: Iterable[ProviderInfo],
    recipes: Iterable[RecipeInfo],
    import_type: str = IMPORT_PURCHASE,
    *,
    update_product: UpdateFn | None = None,
    update_recipe: UpdateFn | None = None,
    match_field: str = "sku",
) -> ImportResult:
    """Same as :func:`reconcile` for rows that were already split (CSV or XLSX)."""
    if import_type not in REQUIRED_HEADERS:
        raise CsvImportError(f"Tipo de importación inválido: {import_type}")
    if match_field not in MATCH_FIELDS:
        raise CsvImportError(f"Campo de coincidencia inválido: {match_field}")
    if len(rows) < 2:
        raise CsvImportError("No se encontraron datos para procesar")

    headers = [normalize_header(h) for h in rows[0]]
    required = REQUIRED_HEADERS[import_type]
    missing = [h for h in required if h not in headers]
    if missing:
        raise CsvImportError(f"Faltan las siguientes columnas: {', '.join(missing)}")

    col = {h: headers.index(h) for h in required}
    last_col = max(col.values())

    update_product = update_product or _noop_update
    update_recipe = update_recipe or _noop_update
    products = list(products)
    providers = list(providers)
    recipes = list(recipes)
    provider_by_rut = {clean_rut(p.rut): p for p in providers if p.rut and clean_rut(p.rut)}

    result = ImportResult()
    for index, values in enumerate(rows[1:]):
        row_no = index + 2

        if len(values) <= last_col:
            result.add_invalid(row_no, "Número incorrecto de columnas")
            continue

        code = clean_code(values[col["codigo"]])
        csv_name = values[col["nombre"]]
        if not code:
            result.add_invalid(row_no, "Código vacío")
            continue

        if import_type == IMPORT_PURCHASE:
            _reconcile_purchase_row(
                result,
                row_no=row_no,
                code=code,
                csv_name=csv_name,
                csv_rut=values[col["rut"]],
                raw_price=values[col["precio"]],
                products=products,
                provider_by_rut=provider_by_rut,
                update_product=update_product,
                match_field=match_field,
            )
        else:
            _reconcile_sale_row(
                result,
                row_no=row_no,
                code=code,
                csv_name=csv_name,
                raw_price=values[col["contado"]],
                products=products,
                recipes=recipes,
                update_product=update_product,
                update_recipe=update_recipe,
                match_field=match_field,
            )

    logger.info(
        "Importación de precios (%s): %s actualizados, %s no encontrados, %s filas inválidas",
        import_type,
        result.updated,
        len(result.not_found_products),
        len(result.invalid_rows),
    )
    return result


def _matching_products(products: list[ProductInfo], code: str, match_field: str) -> list[ProductInfo]:
    return [p for p in products if (getattr(p, match_field) or "") == code]


def _reconcile_purchase_row(
    result: ImportResult,
    *,
    row_no: int,
    code: str,
    csv_name: str,
    csv_rut: str,
    raw_price: str,
    products: list[ProductInfo],
    provider_by_rut: dict[str, ProviderInfo],
    update_product: UpdateFn,
    match_field: str,
) -> None:
    matching = _matching_products(products, code, match_field)
    provider = provider_by_rut.get(clean_rut(csv_rut)) if matching else None
    if provider is not None:
        matching = [p for p in matching if p.provider_id == provider.id]

    # Unknown code, unknown RUT, or a code that belongs to another provider.
    if not matching or provider is None:
        result.not_found_products.append(NotFoundEntry(code=code, csv_name=csv_name or "", provider_rut=csv_rut))
        return

    try:
        new_price = parse_price(raw_price)
    except ValueError as e:
        result.add_invalid(row_no, str(e))
        return

    for product in matching:
        current = product.price
        if not differs(current, new_price):
            continue
        update_product(product.id, {"price": new_price})
        result.updated += 1
        result.updated_products.append(
            UpdatedEntry(
                name=product.name,
                old_price=Decimal(str(current)),
                new_price=new_price,
                csv_name=csv_name or code,
                kind="product",
            )
        )


def _reconcile_sale_row(
    result: ImportResult,
    *,
    row_no: int,
    code: str,
    csv_name: str,
    raw_price: str,
    products: list[ProductInfo],
    recipes: list[RecipeInfo],
    update_product: UpdateFn,
    update_recipe: UpdateFn,
    match_field: str,
) -> None:
    matching = _matching_products(products, code, match_field)
    matching_recipes = [r for r in recipes if (r.sku or "") == code]
    if not matching and not matching_recipes:
        result.not_found_products.append(NotFoundEntry(code=code, csv_name=csv_name or ""))
        return

    try:
        new_price = parse_price(raw_price)
    except ValueError as e:
        result.add_invalid(row_no, str(e))
        return

    for product in matching:
        current = product.sale_price or Decimal("0")
        if not differs(current, new_price):
            continue
        update_product(product.id, {"sale_price": new_price, "for_sale": True})
        result.updated += 1
        result.updated_products.append(
            UpdatedEntry(
                name=product.name,
                old_price=Decimal(str(current)),
                new_price=new_price,
                csv_name=csv_name or code,
                kind="product",
            )
        )

    for recipe in matching_recipes:
        current = recipe.sale_price or Decimal("0")
        if not differs(current, new_price):
            continue
        update_recipe(recipe.id, {"sale_price": new_price, "for_sale": True})
        result.updated += 1
        result.updated_products.append(
            UpdatedEntry(
                name=recipe.name,
                old_price=Decimal(str(current)),
                new_price=new_price,
                csv_name=csv_name or code,
                kind="recipe",
            )
        )
