from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping

from sqlalchemy.orm import Session, sessionmaker

from compras.autosave import AutosaveCoordinator, AutosavePolicy, NotifyFn
from compras.db import session_scope
from compras.errors import CsvImportError, OrderBuildError, ValidationError
from compras.excel_export import ExportRow, export_order_to_excel
from compras.excel_prices import read_price_rows
from compras.money import money
from compras.orders import STATUS_COMPLETED, STATUS_PENDING, NewOrder, create_order, validate_order
from compras.price_import import IMPORT_PURCHASE, ImportResult, reconcile, reconcile_rows
from compras.recipes import calculate_fixed_cost_percentage, calculate_recipe_costs, update_dependent_recipes
from compras.repos import (
    OrderRecord,
    OrderRepo,
    ProductRepo,
    ProviderRepo,
    RecipeRepo,
    order_record,
    product_info,
    provider_info,
    recipe_info,
)
from compras.settings import Settings
from compras.tipos import ProductInfo, ProviderInfo, RecipeInfo, RecipeMaterialInfo
from compras.validation import validate_product, validate_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    ok: bool
    error: str | None = None
    order_id: str | None = None
    total: Decimal | None = None


def _read_text(path: Path) -> str:
    raw = path.read_bytes()
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        # Older accounting exports are Windows-1252.
        return raw.decode("cp1252", errors="replace")


class PriceImportService:
    """Runs a price-list import against the database.

    Each product/recipe write gets its own transaction, in file order; an error
    on one write leaves the earlier ones applied.
    """

    def __init__(self, session_factory: sessionmaker[Session], settings: Settings | None = None):
        self._session_factory = session_factory
        self._settings = settings or Settings()

    def _update_product(self, product_id: str, fields: dict) -> None:
        with session_scope(self._session_factory) as session:
            ProductRepo(session).update_product(product_id, fields)

    def _update_recipe(self, recipe_id: str, fields: dict) -> None:
        with session_scope(self._session_factory) as session:
            RecipeRepo(session).update_recipe(recipe_id, fields)

    def _snapshots(self):
        with session_scope(self._session_factory) as session:
            return (
                ProductRepo(session).snapshots(),
                ProviderRepo(session).snapshots(),
                RecipeRepo(session).snapshots(),
            )

    def _callbacks(self, dry_run: bool) -> dict:
        if dry_run:
            return {"update_product": None, "update_recipe": None}
        return {"update_product": self._update_product, "update_recipe": self._update_recipe}

    def import_text(self, content: str, import_type: str = IMPORT_PURCHASE, *, dry_run: bool = False) -> ImportResult:
        products, providers, recipes = self._snapshots()
        return reconcile(
            content,
            products,
            providers,
            recipes,
            import_type,
            match_field=self._settings.PRICE_IMPORT_MATCH_FIELD,
            **self._callbacks(dry_run),
        )

    def import_rows(self, rows: list[list[str]], import_type: str = IMPORT_PURCHASE, *, dry_run: bool = False) -> ImportResult:
        products, providers, recipes = self._snapshots()
        return reconcile_rows(
            rows,
            products,
            providers,
            recipes,
            import_type,
            match_field=self._settings.PRICE_IMPORT_MATCH_FIELD,
            **self._callbacks(dry_run),
        )

    def import_file(self, path: Path, import_type: str = IMPORT_PURCHASE, *, dry_run: bool = False) -> ImportResult:
        p = Path(path)
        if not p.exists():
            raise CsvImportError(f"Archivo no encontrado: {p}")
        if p.suffix.lower() in (".xlsx", ".xlsm"):
            rows = read_price_rows(p, self._settings.EXCEL_WORKSHEET_NAME or None)
            return self.import_rows(rows, import_type, dry_run=dry_run)
        return self.import_text(_read_text(p), import_type, dry_run=dry_run)


class OrderService:
    def __init__(self, session_factory: sessionmaker[Session], settings: Settings | None = None):
        self._session_factory = session_factory
        self._settings = settings or Settings()

    def catalog(self, provider_id: str) -> list[ProductInfo]:
        with session_scope(self._session_factory) as session:
            return ProductRepo(session).snapshots(provider_id=provider_id)

    def build(self, provider_id: str, selection: Mapping[str, float | int | Decimal]) -> NewOrder:
        return create_order(provider_id, selection, self.catalog(provider_id))

    def save(self, order: NewOrder, order_id: str | None = None) -> str:
        with session_scope(self._session_factory) as session:
            return OrderRepo(session).save_order(order, order_id)

    def submit(
        self,
        provider_id: str,
        selection: Mapping[str, float | int | Decimal],
        order_id: str | None = None,
    ) -> SubmitResult:
        """Build, validate against the live catalog and persist an order."""
        products = self.catalog(provider_id) if provider_id else []
        try:
            order = create_order(provider_id, selection, products)
        except OrderBuildError as e:
            return SubmitResult(ok=False, error=str(e))

        error = validate_order(order, products)
        if error:
            logger.info("Orden rechazada: %s", error)
            return SubmitResult(ok=False, error=error)

        saved_id = self.save(order, order_id)
        logger.info("Orden %s guardada (%s líneas, total %s)", saved_id, len(order.items), order.total)
        return SubmitResult(ok=True, order_id=saved_id, total=order.total)

    def autosave_session(
        self,
        *,
        order_id: str | None = None,
        policy: AutosavePolicy | None = None,
        notify: NotifyFn | None = None,
    ) -> AutosaveCoordinator:
        """Coordinator whose first save creates the order and later saves overwrite it."""
        current_id = order_id

        async def _save(order: NewOrder) -> str:
            nonlocal current_id
            current_id = await asyncio.to_thread(self.save, order, current_id)
            return current_id

        return AutosaveCoordinator(_save, policy=policy or self._settings.autosave_policy(), notify=notify)

    def list(self, *, status: str | None = None, provider_id: str | None = None, limit: int = 200) -> list[OrderRecord]:
        with session_scope(self._session_factory) as session:
            return OrderRepo(session).records(status=status, provider_id=provider_id, limit=limit)

    def get(self, order_id: str) -> OrderRecord:
        with session_scope(self._session_factory) as session:
            return order_record(OrderRepo(session).get(order_id))

    def complete(self, order_id: str) -> None:
        with session_scope(self._session_factory) as session:
            OrderRepo(session).set_status(order_id, STATUS_COMPLETED)

    def reopen(self, order_id: str) -> None:
        with session_scope(self._session_factory) as session:
            OrderRepo(session).set_status(order_id, STATUS_PENDING)

    def delete(self, order_id: str) -> None:
        with session_scope(self._session_factory) as session:
            OrderRepo(session).delete(order_id)

    def export_to_excel(self, order_id: str, xlsx_path: Path) -> int:
        with session_scope(self._session_factory) as session:
            order = OrderRepo(session).get(order_id)
            provider = ProviderRepo(session).get(order.provider_id)
            products = ProductRepo(session)
            rows: list[ExportRow] = []
            for ln in order.lines:
                p = products.get(ln.product_id)
                rows.append(
                    ExportRow(
                        sku=p.sku,
                        product=p.name,
                        packaging=p.purchase_packaging or "",
                        quantity=Decimal(str(ln.quantity)),
                        price=Decimal(str(ln.price)),
                        subtotal=Decimal(str(ln.subtotal)),
                    )
                )
            provider_name = provider.commercial_name
            order_date = order.date.strftime("%d/%m/%Y")
            total = Decimal(str(order.total))

        return export_order_to_excel(
            xlsx_path=xlsx_path,
            worksheet_name=f"PEDIDO {order_id}",
            provider_name=provider_name,
            order_date=order_date,
            rows=rows,
            total=total,
        )


class ProviderService:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def list(self) -> list[ProviderInfo]:
        with session_scope(self._session_factory) as session:
            return ProviderRepo(session).snapshots()

    def save_provider(self, data: Mapping, provider_id: str | None = None) -> ProviderInfo:
        """Validate and store a provider; a RUT may belong to one provider only."""
        error = validate_provider(data)
        if error is not None:
            raise error

        with session_scope(self._session_factory) as session:
            repo = ProviderRepo(session)
            rut = str(data.get("rut") or "").strip()
            if rut:
                other = repo.find_by_rut(rut)
                if other is not None and str(other.id) != str(provider_id):
                    raise ValidationError("Ya existe un proveedor con ese RUT", "rut")

            fields = {k: data[k] for k in ProviderRepo.FIELDS if k in data}
            fields["commercial_name"] = str(data["commercial_name"]).strip()
            if "rut" in fields:
                fields["rut"] = rut or None
            if provider_id in (None, ""):
                row = repo.create(**fields)
            else:
                row = repo.update(provider_id, fields)
            saved = provider_info(row)

        logger.info("Proveedor %s guardado (id %s)", saved.commercial_name, saved.id)
        return saved


@dataclass(frozen=True)
class PriceChange:
    kind: str
    old_price: Decimal
    new_price: Decimal
    date: datetime

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "old_price": float(self.old_price),
            "new_price": float(self.new_price),
            "date": self.date.isoformat(),
        }


class ProductService:
    _INTEGER_FIELDS = ("order", "min_package_stock", "desired_stock")

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def _fields(self, data: Mapping) -> dict:
        fields = {k: data[k] for k in ProductRepo.FIELDS if k in data}
        for k in ("name", "sku", "purchase_packaging"):
            fields[k] = str(data[k]).strip()
        for k in self._INTEGER_FIELDS:
            fields[k] = int(Decimal(str(data[k])))
        fields["price"] = money(data["price"])
        if fields.get("price_per_unit") not in (None, ""):
            fields["price_per_unit"] = Decimal(str(fields["price_per_unit"]))
        else:
            fields.pop("price_per_unit", None)
        return fields

    def save_product(self, data: Mapping, product_id: str | None = None) -> ProductInfo:
        """Validate and store a product; price changes on an existing product land in its history."""
        error = validate_product(data)
        if error is not None:
            raise error

        fields = self._fields(data)
        with session_scope(self._session_factory) as session:
            ProviderRepo(session).get(fields["provider_id"])
            repo = ProductRepo(session)
            if product_id in (None, ""):
                row = repo.create(**fields)
            else:
                row = repo.update_product(product_id, fields)
            saved = product_info(row)

        logger.info("Producto %s guardado (id %s, precio %s)", saved.sku, saved.id, saved.price)
        return saved

    def price_history(self, product_id: str) -> list[PriceChange]:
        with session_scope(self._session_factory) as session:
            return [
                PriceChange(kind=h.kind, old_price=money(h.old_price), new_price=money(h.new_price), date=h.created_at)
                for h in ProductRepo(session).price_history(product_id)
            ]


class RecipeService:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def fixed_cost_percentage(
        self,
        total_materials_cost,
        total_fixed_costs,
        total_sales=None,
        production_sales=None,
    ) -> Decimal:
        """Share of the month's fixed costs to load onto recipes, as a percentage of materials.

        When sales figures are given only the production share of the fixed
        costs counts: fixed costs * production sales / total sales.
        """
        fixed = Decimal(str(total_fixed_costs or 0))
        if total_sales is not None and production_sales is not None:
            total = Decimal(str(total_sales))
            production = Decimal(str(production_sales))
            if production > total:
                raise ValidationError(
                    "Las ventas de producción no pueden ser mayores que las ventas totales", "production_sales"
                )
            fixed = fixed * production / total if total > 0 else Decimal("0")
        return calculate_fixed_cost_percentage(Decimal(str(total_materials_cost or 0)), fixed)

    def save_recipe(
        self,
        fields: dict,
        materials: Iterable[RecipeMaterialInfo],
        recipe_id: str | None = None,
    ) -> RecipeInfo:
        """Cost a recipe from current material prices, store it, and re-cost recipes that use it."""
        if not str(fields.get("name") or "").strip():
            raise ValidationError("El nombre es requerido", "name")
        materials = list(materials)
        if any(Decimal(str(m.quantity)) <= 0 for m in materials):
            raise ValidationError("La cantidad debe ser mayor a 0", "materials")

        with session_scope(self._session_factory) as session:
            repo = RecipeRepo(session)
            products = ProductRepo(session).snapshots()
            recipes = repo.snapshots()

            previous = None
            if recipe_id not in (None, ""):
                previous = next((r.unit_cost for r in recipes if r.id == str(recipe_id)), None)
                if any(m.kind == "recipe" and m.id == str(recipe_id) for m in materials):
                    raise ValidationError("Una receta no puede usarse a sí misma", "materials")

            costs = calculate_recipe_costs(
                materials,
                products,
                recipes,
                Decimal(str(fields.get("yield_qty") or 1)),
                Decimal(str(fields.get("fixed_cost_percentage") or 0)),
                Decimal(str(fields.get("profit_percentage") or 0)),
                previous,
            )
            data = dict(fields)
            data.update(
                total_cost=costs.total_cost,
                unit_cost=costs.unit_cost,
                suggested_price=costs.suggested_price,
            )
            row = repo.save(data, materials, recipe_id)
            if costs.history_entry is not None:
                e = costs.history_entry
                repo.add_cost_history(row.id, e.unit_cost, e.change_percentage, e.date)
            saved = recipe_info(row)

            history: dict = {}
            others = [r for r in recipes if r.id != saved.id] + [saved]
            updated = update_dependent_recipes(others, products, saved.id, history=history)
            before = {r.id: r for r in others}
            for r in updated:
                old = before.get(r.id)
                if old is None or r.id == saved.id or old == r:
                    continue
                repo.update_recipe(
                    r.id,
                    {"total_cost": r.total_cost, "unit_cost": r.unit_cost, "suggested_price": r.suggested_price},
                )
                for e in history.get(r.id, []):
                    repo.add_cost_history(r.id, e.unit_cost, e.change_percentage, e.date)

            logger.info("Receta %s guardada: costo unitario %s", saved.name, saved.unit_cost)
            return saved
