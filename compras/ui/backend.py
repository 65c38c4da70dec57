from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

from compras.analytics import dashboard_stats
from compras.db import session_scope
from compras.errors import CompraError
from compras.repos import OrderRepo, ProductRepo, ProviderRepo
from compras.services import OrderService, PriceImportService, ProductService, ProviderService, RecipeService
from compras.settings import Settings
from compras.tipos import RecipeMaterialInfo


def _selection(items) -> dict[str, Decimal]:
    out: dict[str, Decimal] = {}
    if isinstance(items, dict):
        pairs = items.items()
    else:
        pairs = ((it.get("product_id"), it.get("quantity")) for it in (items or []) if isinstance(it, dict))
    for pid, qty in pairs:
        if pid in (None, ""):
            continue
        try:
            d = Decimal(str(qty))
        except (InvalidOperation, ValueError):
            raise CompraError(f"Cantidad inválida para el producto {pid}") from None
        if not d.is_finite():
            raise CompraError(f"Cantidad inválida para el producto {pid}")
        out[str(pid)] = d
    return out


def _amount(value) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise CompraError("Valores inválidos") from None
    if not d.is_finite() or d < 0:
        raise CompraError("Valores inválidos")
    return d


class ComprasBackend:
    """JSON-friendly facade used by the HTTP layer.

    Every method returns plain dicts/lists; domain errors become
    ``{"ok": False, "error": ...}``.
    """

    def __init__(self, session_factory, settings: Settings):
        self._session_factory = session_factory
        self._settings = settings
        self.orders = OrderService(session_factory, settings)
        self.prices = PriceImportService(session_factory, settings)
        self.recipes = RecipeService(session_factory)
        self.providers = ProviderService(session_factory)
        self.products = ProductService(session_factory)

    def getAppInfo(self) -> dict:
        return {"ok": True, "app": self._settings.APP_NAME, "match_field": self._settings.PRICE_IMPORT_MATCH_FIELD}

    def getProviders(self) -> list[dict]:
        return [
            {
                "id": p.id,
                "commercial_name": p.commercial_name,
                "rut": p.rut,
                "phone": p.phone,
                "delivery_days": sorted(p.delivery_days),
                "order_days": sorted(p.order_days),
            }
            for p in self.providers.list()
        ]

    def getProducts(self, provider_id=None, q: str = "") -> list[dict]:
        with session_scope(self._session_factory) as session:
            rows = ProductRepo(session).list(provider_id=provider_id, q=q)
            return [
                {
                    "id": str(r.id),
                    "name": r.name,
                    "sku": r.sku,
                    "provider_id": str(r.provider_id),
                    "price": float(r.price),
                    "sale_price": float(r.sale_price) if r.sale_price is not None else None,
                    "order": int(r.order or 0),
                    "purchase_packaging": r.purchase_packaging,
                }
                for r in rows
            ]

    def importPrices(self, content: str, import_type: str = "purchase", dry_run: bool = False) -> dict:
        try:
            res = self.prices.import_text(content or "", (import_type or "purchase").strip().lower(), dry_run=bool(dry_run))
        except CompraError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, **res.to_dict()}

    def importPricesFile(self, path: Path, import_type: str = "purchase", dry_run: bool = False) -> dict:
        try:
            res = self.prices.import_file(path, (import_type or "purchase").strip().lower(), dry_run=bool(dry_run))
        except CompraError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, **res.to_dict()}

    def createOrder(self, provider_id, items, order_id=None) -> dict:
        try:
            selection = _selection(items)
            res = self.orders.submit(str(provider_id or ""), selection, order_id or None)
        except CompraError as e:
            return {"ok": False, "error": str(e)}
        if not res.ok:
            return {"ok": False, "error": res.error}
        return {"ok": True, "order_id": res.order_id, "total": float(res.total)}

    def listOrders(self, status: str | None = None, provider_id=None, limit: int = 200) -> list[dict]:
        return [o.to_dict() for o in self.orders.list(status=status or None, provider_id=provider_id, limit=limit)]

    def _order_action(self, action, order_id) -> dict:
        if order_id in (None, ""):
            return {"ok": False, "error": "Orden inválida"}
        try:
            action(str(order_id))
        except CompraError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True}

    def completeOrder(self, order_id) -> dict:
        return self._order_action(self.orders.complete, order_id)

    def reopenOrder(self, order_id) -> dict:
        return self._order_action(self.orders.reopen, order_id)

    def deleteOrder(self, order_id) -> dict:
        return self._order_action(self.orders.delete, order_id)

    def getSummary(self, limit: int = 5) -> dict:
        with session_scope(self._session_factory) as session:
            orders = OrderRepo(session).records(limit=5000)
            products = ProductRepo(session).snapshots()
            providers = ProviderRepo(session).snapshots()
            today = OrderRepo(session).count_for_day(datetime.utcnow().date().isoformat())
        stats = dashboard_stats(orders, products, providers, limit=int(limit or 5))
        stats["today_orders"] = today
        return {"ok": True, **stats}

    def saveRecipe(self, data: dict) -> dict:
        data = dict(data or {})
        recipe_id = data.pop("id", None)
        try:
            materials = [
                RecipeMaterialInfo(
                    id=str(m.get("id")),
                    kind=str(m.get("kind") or "product"),
                    quantity=Decimal(str(m.get("quantity"))),
                    unit=str(m.get("unit") or ""),
                )
                for m in (data.pop("materials", None) or [])
            ]
        except (InvalidOperation, ValueError, AttributeError):
            return {"ok": False, "error": "Materiales inválidos"}

        try:
            saved = self.recipes.save_recipe(data, materials, recipe_id)
        except CompraError as e:
            return {"ok": False, "error": str(e)}
        return {
            "ok": True,
            "id": saved.id,
            "total_cost": float(saved.total_cost),
            "unit_cost": float(saved.unit_cost),
            "suggested_price": float(saved.suggested_price),
        }

    def saveProvider(self, data: dict) -> dict:
        data = dict(data or {})
        provider_id = data.pop("id", None)
        try:
            saved = self.providers.save_provider(data, provider_id)
        except CompraError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "id": saved.id}

    def saveProduct(self, data: dict) -> dict:
        data = dict(data or {})
        product_id = data.pop("id", None)
        try:
            saved = self.products.save_product(data, product_id)
        except CompraError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "id": saved.id, "price": float(saved.price)}

    def getPriceHistory(self, product_id) -> dict:
        if product_id in (None, ""):
            return {"ok": False, "error": "Producto inválido"}
        try:
            history = self.products.price_history(str(product_id))
        except CompraError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "history": [h.to_dict() for h in history]}

    def getFixedCostPercentage(self, data: dict) -> dict:
        data = data or {}
        try:
            keys = ("total_materials_cost", "total_fixed_costs", "total_sales", "production_sales")
            values = {k: _amount(data.get(k)) for k in keys}
            pct = self.recipes.fixed_cost_percentage(**values)
        except CompraError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "percentage": float(pct)}
