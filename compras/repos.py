from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from compras.errors import NotFoundError
from compras.models import (
    Order,
    OrderLine,
    PriceHistory,
    Product,
    Provider,
    Recipe,
    RecipeCostHistory,
    RecipeMaterial,
)
from compras.money import differs, money
from compras.orders import ORDER_STATUSES, NewOrder
from compras.tipos import ProductInfo, ProviderInfo, RecipeInfo, RecipeMaterialInfo
from compras.validation import clean_rut


def _id(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise NotFoundError(f"Id inválido: {value!r}") from None


def _dec(value: Any) -> Decimal | None:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


def product_info(p: Product) -> ProductInfo:
    return ProductInfo(
        id=str(p.id),
        name=p.name,
        sku=p.sku,
        provider_id=str(p.provider_id),
        price=money(p.price),
        order=int(p.order or 0),
        supplier_code=p.supplier_code,
        purchase_packaging=p.purchase_packaging or "",
        sale_price=money(p.sale_price) if p.sale_price is not None else None,
        for_sale=bool(p.for_sale),
        price_per_unit=_dec(p.price_per_unit),
        min_package_stock=int(p.min_package_stock or 0),
        desired_stock=int(p.desired_stock or 0),
        tags=frozenset(p.tags or []),
    )


def provider_info(p: Provider) -> ProviderInfo:
    return ProviderInfo(
        id=str(p.id),
        commercial_name=p.commercial_name,
        rut=p.rut,
        phone=p.phone,
        legal_name=p.legal_name,
        delivery_days=frozenset(p.delivery_days or []),
        order_days=frozenset(p.order_days or []),
    )


def recipe_info(r: Recipe) -> RecipeInfo:
    return RecipeInfo(
        id=str(r.id),
        name=r.name,
        sku=r.sku,
        sale_price=money(r.sale_price) if r.sale_price is not None else None,
        for_sale=bool(r.for_sale),
        yield_qty=_dec(r.yield_qty) or Decimal("1"),
        yield_unit=r.yield_unit or "",
        fixed_cost_percentage=_dec(r.fixed_cost_percentage) or Decimal("0"),
        profit_percentage=_dec(r.profit_percentage) or Decimal("0"),
        total_cost=money(r.total_cost),
        unit_cost=money(r.unit_cost),
        suggested_price=money(r.suggested_price),
        materials=tuple(
            RecipeMaterialInfo(id=str(m.material_id), kind=m.kind, quantity=_dec(m.quantity), unit=m.unit or "")
            for m in r.materials
        ),
    )


@dataclass(frozen=True)
class OrderRecord:
    """A persisted order, detached from the session."""

    id: str
    provider_id: str
    date: datetime
    status: str
    total: Decimal
    items: tuple[dict, ...]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "date": self.date.isoformat(),
            "status": self.status,
            "total": float(self.total),
            "items": [dict(it) for it in self.items],
        }


def order_record(o: Order) -> OrderRecord:
    return OrderRecord(
        id=str(o.id),
        provider_id=str(o.provider_id),
        date=o.date,
        status=o.status,
        total=money(o.total),
        items=tuple(
            {
                "product_id": str(ln.product_id),
                "quantity": float(ln.quantity),
                "price": float(ln.price),
                "subtotal": float(ln.subtotal),
            }
            for ln in o.lines
        ),
    )


class ProviderRepo:
    FIELDS = ("commercial_name", "legal_name", "rut", "phone", "delivery_days", "order_days")

    def __init__(self, session: Session):
        self.session = session

    def create(self, **fields) -> Provider:
        row = Provider(**{k: v for k, v in fields.items() if k in self.FIELDS})
        row.delivery_days = list(row.delivery_days or [])
        row.order_days = list(row.order_days or [])
        self.session.add(row)
        self.session.flush()
        return row

    def get(self, provider_id) -> Provider:
        row = self.session.get(Provider, _id(provider_id))
        if row is None:
            raise NotFoundError(f"Proveedor {provider_id} no encontrado")
        return row

    def update(self, provider_id, fields: dict) -> Provider:
        row = self.get(provider_id)
        for k, v in (fields or {}).items():
            if k not in self.FIELDS:
                continue
            if k in ("delivery_days", "order_days"):
                v = list(v or [])
            setattr(row, k, v)
        self.session.flush()
        return row

    def list(self) -> list[Provider]:
        stmt = select(Provider).order_by(Provider.commercial_name.asc())
        return self.session.execute(stmt).scalars().all()

    def find_by_rut(self, rut: str) -> Provider | None:
        wanted = clean_rut(rut)
        if not wanted:
            return None
        for row in self.list():
            if clean_rut(row.rut) == wanted:
                return row
        return None

    def snapshots(self) -> list[ProviderInfo]:
        return [provider_info(p) for p in self.list()]


class ProductRepo:
    FIELDS = (
        "name",
        "sku",
        "supplier_code",
        "purchase_packaging",
        "sale_packaging",
        "unit_measure",
        "price",
        "price_per_unit",
        "sale_price",
        "for_sale",
        "provider_id",
        "order",
        "min_package_stock",
        "desired_stock",
        "tags",
        "enabled",
    )

    def __init__(self, session: Session):
        self.session = session

    def create(self, **fields) -> Product:
        data = {k: v for k, v in fields.items() if k in self.FIELDS}
        if "provider_id" in data:
            data["provider_id"] = _id(data["provider_id"])
        if "price" in data:
            data["price"] = money(data["price"])
        if data.get("sale_price") is not None:
            data["sale_price"] = money(data["sale_price"])
        data["tags"] = sorted(set(data.get("tags") or []))
        row = Product(**data)
        self.session.add(row)
        self.session.flush()
        return row

    def get(self, product_id) -> Product:
        row = self.session.get(Product, _id(product_id))
        if row is None:
            raise NotFoundError(f"Producto {product_id} no encontrado")
        return row

    def list(self, provider_id=None, q: str = "", limit: int = 1000) -> list[Product]:
        stmt = select(Product)
        if provider_id not in (None, ""):
            stmt = stmt.where(Product.provider_id == _id(provider_id))
        qn = (q or "").strip()
        if qn:
            like = f"%{qn}%"
            stmt = stmt.where((Product.name.like(like)) | (Product.sku.like(like)))
        stmt = stmt.order_by(Product.order.asc(), Product.name.asc()).limit(int(limit))
        return self.session.execute(stmt).scalars().all()

    def snapshots(self, provider_id=None) -> list[ProductInfo]:
        return [product_info(p) for p in self.list(provider_id=provider_id, limit=100000)]

    def update_product(self, product_id, fields: dict) -> Product:
        """Point update of a product; price changes are appended to its history."""
        row = self.get(product_id)
        data = {k: v for k, v in (fields or {}).items() if k in self.FIELDS}

        if "price" in data:
            new_price = money(data.pop("price"))
            if differs(row.price, new_price):
                self.session.add(
                    PriceHistory(product_id=row.id, kind="purchase", old_price=money(row.price), new_price=new_price)
                )
            row.price = new_price

        if "sale_price" in data:
            raw = data.pop("sale_price")
            new_sale = money(raw) if raw is not None else None
            if new_sale is not None and differs(row.sale_price, new_sale):
                self.session.add(
                    PriceHistory(
                        product_id=row.id,
                        kind="sale",
                        old_price=money(row.sale_price or 0),
                        new_price=new_sale,
                    )
                )
            row.sale_price = new_sale

        if "provider_id" in data:
            data["provider_id"] = _id(data["provider_id"])
        if "tags" in data:
            data["tags"] = sorted(set(data["tags"] or []))

        for k, v in data.items():
            setattr(row, k, v)
        row.updated_at = datetime.utcnow()
        self.session.flush()
        return row

    def price_history(self, product_id) -> list[PriceHistory]:
        stmt = (
            select(PriceHistory)
            .where(PriceHistory.product_id == _id(product_id))
            .order_by(PriceHistory.created_at.asc(), PriceHistory.id.asc())
        )
        return self.session.execute(stmt).scalars().all()


class RecipeRepo:
    FIELDS = (
        "name",
        "sku",
        "notes",
        "yield_qty",
        "yield_unit",
        "fixed_cost_percentage",
        "profit_percentage",
        "total_cost",
        "unit_cost",
        "suggested_price",
        "sale_price",
        "for_sale",
    )

    def __init__(self, session: Session):
        self.session = session

    def get(self, recipe_id) -> Recipe:
        row = self.session.get(Recipe, _id(recipe_id))
        if row is None:
            raise NotFoundError(f"Receta {recipe_id} no encontrada")
        return row

    def list(self) -> list[Recipe]:
        stmt = select(Recipe).options(selectinload(Recipe.materials)).order_by(Recipe.name.asc())
        return self.session.execute(stmt).scalars().all()

    def snapshots(self) -> list[RecipeInfo]:
        return [recipe_info(r) for r in self.list()]

    def save(self, fields: dict, materials: Iterable[RecipeMaterialInfo], recipe_id=None) -> Recipe:
        data = {k: v for k, v in (fields or {}).items() if k in self.FIELDS}
        if recipe_id in (None, ""):
            row = Recipe(**data)
            self.session.add(row)
        else:
            row = self.get(recipe_id)
            for k, v in data.items():
                setattr(row, k, v)
            row.materials.clear()
            self.session.flush()

        for m in materials:
            row.materials.append(
                RecipeMaterial(kind=m.kind, material_id=_id(m.id), quantity=Decimal(str(m.quantity)), unit=m.unit)
            )
        row.updated_at = datetime.utcnow()
        self.session.flush()
        return row

    def update_recipe(self, recipe_id, fields: dict) -> Recipe:
        row = self.get(recipe_id)
        for k, v in (fields or {}).items():
            if k not in self.FIELDS:
                continue
            if k in ("sale_price", "total_cost", "unit_cost", "suggested_price") and v is not None:
                v = money(v)
            setattr(row, k, v)
        row.updated_at = datetime.utcnow()
        self.session.flush()
        return row

    def add_cost_history(self, recipe_id, unit_cost: Decimal, change_percentage: Decimal, when: datetime | None = None) -> None:
        self.session.add(
            RecipeCostHistory(
                recipe_id=_id(recipe_id),
                unit_cost=money(unit_cost),
                change_percentage=money(change_percentage),
                created_at=when or datetime.utcnow(),
            )
        )


class OrderRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, order_id) -> Order:
        row = self.session.get(Order, _id(order_id))
        if row is None:
            raise NotFoundError(f"Orden {order_id} no encontrada")
        return row

    def save_order(self, order: NewOrder, existing_id=None) -> str:
        """Insert a new order, or overwrite lines/total of an existing one. Returns its id."""
        if existing_id in (None, ""):
            row = Order(
                provider_id=_id(order.provider_id),
                date=order.date,
                status=order.status,
                total=money(order.total),
            )
            self.session.add(row)
        else:
            row = self.get(existing_id)
            row.provider_id = _id(order.provider_id)
            row.date = order.date
            row.total = money(order.total)
            row.lines.clear()
            # Old lines must be gone before new ones hit the (order, product) unique constraint.
            self.session.flush()

        for it in order.items:
            row.lines.append(
                OrderLine(
                    product_id=_id(it.product_id),
                    quantity=it.quantity,
                    price=money(it.price),
                    subtotal=money(it.subtotal),
                )
            )
        self.session.flush()
        return str(row.id)

    def list(self, *, status: str | None = None, provider_id=None, limit: int = 200) -> list[Order]:
        stmt = select(Order).options(selectinload(Order.lines))
        if status:
            stmt = stmt.where(Order.status == status)
        if provider_id not in (None, ""):
            stmt = stmt.where(Order.provider_id == _id(provider_id))
        lim = max(1, min(int(limit or 200), 5000))
        stmt = stmt.order_by(Order.date.desc(), Order.id.desc()).limit(lim)
        return self.session.execute(stmt).scalars().all()

    def records(self, **kwargs) -> list[OrderRecord]:
        return [order_record(o) for o in self.list(**kwargs)]

    def set_status(self, order_id, status: str) -> Order:
        if status not in ORDER_STATUSES:
            raise ValueError(f"Estado inválido: {status}")
        row = self.get(order_id)
        row.status = status
        self.session.flush()
        return row

    def delete(self, order_id) -> None:
        self.session.delete(self.get(order_id))
        self.session.flush()

    def count_for_day(self, day_iso: str) -> int:
        stmt = select(func.count(Order.id)).where(func.date(Order.date) == (day_iso or "").strip())
        return int(self.session.execute(stmt).scalar_one())
