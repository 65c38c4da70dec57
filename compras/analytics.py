from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

from compras.money import money
from compras.repos import OrderRecord
from compras.tipos import ProductInfo, ProviderInfo


@dataclass(frozen=True)
class OrderStats:
    total: int
    total_amount: Decimal
    average_amount: Decimal
    pending: int
    completed: int


@dataclass(frozen=True)
class ProductStats:
    id: str
    name: str
    total_quantity: Decimal
    total_amount: Decimal
    order_count: int
    average_quantity_per_order: Decimal
    last_order_date: datetime | None


@dataclass(frozen=True)
class ProviderStats:
    id: str
    name: str
    total_orders: int
    total_amount: Decimal
    average_order_amount: Decimal
    last_order_date: datetime | None


def order_stats(orders: Iterable[OrderRecord]) -> OrderStats:
    orders = list(orders)
    total = len(orders)
    amount = money(sum((Decimal(str(o.total)) for o in orders), Decimal("0")))
    return OrderStats(
        total=total,
        total_amount=amount,
        average_amount=money(amount / total) if total else Decimal("0.00"),
        pending=sum(1 for o in orders if o.status == "pending"),
        completed=sum(1 for o in orders if o.status == "completed"),
    )


def product_stats(orders: Iterable[OrderRecord], products: Iterable[ProductInfo], limit: int = 10) -> list[ProductStats]:
    names = {p.id: p.name for p in products}
    acc: dict[str, dict] = {}
    for o in orders:
        for it in o.items:
            pid = str(it["product_id"])
            if pid not in names:
                continue
            cur = acc.setdefault(
                pid, {"qty": Decimal("0"), "amount": Decimal("0"), "count": 0, "last": None}
            )
            cur["qty"] += Decimal(str(it["quantity"]))
            cur["amount"] += Decimal(str(it["subtotal"]))
            cur["count"] += 1
            if cur["last"] is None or o.date > cur["last"]:
                cur["last"] = o.date

    out = [
        ProductStats(
            id=pid,
            name=names[pid],
            total_quantity=v["qty"],
            total_amount=money(v["amount"]),
            order_count=v["count"],
            average_quantity_per_order=money(v["qty"] / v["count"]),
            last_order_date=v["last"],
        )
        for pid, v in acc.items()
    ]
    out.sort(key=lambda s: s.total_amount, reverse=True)
    return out[: max(0, int(limit))]


def provider_stats(orders: Iterable[OrderRecord], providers: Iterable[ProviderInfo], limit: int = 10) -> list[ProviderStats]:
    names = {p.id: p.commercial_name for p in providers}
    acc: dict[str, dict] = {}
    for o in orders:
        if o.provider_id not in names:
            continue
        cur = acc.setdefault(o.provider_id, {"count": 0, "amount": Decimal("0"), "last": None})
        cur["count"] += 1
        cur["amount"] += Decimal(str(o.total))
        if cur["last"] is None or o.date > cur["last"]:
            cur["last"] = o.date

    out = [
        ProviderStats(
            id=pid,
            name=names[pid],
            total_orders=v["count"],
            total_amount=money(v["amount"]),
            average_order_amount=money(v["amount"] / v["count"]),
            last_order_date=v["last"],
        )
        for pid, v in acc.items()
    ]
    out.sort(key=lambda s: s.total_amount, reverse=True)
    return out[: max(0, int(limit))]


def _window(orders: list[OrderRecord], start: datetime, end: datetime) -> list[OrderRecord]:
    return [o for o in orders if start <= o.date < end]


def dashboard_stats(
    orders: Iterable[OrderRecord],
    products: Iterable[ProductInfo],
    providers: Iterable[ProviderInfo],
    now: datetime | None = None,
    limit: int = 5,
) -> dict:
    """Today / this week (Monday start) / this month figures plus top lists, JSON-ready."""
    now = now or datetime.utcnow()
    orders = list(orders)
    products = list(products)
    providers = list(providers)

    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = day_start - timedelta(days=day_start.weekday())
    month_start = day_start.replace(day=1)
    if month_start.month == 12:
        next_month = month_start.replace(year=month_start.year + 1, month=1)
    else:
        next_month = month_start.replace(month=month_start.month + 1)

    def plain(obj) -> dict:
        out = asdict(obj)
        for k, v in out.items():
            if isinstance(v, Decimal):
                out[k] = float(v)
            elif isinstance(v, datetime):
                out[k] = v.isoformat()
        return out

    return {
        "orders": {
            "today": plain(order_stats(_window(orders, day_start, day_start + timedelta(days=1)))),
            "week": plain(order_stats(_window(orders, week_start, week_start + timedelta(days=7)))),
            "month": plain(order_stats(_window(orders, month_start, next_month))),
        },
        "top_products": [plain(s) for s in product_stats(orders, products, limit)],
        "top_providers": [plain(s) for s in provider_stats(orders, providers, limit)],
        "totals": {
            "products": len(products),
            "providers": len(providers),
            "orders": len(orders),
        },
    }
