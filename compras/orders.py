from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, Mapping

from compras.errors import OrderBuildError
from compras.money import differs, line_subtotal, money
from compras.tipos import ProductInfo

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
ORDER_STATUSES = (STATUS_PENDING, STATUS_COMPLETED)


@dataclass(frozen=True)
class OrderItem:
    product_id: str
    quantity: Decimal
    price: Decimal
    subtotal: Decimal

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": float(self.quantity),
            "price": float(self.price),
            "subtotal": float(self.subtotal),
        }


@dataclass(frozen=True)
class NewOrder:
    """An order built from a product selection, not yet persisted."""

    provider_id: str
    items: tuple[OrderItem, ...]
    total: Decimal
    status: str = STATUS_PENDING
    date: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "provider_id": self.provider_id,
            "date": self.date.isoformat(),
            "status": self.status,
            "items": [it.to_dict() for it in self.items],
            "total": float(self.total),
        }


def create_order_item(product: ProductInfo, quantity: float | int | Decimal) -> OrderItem:
    price = money(product.price)
    qty = Decimal(str(quantity))
    return OrderItem(
        product_id=product.id,
        quantity=qty,
        price=price,
        subtotal=line_subtotal(price, qty),
    )


def calculate_order_total(items: Iterable[OrderItem]) -> Decimal:
    # Each line is rounded on its own before summing so the total matches the printed lines.
    return money(sum((line_subtotal(it.price, it.quantity) for it in items), Decimal("0")))


def create_order(
    provider_id: str,
    selected_products: Mapping[str, float | int | Decimal],
    products: Iterable[ProductInfo],
) -> NewOrder:
    catalog = list(products or [])
    if not provider_id or not catalog:
        raise OrderBuildError("Datos de orden inválidos")

    by_id = {p.id: p for p in catalog}
    items: list[OrderItem] = []
    for product_id, quantity in selected_products.items():
        product = by_id.get(product_id)
        if product is None:
            raise OrderBuildError(f"Producto {product_id} no encontrado")
        try:
            qty = Decimal(str(quantity))
        except (InvalidOperation, ValueError):
            raise OrderBuildError(f"Cantidad inválida para el producto {product_id}") from None
        if not qty.is_finite():
            raise OrderBuildError(f"Cantidad inválida para el producto {product_id}")
        items.append(create_order_item(product, qty))

    # list.sort is stable: equal "order" keys keep the selection order.
    items.sort(key=lambda it: by_id[it.product_id].order)

    return NewOrder(
        provider_id=provider_id,
        items=tuple(items),
        total=calculate_order_total(items),
        status=STATUS_PENDING,
    )


def validate_order(order: NewOrder, products: Iterable[ProductInfo]) -> str | None:
    """Return the first problem found in the order, or None when it can be saved."""
    if not order.provider_id:
        return "El proveedor es requerido"

    if not order.items:
        return "Debe agregar al menos un producto"

    by_id = {p.id: p for p in products}
    seen: set[str] = set()
    for item in order.items:
        if not item.product_id:
            return "Producto inválido"

        if item.product_id in seen:
            return "No puede haber productos duplicados"
        seen.add(item.product_id)

        if not Decimal(item.quantity).is_finite() or item.quantity <= 0:
            return "La cantidad debe ser mayor a 0"

        product = by_id.get(item.product_id)
        if product is None:
            return "Producto no encontrado"

        if differs(item.price, product.price):
            return f"El precio del producto {product.name} no coincide"

        if differs(item.subtotal, line_subtotal(item.price, item.quantity)):
            return f"El subtotal del producto {product.name} no coincide"

    if differs(order.total, calculate_order_total(order.items)):
        return "El total no coincide"

    return None


def order_content_hash(provider_id: str, selected_products: Mapping[str, float | int | Decimal]) -> str:
    """Change-detection key for a selection; not an integrity check."""
    pairs = sorted((str(pid), Decimal(str(qty)).normalize()) for pid, qty in selected_products.items())
    body = "|".join(f"{pid}:{format(qty, 'f')}" for pid, qty in pairs)
    return f"{provider_id}#{body}"
