from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class ProductInfo:
    """Read-only snapshot of a catalog product.

    The calculators and the price reconciler work on these snapshots so they
    stay independent from the ORM session that produced them.
    """

    id: str
    name: str
    sku: str
    provider_id: str
    price: Decimal = Decimal("0.00")
    order: int = 0
    supplier_code: str | None = None
    purchase_packaging: str = ""
    sale_price: Decimal | None = None
    for_sale: bool = False
    price_per_unit: Decimal | None = None
    min_package_stock: int = 0
    desired_stock: int = 0
    tags: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    commercial_name: str
    rut: str | None = None
    phone: str | None = None
    legal_name: str | None = None
    delivery_days: frozenset[str] = field(default_factory=frozenset)
    order_days: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class RecipeMaterialInfo:
    # kind is "product" or "recipe"
    id: str
    kind: str
    quantity: Decimal
    unit: str = ""


@dataclass(frozen=True)
class RecipeInfo:
    id: str
    name: str
    sku: str | None = None
    sale_price: Decimal | None = None
    for_sale: bool = False
    yield_qty: Decimal = Decimal("1")
    yield_unit: str = ""
    fixed_cost_percentage: Decimal = Decimal("0")
    profit_percentage: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0.00")
    unit_cost: Decimal = Decimal("0.00")
    suggested_price: Decimal = Decimal("0.00")
    materials: tuple[RecipeMaterialInfo, ...] = ()
