from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Provider(Base):
    __tablename__ = "providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    commercial_name: Mapped[str] = mapped_column(String(255), nullable=False)
    legal_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Uruguayan RUT, stored as typed; matching always compares digits only.
    rut: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Lists of week day names ("monday", ...)
    delivery_days: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    order_days: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    products: Mapped[list["Product"]] = relationship("Product", back_populates="provider")


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    supplier_code: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)

    purchase_packaging: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    sale_packaging: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    unit_measure: Mapped[str | None] = mapped_column(String(40), nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    price_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    sale_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    for_sale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    provider_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("providers.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    # Sector * 1000 + position; drives the order of lines on printed orders.
    order: Mapped[int] = mapped_column("sort_order", Integer, nullable=False, default=0)

    min_package_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    desired_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    provider: Mapped[Provider] = relationship("Provider", back_populates="products")
    price_history: Mapped[list["PriceHistory"]] = relationship(
        "PriceHistory", back_populates="product", cascade="all, delete-orphan"
    )


class PriceHistory(Base):
    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # "purchase" or "sale"
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="purchase")
    old_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    new_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    product: Mapped[Product] = relationship("Product", back_populates="price_history")


class Recipe(Base):
    __tablename__ = "recipes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    yield_qty: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=Decimal("1"))
    yield_unit: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    fixed_cost_percentage: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=Decimal("0"))
    profit_percentage: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=Decimal("0"))

    total_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    suggested_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    sale_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    for_sale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    materials: Mapped[list["RecipeMaterial"]] = relationship(
        "RecipeMaterial", back_populates="recipe", cascade="all, delete-orphan"
    )
    cost_history: Mapped[list["RecipeCostHistory"]] = relationship(
        "RecipeCostHistory", back_populates="recipe", cascade="all, delete-orphan"
    )


class RecipeMaterial(Base):
    __tablename__ = "recipe_materials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipe_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # "product" or "recipe"; material_id points to products.id or recipes.id accordingly.
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="product")
    material_id: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    unit: Mapped[str] = mapped_column(String(40), nullable=False, default="")

    recipe: Mapped[Recipe] = relationship("Recipe", back_populates="materials")


class RecipeCostHistory(Base):
    __tablename__ = "recipe_cost_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipe_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    change_percentage: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)

    recipe: Mapped[Recipe] = relationship("Recipe", back_populates="cost_history")


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("providers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    # "pending" or "completed"
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    lines: Mapped[list["OrderLine"]] = relationship(
        "OrderLine", back_populates="order", cascade="all, delete-orphan", order_by="OrderLine.id"
    )


class OrderLine(Base):
    __tablename__ = "order_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    order: Mapped[Order] = relationship("Order", back_populates="lines")

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", name="uq_order_line_product"),
    )
