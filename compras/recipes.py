from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from compras.money import differs, money
from compras.tipos import ProductInfo, RecipeInfo, RecipeMaterialInfo

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CostHistoryEntry:
    date: datetime
    unit_cost: Decimal
    change_percentage: Decimal


@dataclass(frozen=True)
class RecipeCosts:
    total_cost: Decimal
    unit_cost: Decimal
    suggested_price: Decimal
    history_entry: CostHistoryEntry | None = None


def calculate_fixed_cost_percentage(total_materials_cost: Decimal, total_fixed_costs: Decimal) -> Decimal:
    """Fixed costs of a month as a percentage of what was spent on materials."""
    materials = Decimal(str(total_materials_cost))
    if materials <= 0:
        return Decimal("0.00")
    return money(Decimal(str(total_fixed_costs)) / materials * HUNDRED)


def _material_cost(
    material: RecipeMaterialInfo,
    products: dict[str, ProductInfo],
    recipes: dict[str, RecipeInfo],
) -> Decimal:
    qty = Decimal(str(material.quantity))
    if material.kind == "product":
        product = products.get(material.id)
        if product is None:
            return Decimal("0")
        return qty * Decimal(str(product.price_per_unit or 0))
    recipe = recipes.get(material.id)
    if recipe is None:
        return Decimal("0")
    return qty * Decimal(str(recipe.unit_cost))


def calculate_recipe_costs(
    materials: Iterable[RecipeMaterialInfo],
    products: Iterable[ProductInfo],
    recipes: Iterable[RecipeInfo],
    yield_qty: Decimal,
    fixed_cost_percentage: Decimal,
    profit_percentage: Decimal,
    previous_unit_cost: Decimal | None = None,
) -> RecipeCosts:
    by_product = {p.id: p for p in products}
    by_recipe = {r.id: r for r in recipes}

    materials_cost = sum((_material_cost(m, by_product, by_recipe) for m in materials), Decimal("0"))
    fixed_costs = materials_cost * Decimal(str(fixed_cost_percentage)) / HUNDRED
    total_cost = money(materials_cost + fixed_costs)

    yq = Decimal(str(yield_qty))
    unit_cost = money(total_cost / yq) if yq > 0 else Decimal("0.00")

    # Margin over sale price, not markup over cost.
    profit = Decimal(str(profit_percentage)) / HUNDRED
    if profit < 1:
        suggested_price = money(unit_cost / (1 - profit))
    else:
        suggested_price = money(unit_cost * 2)

    entry = None
    if previous_unit_cost and differs(unit_cost, previous_unit_cost):
        prev = Decimal(str(previous_unit_cost))
        entry = CostHistoryEntry(
            date=datetime.utcnow(),
            unit_cost=unit_cost,
            change_percentage=money((unit_cost - prev) / prev * HUNDRED),
        )

    return RecipeCosts(
        total_cost=total_cost,
        unit_cost=unit_cost,
        suggested_price=suggested_price,
        history_entry=entry,
    )


def update_dependent_recipes(
    recipes: list[RecipeInfo],
    products: Iterable[ProductInfo],
    updated_recipe_id: str,
    visited: set[str] | None = None,
    history: dict[str, list[CostHistoryEntry]] | None = None,
) -> list[RecipeInfo]:
    """Recompute every recipe that uses ``updated_recipe_id`` as a material, transitively.

    Returns a new list; cost changes are collected into ``history`` keyed by recipe id
    when a dict is passed.
    """
    visited = visited if visited is not None else set()
    if updated_recipe_id in visited:
        return recipes
    visited.add(updated_recipe_id)

    products = list(products)
    current = list(recipes)
    dependents = [
        r.id
        for r in current
        if any(m.kind == "recipe" and m.id == updated_recipe_id for m in r.materials)
    ]

    for recipe_id in dependents:
        idx = next((i for i, r in enumerate(current) if r.id == recipe_id), None)
        if idx is None:
            continue
        recipe = current[idx]
        costs = calculate_recipe_costs(
            recipe.materials,
            products,
            current,
            recipe.yield_qty,
            recipe.fixed_cost_percentage,
            recipe.profit_percentage,
            recipe.unit_cost,
        )
        if costs.history_entry is not None and history is not None:
            history.setdefault(recipe.id, []).append(costs.history_entry)

        current[idx] = replace(
            recipe,
            total_cost=costs.total_cost,
            unit_cost=costs.unit_cost,
            suggested_price=costs.suggested_price,
        )
        current = update_dependent_recipes(current, products, recipe.id, visited, history)

    return current
