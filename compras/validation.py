from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from compras.errors import ValidationError

WEEK_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_NON_DIGIT_RE = re.compile(r"\D")


def clean_rut(value: str | None) -> str:
    return _NON_DIGIT_RE.sub("", str(value or ""))


def is_valid_rut(value: str | None) -> bool:
    return len(clean_rut(value)) == 12


def is_valid_phone(value: str | None) -> bool:
    digits = clean_rut(value)
    return 8 <= len(digits) <= 15


def _number(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def _blank(value: Any) -> bool:
    return not str(value or "").strip()


def validate_product(data: Mapping[str, Any]) -> ValidationError | None:
    if _blank(data.get("name")):
        return ValidationError("El nombre es requerido", "name")
    if _blank(data.get("sku")):
        return ValidationError("El SKU es requerido", "sku")
    if _blank(data.get("purchase_packaging")):
        return ValidationError("El empaque de compra es requerido", "purchase_packaging")
    if _blank(data.get("provider_id")):
        return ValidationError("El proveedor es requerido", "provider_id")

    min_stock = _number(data.get("min_package_stock"))
    if min_stock is None:
        return ValidationError("El stock mínimo debe ser un número válido", "min_package_stock")
    desired = _number(data.get("desired_stock"))
    if desired is None:
        return ValidationError("El stock deseado debe ser un número válido", "desired_stock")
    if min_stock < 0:
        return ValidationError("El stock mínimo no puede ser negativo", "min_package_stock")
    if desired < 0:
        return ValidationError("El stock deseado no puede ser negativo", "desired_stock")
    if min_stock > desired:
        return ValidationError("El stock mínimo no puede ser mayor al stock deseado", "min_package_stock")

    price = _number(data.get("price"))
    if price is None:
        return ValidationError("El precio debe ser un número válido", "price")
    if price < 0:
        return ValidationError("El precio no puede ser negativo", "price")

    if _number(data.get("order")) is None:
        return ValidationError("El orden debe ser un número válido", "order")

    return None


def validate_provider(data: Mapping[str, Any]) -> ValidationError | None:
    if _blank(data.get("commercial_name")):
        return ValidationError("El nombre comercial es requerido", "commercial_name")

    phone = data.get("phone")
    if phone and not is_valid_phone(phone):
        return ValidationError("Número de teléfono inválido", "phone")

    rut = data.get("rut")
    if rut and not is_valid_rut(rut):
        return ValidationError("RUT inválido", "rut")

    for key in ("delivery_days", "order_days"):
        days = data.get(key) or []
        bad = [d for d in days if d not in WEEK_DAYS]
        if bad:
            return ValidationError(f"Día inválido: {', '.join(bad)}", key)

    return None
