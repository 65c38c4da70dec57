from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")

# Two amounts closer than this are considered the same price.
PRICE_TOLERANCE = Decimal("0.01")

_NOT_NUMERIC_RE = re.compile(r"[^\d.,-]+")


def money(x: float | int | str | Decimal | None) -> Decimal:
    """Round to 2 decimals, half away from zero.

    Floats go through ``str()`` first so the shortest decimal representation is
    rounded, not the binary value: ``money(10.005) == Decimal("10.01")``.
    """
    if x is None:
        return Decimal("0.00")
    d = x if isinstance(x, Decimal) else Decimal(str(x))
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def line_subtotal(price: float | Decimal, quantity: float | int | Decimal) -> Decimal:
    p = price if isinstance(price, Decimal) else Decimal(str(price))
    return money(p * Decimal(str(quantity)))


def differs(a: float | Decimal | None, b: float | Decimal | None, tolerance: Decimal = PRICE_TOLERANCE) -> bool:
    da = Decimal(str(a or 0))
    db = Decimal(str(b or 0))
    return abs(da - db) > tolerance


def parse_price(value: str | None) -> Decimal:
    """Parse a price typed with either decimal convention.

    - currency symbols, letters and spaces are dropped
    - with a comma present, dots before it are thousands separators: ``1.234,56``
    - a bare comma is the decimal point: ``1234,5``

    Raises ValueError when nothing numeric is left or the result is negative.
    """
    raw = "" if value is None else str(value)
    s = _NOT_NUMERIC_RE.sub("", raw)

    if "," in s:
        if "." in s and s.index(".") < s.index(","):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", ".")

    if not s or s in ("-", "."):
        raise ValueError(f"Valor no numérico: {raw}")

    try:
        d = Decimal(s)
    except InvalidOperation:
        raise ValueError(f"Valor no numérico: {raw}") from None

    if not d.is_finite():
        raise ValueError(f"Valor no numérico: {raw}")
    if d < 0:
        raise ValueError(f"Precio negativo: {raw}")
    return money(d)


def money_es(n: float | Decimal) -> str:
    # 12.345,67 format
    return f"{float(n):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
