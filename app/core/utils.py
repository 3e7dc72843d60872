from __future__ import annotations

from decimal import Decimal


def money(value: Decimal | float | int | None) -> str:
    if value is None:
        return ""
    return f"¥{Decimal(value):,.0f}"
