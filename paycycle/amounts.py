from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

ZERO = Decimal("0")


def coerce_amount(amount: Any) -> Decimal:
    if amount is None:
        return ZERO
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def coerce_optional_amount(amount: Any) -> Optional[Decimal]:
    if amount is None:
        return None
    return coerce_amount(amount)
