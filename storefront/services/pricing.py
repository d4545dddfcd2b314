"""
Discount pricing for catalog products.

Every query path (storefront listing, single product, admin dashboard)
derives the effective price and the discount visibility from the stored
discount window through ``compute_price_quote``. Bounds and ``now`` are
compared as UTC instants, so the result does not depend on the server's
local offset.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

Number = Union[Decimal, int, float, str]

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")
_ZERO = Decimal("0")


@dataclass(frozen=True)
class PriceQuote:
    base_price: Decimal
    final_price: Decimal
    is_discount_active: bool
    discount_expiry: Optional[datetime]
    displayed_discount_percentage: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "final_price": float(self.final_price),
            "is_discount_active": self.is_discount_active,
            "discount_expiry": self.discount_expiry.isoformat() if self.discount_expiry else None,
            "discount": float(self.displayed_discount_percentage),
        }


def to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return _ZERO
    if isinstance(value, Decimal):
        return value
    # str() keeps 19.99 from turning into 19.989999...
    return Decimal(str(value))


def to_utc_instant(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a stored bound to an aware UTC datetime.

    Naive values are what SQLite hands back for timezone-aware columns; they
    were written as UTC, so they are tagged rather than shifted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_discount_active(
    discount_percentage: Optional[Number],
    discount_start: Optional[datetime],
    discount_end: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    if to_decimal(discount_percentage) <= _ZERO:
        return False
    start = to_utc_instant(discount_start)
    end = to_utc_instant(discount_end)
    if start is None or end is None:
        return False
    current = to_utc_instant(now) or datetime.now(timezone.utc)
    return start <= current <= end


def apply_percentage(price: Number, discount_percentage: Number) -> Decimal:
    base = to_decimal(price)
    discounted = base * (_HUNDRED - to_decimal(discount_percentage)) / _HUNDRED
    return max(discounted.quantize(_CENT, rounding=ROUND_HALF_UP), _ZERO)


def compute_price_quote(
    price: Number,
    discount_percentage: Optional[Number],
    discount_start: Optional[datetime],
    discount_end: Optional[datetime],
    now: Optional[datetime] = None,
) -> PriceQuote:
    base = to_decimal(price)
    active = is_discount_active(discount_percentage, discount_start, discount_end, now)
    if not active:
        return PriceQuote(
            base_price=base,
            final_price=base,
            is_discount_active=False,
            discount_expiry=None,
            displayed_discount_percentage=_ZERO,
        )

    percentage = to_decimal(discount_percentage)
    return PriceQuote(
        base_price=base,
        final_price=min(apply_percentage(base, percentage), base),
        is_discount_active=True,
        discount_expiry=to_utc_instant(discount_end),
        displayed_discount_percentage=percentage,
    )
