"""
Order number assignment.

Numbers look like ``ORD-20250314-000042``: a prefix, the server-local
calendar date, and a six digit sequence. The sequence comes from a
``SequenceAllocator``; the default one is an atomic database counter, the
count-based one reproduces the historical ``count(orders) + 1`` behaviour
and relies on the caller's retry when two requests read the same count.
"""
from __future__ import annotations

import logging
import re
import time
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import Order, OrderSequence

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 6
ORDER_NUMBER_PATTERN = re.compile(r"^[A-Z]+-\d{8}-\d{6}$")
ORDER_SEQUENCE_NAME = "order_number"

try:
    _LOCAL_TZ = ZoneInfo(getattr(Config, "DEFAULT_TIMEZONE", "UTC"))
except ZoneInfoNotFoundError:
    _LOCAL_TZ = timezone.utc


def local_order_date(now: Optional[datetime] = None) -> date:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(_LOCAL_TZ).date()


def format_order_number(sequence: int, on_date: date, prefix: str = Config.ORDER_NUMBER_PREFIX) -> str:
    if sequence < 0:
        raise ValueError("Order sequence must be non-negative")
    # Wraps past 999999 so the format stays fixed-width
    suffix = sequence % (10 ** SEQUENCE_WIDTH)
    return f"{prefix}-{on_date.strftime('%Y%m%d')}-{suffix:0{SEQUENCE_WIDTH}d}"


def fallback_order_number(now: Optional[datetime] = None, prefix: str = Config.ORDER_NUMBER_PREFIX) -> str:
    """Timestamp-derived number used once sequence retries are exhausted."""
    micros = time.time_ns() // 1000
    return format_order_number(micros % (10 ** SEQUENCE_WIDTH), local_order_date(now), prefix)


def is_valid_order_number(value: str) -> bool:
    return bool(value) and bool(ORDER_NUMBER_PATTERN.match(value))


class SequenceAllocator:
    """Hands out the numeric part of the next order number."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session

    def next_value(self) -> int:
        raise NotImplementedError


class CounterSequenceAllocator(SequenceAllocator):
    """
    Atomic counter stored in the OrderSequence table.

    The increment is a single ``UPDATE ... SET value = value + 1`` and is
    committed before the order insert, so concurrent requests never share a
    value. A rolled back order leaves a gap, never a duplicate.
    """

    def __init__(self, db_session: Session, name: str = ORDER_SEQUENCE_NAME) -> None:
        super().__init__(db_session)
        self.name = name

    def next_value(self) -> int:
        self._ensure_counter()
        self.db.execute(
            update(OrderSequence)
            .where(OrderSequence.name == self.name)
            .values(value=OrderSequence.value + 1)
            .execution_options(synchronize_session=False)
        )
        value = self.db.execute(
            select(OrderSequence.value).where(OrderSequence.name == self.name)
        ).scalar_one()
        self.db.commit()
        return value

    def _ensure_counter(self) -> None:
        exists = self.db.execute(
            select(OrderSequence.name).where(OrderSequence.name == self.name)
        ).first()
        if exists:
            return

        # Continue numbering from the orders placed before the counter existed
        seed = self.db.execute(select(func.count(Order.orderID))).scalar_one()
        self.db.add(OrderSequence(name=self.name, value=seed))
        try:
            self.db.commit()
            logger.info("Order sequence %s seeded at %d", self.name, seed)
        except IntegrityError:
            # Another request created it first
            self.db.rollback()


class CountSequenceAllocator(SequenceAllocator):
    """Legacy ``count + 1`` numbering; racy without the caller's retry."""

    def next_value(self) -> int:
        return self.db.execute(select(func.count(Order.orderID))).scalar_one() + 1
