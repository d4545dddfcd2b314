from datetime import date, datetime, timezone

import pytest

from storefront.models import Order
from storefront.observability.metrics import get_counter_value, reset_metrics
from storefront.services.order_numbers import (
    ORDER_NUMBER_PATTERN,
    CounterSequenceAllocator,
    CountSequenceAllocator,
    SequenceAllocator,
    fallback_order_number,
    format_order_number,
    is_valid_order_number,
    local_order_date,
)
from storefront.services.order_service import OrderService

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)
TODAY_PREFIX = "ORD-20250314-"


class ScriptedAllocator(SequenceAllocator):
    """Returns a fixed series of values, like two requests that read the same count."""

    def __init__(self, values):
        self.values = list(values)
        self.calls = 0

    def next_value(self):
        self.calls += 1
        return self.values.pop(0) if len(self.values) > 1 else self.values[0]


def _payload():
    return {
        "customerInfo": {"name": "Sara", "phone": "03001234567", "address": "House 4, Street 9"},
        "items": [{"name": "Rose Bouquet", "quantity": 1, "price": 1500}],
        "paymentInfo": {"method": "easypaisa"},
        "totalAmount": 1500,
    }


def test_format_pads_to_six_digits():
    assert format_order_number(42, date(2025, 3, 14)) == "ORD-20250314-000042"
    assert is_valid_order_number("ORD-20250314-000042")


def test_sequence_wraps_to_keep_fixed_width():
    assert format_order_number(1_000_042, date(2025, 3, 14)) == "ORD-20250314-000042"


def test_negative_sequence_rejected():
    with pytest.raises(ValueError):
        format_order_number(-1, date(2025, 3, 14))


def test_fallback_number_keeps_the_format():
    number = fallback_order_number(NOW)
    assert ORDER_NUMBER_PATTERN.match(number)
    assert number.startswith(TODAY_PREFIX)


def test_local_order_date_treats_naive_as_utc():
    assert local_order_date(datetime(2025, 12, 31, 23, 59)) == date(2025, 12, 31)


def test_counter_allocator_continues_existing_history(db_session, order_factory):
    order_factory()
    order_factory()
    allocator = CounterSequenceAllocator(db_session)
    assert allocator.next_value() == 3
    assert allocator.next_value() == 4
    # A second allocator on the same counter never repeats a value
    assert CounterSequenceAllocator(db_session).next_value() == 5


def test_count_allocator_is_count_plus_one(db_session, order_factory):
    assert CountSequenceAllocator(db_session).next_value() == 1
    order_factory()
    assert CountSequenceAllocator(db_session).next_value() == 2


def test_concurrent_count_race_retries_with_next_number(db_session, stub_email_service):
    """Two requests both read count=41: the first gets 000042, the second retries to 000043."""
    reset_metrics()
    first = OrderService(db_session, allocator=ScriptedAllocator([42]), email_service=stub_email_service())
    second_allocator = ScriptedAllocator([42, 43])
    second = OrderService(db_session, allocator=second_allocator, email_service=stub_email_service())

    order_a = first.create_order(_payload(), now=NOW)
    order_b = second.create_order(_payload(), now=NOW)

    assert order_a.order_number == TODAY_PREFIX + "000042"
    assert order_b.order_number == TODAY_PREFIX + "000043"
    assert second_allocator.calls == 2
    assert db_session.query(Order).count() == 2
    assert get_counter_value("order_number_conflicts_total") == 1


def test_exhausted_retries_fall_back_to_timestamp_number(db_session, order_factory, stub_email_service):
    order_factory(order_number=TODAY_PREFIX + "000042")
    allocator = ScriptedAllocator([42])
    service = OrderService(db_session, allocator=allocator, email_service=stub_email_service(), max_attempts=3)

    order = service.create_order(_payload(), now=NOW)

    assert allocator.calls == 3
    assert is_valid_order_number(order.order_number)
    assert order.order_number.startswith(TODAY_PREFIX)
    assert order.order_number != TODAY_PREFIX + "000042"


def test_default_allocator_numbers_are_unique(db_session, stub_email_service):
    service = OrderService(db_session, email_service=stub_email_service())
    numbers = [service.create_order(_payload(), now=NOW).order_number for _ in range(5)]
    assert len(set(numbers)) == 5
    assert numbers[0] == TODAY_PREFIX + "000001"
    assert all(ORDER_NUMBER_PATTERN.match(number) for number in numbers)


def test_order_number_cannot_be_reassigned(order_factory):
    order = order_factory(order_number="ORD-20250314-000007")
    with pytest.raises(ValueError):
        order.order_number = "ORD-20250314-000008"
