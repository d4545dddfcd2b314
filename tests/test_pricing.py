from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.services.pricing import (
    apply_percentage,
    compute_price_quote,
    is_discount_active,
    to_utc_instant,
)

T0 = datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=1)


@pytest.mark.parametrize(
    "now, expected_price, active",
    [
        (T0 - timedelta(seconds=1), Decimal("1000"), False),
        (T0, Decimal("800.00"), True),
        (T0 + timedelta(minutes=30), Decimal("800.00"), True),
        (T1, Decimal("800.00"), True),
        (T1 + timedelta(seconds=1), Decimal("1000"), False),
    ],
)
def test_twenty_percent_window_over_time(now, expected_price, active):
    quote = compute_price_quote(1000, 20, T0, T1, now=now)
    assert quote.final_price == expected_price
    assert quote.is_discount_active is active
    assert quote.discount_expiry == (T1 if active else None)
    assert quote.displayed_discount_percentage == (Decimal("20") if active else Decimal("0"))


def test_missing_bound_means_inactive():
    assert not is_discount_active(20, T0, None, T0)
    assert not is_discount_active(20, None, T1, T0)
    quote = compute_price_quote("49.99", 50, None, None, now=T0)
    assert quote.final_price == Decimal("49.99")
    assert quote.discount_expiry is None


def test_zero_percent_is_never_active():
    quote = compute_price_quote(500, 0, T0, T1, now=T0)
    assert quote.is_discount_active is False
    assert quote.final_price == Decimal("500")


def test_zero_length_window_is_active_only_at_that_instant():
    assert is_discount_active(10, T0, T0, T0)
    assert not is_discount_active(10, T0, T0, T0 + timedelta(microseconds=1))


def test_naive_bounds_are_read_as_utc():
    naive_start = T0.replace(tzinfo=None)
    naive_end = T1.replace(tzinfo=None)
    assert to_utc_instant(naive_start) == T0
    assert is_discount_active(20, naive_start, naive_end, T0 + timedelta(minutes=5))


def test_offsets_compare_as_instants():
    karachi = timezone(timedelta(hours=5))
    start_local = T0.astimezone(karachi)
    end_local = T1.astimezone(karachi)
    # 15:30 in Karachi is 10:30 UTC, inside the window
    now_local = datetime(2025, 6, 1, 15, 30, tzinfo=karachi)
    quote = compute_price_quote(1000, 20, start_local, end_local, now=now_local)
    assert quote.is_discount_active
    assert quote.discount_expiry == T1
    assert quote.discount_expiry.tzinfo == timezone.utc


def test_rounding_is_half_up_to_cents():
    assert apply_percentage("19.99", 15) == Decimal("16.99")
    assert apply_percentage("10.05", 50) == Decimal("5.03")
    assert apply_percentage(100, 100) == Decimal("0.00")


@pytest.mark.parametrize("price, pct", [(1, 1), ("0.01", 50), ("999.99", 33), (0, 20), (250, 100)])
def test_final_price_never_exceeds_base_price(price, pct):
    quote = compute_price_quote(price, pct, T0, T1, now=T0)
    assert Decimal("0") <= quote.final_price <= Decimal(str(price))


def test_to_dict_shape():
    data = compute_price_quote(1000, 20, T0, T1, now=T0).to_dict()
    assert data == {
        "final_price": 800.0,
        "is_discount_active": True,
        "discount_expiry": T1.isoformat(),
        "discount": 20.0,
    }


@pytest.mark.parametrize("price, pct", [(1000, 20), ("19.99", 15), ("0.10", 50), (250, 100), ("999.99", 1)])
def test_active_discount_lowers_ordinary_prices(price, pct):
    assert compute_price_quote(price, pct, T0, T1, now=T0).final_price < Decimal(str(price))


def test_cent_rounding_can_swallow_a_tiny_discount():
    quote = compute_price_quote("0.01", 10, T0, T1, now=T0)
    assert quote.is_discount_active
    assert quote.final_price == Decimal("0.01")
