import copy
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from storefront.models import Order, OrderStatus
from storefront.services.errors import NotFoundError, ValidationError
from storefront.services.order_service import OrderService, serialize_order

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)

BASE_PAYLOAD = {
    "customerInfo": {
        "name": "Sara Ahmed",
        "phone": "03001234567",
        "address": "House 4, Street 9, Lahore",
        "email": "sara@example.com",
    },
    "items": [
        {"productId": None, "name": "Rose Bouquet", "quantity": 2, "price": 1500, "imageUrl": "https://img/rose.png"},
    ],
    "paymentInfo": {"method": "easypaisa", "screenshotUrl": "https://res.cloudinary.com/x/shot.png"},
    "totalAmount": 3000,
}


def _payload(**overrides):
    payload = copy.deepcopy(BASE_PAYLOAD)
    payload.update(overrides)
    return payload


@pytest.fixture
def email_stub(stub_email_service):
    return stub_email_service()


@pytest.fixture
def orders(db_session, email_stub):
    return OrderService(db_session, email_service=email_stub)


def test_create_order_snapshots_everything(orders, email_stub, sample_products, sample_user):
    rose = sample_products[0]
    payload = _payload(items=[{"productId": rose.productID, "name": rose.name, "quantity": 2, "price": 1500}])

    order = orders.create_order(payload, identity={"id": sample_user.userID, "role": "user", "email": sample_user.email}, now=NOW)

    assert order.status == OrderStatus.PENDING
    assert order.userID == sample_user.userID
    assert order.total_amount == Decimal("3000")
    assert order.order_number.startswith("ORD-20250314-")
    assert order.payment_screenshot_url.endswith("shot.png")
    item = order.items[0]
    assert item.productID == rose.productID
    assert item.category == "Flowers"
    assert item.line_total == Decimal("3000")
    assert email_stub.kinds() == ["notification", "confirmation"]


def test_items_are_not_rederived_from_live_products(orders, db_session, sample_products):
    rose = sample_products[0]
    order = orders.create_order(
        _payload(items=[{"productId": rose.productID, "name": "Rose Bouquet", "quantity": 1, "price": 1500}]),
        now=NOW,
    )
    rose.price = Decimal("9999")
    rose.category = "Renamed"
    db_session.commit()

    db_session.refresh(order)
    assert order.items[0].price == Decimal("1500")
    assert order.items[0].category == "Flowers"


def test_guest_order_without_identity(orders):
    order = orders.create_order(_payload(), now=NOW)
    assert order.userID is None
    assert order.customer_email == "sara@example.com"


def test_email_falls_back_to_identity(orders, sample_user):
    payload = _payload()
    payload["customerInfo"].pop("email")
    order = orders.create_order(payload, identity={"id": sample_user.userID, "email": "token@example.com"}, now=NOW)
    assert order.customer_email == "token@example.com"


def test_no_email_anywhere_skips_confirmation(orders, email_stub):
    payload = _payload()
    payload["customerInfo"]["email"] = "   "
    order = orders.create_order(payload, now=NOW)
    assert order.customer_email is None
    assert email_stub.kinds() == ["notification"]


def test_unknown_product_id_is_kept_as_null(orders):
    payload = _payload(items=[{"productId": "not-a-number", "name": "Mystery", "quantity": 1, "price": 10}])
    order = orders.create_order(payload, now=NOW)
    assert order.items[0].productID is None

    payload = _payload(items=[{"productId": 424242, "name": "Gone", "quantity": 1, "price": 10, "category": "Misc"}])
    order = orders.create_order(payload, now=NOW)
    assert order.items[0].productID is None
    assert order.items[0].category == "Misc"


@pytest.mark.parametrize("raise_error", [False, True])
def test_email_failures_never_abort_the_order(db_session, stub_email_service, raise_error):
    failing = stub_email_service(succeed=False, raise_error=raise_error)
    order = OrderService(db_session, email_service=failing).create_order(_payload(), now=NOW)
    assert order.orderID is not None
    assert db_session.query(Order).count() == 1
    assert len(failing.calls) == 2


@pytest.mark.parametrize(
    "mutate",
    [
        lambda p: p["customerInfo"].pop("name"),
        lambda p: p["customerInfo"].update(phone=""),
        lambda p: p["customerInfo"].pop("address"),
        lambda p: p.update(items=[]),
        lambda p: p.update(items="rose"),
        lambda p: p["items"][0].update(quantity=0),
        lambda p: p["items"][0].update(quantity="two"),
        lambda p: p["items"][0].update(price=-5),
        lambda p: p["items"][0].pop("name"),
        lambda p: p["paymentInfo"].pop("method"),
        lambda p: p.pop("totalAmount"),
        lambda p: p.update(totalAmount=-1),
    ],
)
def test_invalid_payloads_write_nothing(orders, db_session, email_stub, mutate):
    payload = _payload()
    mutate(payload)
    with pytest.raises(ValidationError):
        orders.create_order(payload, now=NOW)
    assert db_session.query(Order).count() == 0
    assert email_stub.calls == []


def test_snake_case_payload_is_accepted(orders):
    order = orders.create_order(
        {
            "customer_info": {"name": "Ali", "phone": "0300", "address": "Karachi"},
            "items": [{"product_id": None, "name": "Card", "quantity": 1, "price": "250.00"}],
            "payment_info": {"method": "bank"},
            "total_amount": "250.00",
        },
        now=NOW,
    )
    assert order.payment_method == "bank"


def test_status_changes_are_permissive(orders, order_factory):
    order = order_factory(status=OrderStatus.DELIVERED)

    updated = orders.update_status(order.orderID, "pending", notes="customer asked to hold")
    assert updated.status == OrderStatus.PENDING
    assert updated.notes == "customer asked to hold"

    updated = orders.update_status(order.orderID, "cancelled")
    assert updated.status == OrderStatus.CANCELLED
    assert updated.notes == "customer asked to hold"


def test_status_update_errors(orders, order_factory):
    order = order_factory()
    with pytest.raises(ValidationError):
        orders.update_status(order.orderID, "shipped")
    with pytest.raises(ValidationError):
        orders.update_status(order.orderID, "")
    with pytest.raises(NotFoundError):
        orders.update_status(99999, "confirmed")


def test_get_order_by_number_or_id(orders, order_factory, sample_user):
    order = order_factory(order_number="ORD-20250314-000777", userID=sample_user.userID)
    owner = {"id": sample_user.userID, "role": "user", "email": sample_user.email}

    assert orders.get_order("ORD-20250314-000777").orderID == order.orderID
    assert orders.get_order(str(order.orderID), viewer=owner).order_number == "ORD-20250314-000777"
    assert orders.get_order(str(order.orderID), viewer={"id": 999, "role": "admin"}).orderID == order.orderID
    with pytest.raises(NotFoundError):
        orders.get_order("ORD-20250314-000778")


def test_numeric_ids_are_hidden_from_guests_and_strangers(orders, order_factory, sample_user, user_factory):
    order = order_factory(userID=sample_user.userID)
    stranger = user_factory()

    with pytest.raises(NotFoundError):
        orders.get_order(str(order.orderID))
    with pytest.raises(NotFoundError):
        orders.get_order(str(order.orderID), viewer={"id": stranger.userID, "role": "user"})


def test_listing_and_history(orders, order_factory, sample_user):
    order_factory(userID=sample_user.userID)
    order_factory(userID=sample_user.userID, status=OrderStatus.DELIVERED)
    order_factory(status=OrderStatus.CANCELLED)

    assert len(orders.list_user_orders(sample_user.userID)) == 2

    everything = orders.list_orders(page=1, limit=2)
    assert everything["total"] == 3
    assert everything["total_pages"] == 2
    assert len(everything["orders"]) == 2

    assert orders.list_orders(status="all")["total"] == 3
    delivered = orders.list_orders(status="delivered")
    assert [o["status"] for o in delivered["orders"]] == ["delivered"]

    with pytest.raises(ValidationError):
        orders.list_orders(status="lost")


def test_stats_count_revenue_from_delivered_only(orders, order_factory):
    order_factory(status=OrderStatus.DELIVERED, total="1500.50")
    order_factory(status=OrderStatus.DELIVERED, total="499.50")
    order_factory(status=OrderStatus.PENDING, total="10000")
    order_factory(status=OrderStatus.CANCELLED, total="700")

    stats = orders.get_stats()

    assert stats["total"] == 4
    assert stats["delivered"] == 2
    assert stats["pending"] == 1
    assert stats["cancelled"] == 1
    assert stats["confirmed"] == 0
    assert stats["total_revenue"] == 2000.0


def test_serialize_order(orders):
    data = serialize_order(orders.create_order(_payload(), now=NOW))
    assert data["customer"]["name"] == "Sara Ahmed"
    assert data["payment"] == {"method": "easypaisa", "screenshot_url": "https://res.cloudinary.com/x/shot.png"}
    assert data["items"][0]["image_url"] == "https://img/rose.png"
    assert data["status"] == "pending"
    assert data["total_amount"] == 3000.0
