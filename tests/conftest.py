# tests/conftest.py
"""
Pytest configuration and shared fixtures.

The environment is pointed at a throwaway SQLite file and all third-party
credentials are blanked *before* the package is imported, because Config
reads the environment once at import time.
"""

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'storefront_test.db')}"
os.environ["UPLOAD_TMP_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["DEFAULT_TIMEZONE"] = "UTC"
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"
os.environ["ADMIN_NOTIFICATION_EMAIL"] = "owner@example.com"
for _key in ("BREVO_API_KEY", "IMGBB_API_KEY", "CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
    os.environ[_key] = ""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from storefront.database import Base, SessionLocal, engine
from storefront.models import Order, OrderItem, OrderStatus, Product, User, UserRole
from storefront.services.email_service import EmailResult
from storefront.services.media_service import UploadError

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)
PASSWORD = "password123"


@pytest.fixture(scope="session")
def test_db():
    """Create the schema once for the whole session"""
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(test_db):
    """A session per test; every table is emptied afterwards"""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        session.close()


@pytest.fixture
def user_factory(db_session):
    counter = {"n": 0}

    def make_user(email=None, role=UserRole.USER, password=PASSWORD, **profile):
        counter["n"] += 1
        user = User(email=email or f"user{counter['n']}@example.com", role=role, **profile)
        user.passwordHash = generate_password_hash(password)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return make_user


@pytest.fixture
def sample_user(user_factory):
    return user_factory(email="customer@example.com", first_name="Ayesha", last_name="Khan")


@pytest.fixture
def admin_user(user_factory):
    return user_factory(email="admin@example.com", role=UserRole.ADMIN)


@pytest.fixture
def product_factory(db_session):
    def make_product(name="Gift Box", price="1000.00", **fields):
        fields.setdefault("stock", 10)
        product = Product(name=name, price=Decimal(str(price)), **fields)
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return make_product


@pytest.fixture
def sample_products(product_factory):
    return [
        product_factory(name="Rose Bouquet", price="1500.00", category="Flowers", description="Twelve red roses"),
        product_factory(name="Chocolate Hamper", price="2500.00", category="Hampers", description="Dark and milk"),
        product_factory(name="Scented Candle", price="800.00", category="Decor", description="Lavender wax"),
    ]


@pytest.fixture
def order_factory(db_session):
    """Insert an order directly, bypassing numbering, for fixtures and reports."""
    counter = {"n": 0}

    def make_order(order_number=None, status=OrderStatus.PENDING, items=(), total="0", **fields):
        counter["n"] += 1
        order = Order(
            customer_name=fields.pop("customer_name", "Test Customer"),
            customer_phone=fields.pop("customer_phone", "03001234567"),
            customer_address=fields.pop("customer_address", "12 Mall Road"),
            payment_method=fields.pop("payment_method", "easypaisa"),
            status=status,
            total_amount=Decimal(str(total)),
            **fields,
        )
        order.order_number = order_number or f"ORD-19990101-{counter['n']:06d}"
        order.items = [
            OrderItem(
                productID=item.get("product_id"),
                name=item.get("name", "Item"),
                quantity=item.get("quantity", 1),
                price=Decimal(str(item.get("price", "100"))),
                category=item.get("category", ""),
            )
            for item in items
        ]
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order

    return make_order


@pytest.fixture
def stub_email_service():
    """Records calls instead of talking to Brevo."""

    class StubEmailService:
        def __init__(self, succeed=True, raise_error=False):
            self.succeed = succeed
            self.raise_error = raise_error
            self.calls = []

        def _record(self, kind, *args):
            self.calls.append((kind, args))
            if self.raise_error:
                raise RuntimeError("email backend exploded")
            if self.succeed:
                return EmailResult(True, message_id=f"msg-{len(self.calls)}")
            return EmailResult(False, error="stub failure")

        def send_order_notification(self, order_data, admin_email=None):
            return self._record("notification", order_data)

        def send_order_confirmation(self, order_data):
            return self._record("confirmation", order_data)

        def send_password_reset(self, email, token):
            return self._record("password_reset", email, token)

        def kinds(self):
            return [kind for kind, _ in self.calls]

    return StubEmailService


@pytest.fixture
def stub_uploader():
    class StubUploader:
        def __init__(self, url="https://i.ibb.co/abc/product.png", fail=False):
            self.url = url
            self.fail = fail
            self.calls = []

        def upload(self, file_path, folder="products"):
            self.calls.append((file_path, folder))
            if self.fail:
                raise UploadError("imgbb upload failed: stub")
            return self.url

    return StubUploader


@pytest.fixture
def stub_http():
    """Stand-in for the ``requests`` module."""

    class StubResponse:
        def __init__(self, status_code=200, json_data=None, text=""):
            self.status_code = status_code
            self._json = json_data
            self.text = text

        def json(self):
            if self._json is None:
                raise ValueError("No JSON")
            return self._json

    class StubHttp:
        def __init__(self, response=None, error=None):
            self.response = response or StubResponse(201, {"messageId": "<abc@brevo>"})
            self.error = error
            self.calls = []

        def post(self, url, **kwargs):
            files = kwargs.get("files") or {}
            self.calls.append({"url": url, "file_names": [getattr(f, "name", None) for f in files.values()], **kwargs})
            if self.error is not None:
                raise self.error
            return self.response

    StubHttp.Response = StubResponse
    return StubHttp
