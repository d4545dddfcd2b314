# storefront/models.py
from enum import Enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    JSON,
    CheckConstraint,
    UniqueConstraint,
    Enum as SAEnum,
    event,
)
from sqlalchemy.orm import relationship

from storefront.config import Config
from storefront.database import Base
from storefront.services.pricing import PriceQuote, compute_price_quote


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class BlogStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


def stock_status_for(stock: Optional[int], threshold: Optional[int]) -> StockStatus:
    stock = stock or 0
    threshold = Config.LOW_STOCK_THRESHOLD if threshold is None else threshold
    if stock <= 0:
        return StockStatus.OUT_OF_STOCK
    if stock <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


class User(Base):
    __tablename__ = 'User'
    userID = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    _passwordHash = Column('passwordHash', String(255), nullable=False)
    role = Column(
        SAEnum(UserRole, name="user_role", native_enum=False, validate_strings=True),
        default=UserRole.USER,
        nullable=False,
    )
    first_name = Column(String(120))
    last_name = Column(String(120))
    phone = Column(String(40))
    address = Column(String(500))
    city = Column(String(120))
    state = Column(String(120))
    country = Column(String(120))
    zip_code = Column(String(20))
    reset_token = Column(String(128), index=True)
    reset_token_expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    orders = relationship("Order", back_populates="user")
    reviews = relationship("Review", back_populates="user")

    @property
    def passwordHash(self):
        return self._passwordHash

    @passwordHash.setter
    def passwordHash(self, value):
        self._passwordHash = value

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class Product(Base):
    __tablename__ = 'Product'
    productID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    category = Column(String(120), index=True)
    image_url = Column(String(512))
    video_url = Column(String(512))

    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    discount_start = Column(DateTime(timezone=True))
    discount_end = Column(DateTime(timezone=True))

    # Merchandising
    is_featured = Column(Boolean, nullable=False, default=False)
    promotion_badge = Column(String(120), default="")
    promo_code = Column(String(60), default="")
    promo_description = Column(String(500), default="")
    promo_expires_at = Column(DateTime(timezone=True))
    bundle_items = Column(JSON, default=list)

    # Derived from the Review table
    average_rating = Column(Numeric(3, 2), nullable=False, default=0)
    rating_count = Column(Integer, nullable=False, default=0)

    stock = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=lambda: Config.LOW_STOCK_THRESHOLD)
    stock_status = Column(
        SAEnum(StockStatus, name="stock_status", native_enum=False, validate_strings=True),
        nullable=False,
        default=StockStatus.IN_STOCK,
    )

    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
        CheckConstraint(
            "discount_percentage >= 0 AND discount_percentage <= 100",
            name="ck_product_discount_range",
        ),
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
    )

    def price_quote(self, now: Optional[datetime] = None) -> PriceQuote:
        return compute_price_quote(
            self.price,
            self.discount_percentage,
            self.discount_start,
            self.discount_end,
            now=now,
        )

    def get_final_price(self, now: Optional[datetime] = None):
        return self.price_quote(now).final_price

    def refresh_stock_status(self) -> StockStatus:
        self.stock_status = stock_status_for(self.stock, self.low_stock_threshold)
        return self.stock_status


@event.listens_for(Product, "before_insert")
@event.listens_for(Product, "before_update")
def _derive_stock_status(mapper, connection, target: Product) -> None:
    target.refresh_stock_status()


class Order(Base):
    __tablename__ = 'Order'
    orderID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'), nullable=True)
    _order_number = Column('order_number', String(40), unique=True, nullable=False)

    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(40), nullable=False)
    customer_address = Column(String(500), nullable=False)
    customer_email = Column(String(255))

    payment_method = Column(String(50), nullable=False)
    payment_screenshot_url = Column(String(512))

    status = Column(
        SAEnum(OrderStatus, name="order_status", native_enum=False, validate_strings=True),
        default=OrderStatus.PENDING,
        nullable=False,
    )
    total_amount = Column(Numeric(12, 2), nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    @property
    def order_number(self):
        return self._order_number

    @order_number.setter
    def order_number(self, value):
        if self._order_number is not None and value != self._order_number:
            raise ValueError(f"Order number already assigned ({self._order_number})")
        self._order_number = value


class OrderItem(Base):
    __tablename__ = 'OrderItem'
    orderItemID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('Order.orderID', ondelete="CASCADE"), nullable=False)
    # Plain column: the product may be deleted after the order was placed
    productID = Column(Integer, index=True)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    image_url = Column(String(512), default="")
    category = Column(String(120), default="")

    order = relationship("Order", back_populates="items")

    @property
    def line_total(self):
        return self.price * self.quantity


class OrderSequence(Base):
    __tablename__ = 'OrderSequence'
    name = Column(String(50), primary_key=True)
    value = Column(Integer, nullable=False, default=0)


class Review(Base):
    __tablename__ = 'Review'
    reviewID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(Integer, nullable=False, index=True)
    userID = Column(Integer, ForeignKey('User.userID'), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    title = Column(String(255), default="")
    comment = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="reviews")

    __table_args__ = (
        UniqueConstraint("productID", "userID", name="uq_review_product_user"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_review_rating_range"),
    )


class BlogPost(Base):
    __tablename__ = 'BlogPost'
    postID = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    summary = Column(Text, default="")
    content = Column(Text, default="")
    cover_image = Column(String(512), default="")
    status = Column(
        SAEnum(BlogStatus, name="blog_status", native_enum=False, validate_strings=True),
        default=BlogStatus.DRAFT,
        nullable=False,
        index=True,
    )
    reading_minutes = Column(Integer, default=3)
    published_at = Column(DateTime(timezone=True))
    seo_title = Column(String(255), default="")
    seo_description = Column(String(500), default="")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    tag_rows = relationship("BlogTag", back_populates="post", cascade="all, delete-orphan")

    @property
    def tags(self):
        return [row.name for row in self.tag_rows]

    def set_tags(self, names) -> None:
        cleaned = []
        for name in names or []:
            if not isinstance(name, str):
                continue
            trimmed = name.strip()
            if trimmed and trimmed not in cleaned:
                cleaned.append(trimmed)
        # Reuse surviving rows so the (post, name) constraint never sees a duplicate
        existing = {row.name: row for row in self.tag_rows}
        self.tag_rows = [existing.get(name) or BlogTag(name=name) for name in cleaned]


class BlogTag(Base):
    __tablename__ = 'BlogTag'
    tagID = Column(Integer, primary_key=True, autoincrement=True)
    postID = Column(Integer, ForeignKey('BlogPost.postID', ondelete="CASCADE"), nullable=False)
    name = Column(String(80), nullable=False, index=True)

    post = relationship("BlogPost", back_populates="tag_rows")

    __table_args__ = (
        UniqueConstraint("postID", "name", name="uq_blog_tag_post_name"),
    )
