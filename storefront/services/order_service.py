from __future__ import annotations

import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import Order, OrderItem, OrderStatus, Product, UserRole
from storefront.observability import increment_counter, record_event
from storefront.services.email_service import EmailService
from storefront.services.errors import ConflictError, NotFoundError, ValidationError
from storefront.services.order_numbers import (
    CounterSequenceAllocator,
    SequenceAllocator,
    fallback_order_number,
    format_order_number,
    is_valid_order_number,
    local_order_date,
)
from storefront.services.payloads import iso, parse_decimal, parse_int, pick, text


def _status_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        "id": order.orderID,
        "order_number": order.order_number,
        "user_id": order.userID,
        "customer": {
            "name": order.customer_name,
            "phone": order.customer_phone,
            "address": order.customer_address,
            "email": order.customer_email,
        },
        "items": [
            {
                "product_id": item.productID,
                "name": item.name,
                "quantity": item.quantity,
                "price": float(item.price),
                "image_url": item.image_url,
                "category": item.category,
            }
            for item in order.items
        ],
        "payment": {
            "method": order.payment_method,
            "screenshot_url": order.payment_screenshot_url,
        },
        "status": _status_value(order.status),
        "total_amount": float(order.total_amount),
        "notes": order.notes,
        "created_at": iso(order.created_at),
        "updated_at": iso(order.updated_at),
    }


class OrderService:
    """
    Order intake and administration.

    Numbers come from the injected ``SequenceAllocator``; a uniqueness
    conflict on ``order_number`` is retried with a fresh number up to
    ``Config.ORDER_NUMBER_MAX_ATTEMPTS`` times before a timestamp-derived
    number is used. Notification emails go out after the commit and cannot
    fail the order.
    """

    def __init__(
        self,
        db_session: Session,
        allocator: Optional[SequenceAllocator] = None,
        email_service: Optional[EmailService] = None,
        max_attempts: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> None:
        self.db = db_session
        self.allocator = allocator or CounterSequenceAllocator(db_session)
        self.email_service = email_service or EmailService()
        self.max_attempts = max_attempts or Config.ORDER_NUMBER_MAX_ATTEMPTS
        self.page_size = page_size or Config.ORDER_PAGE_SIZE
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create_order(
        self,
        payload: Dict[str, Any],
        identity: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        values, items = self._validate(payload, identity or {})

        order = None
        for attempt in range(1, self.max_attempts + 1):
            number = format_order_number(self.allocator.next_value(), local_order_date(now))
            order = self._try_insert(number, values, items)
            if order is not None:
                break
            self.logger.warning(
                "Order number %s already taken (attempt %d/%d)", number, attempt, self.max_attempts
            )

        if order is None:
            number = fallback_order_number(now)
            order = self._try_insert(number, values, items)
            if order is None:
                raise ConflictError("Order number conflict. Please try again.")
            self.logger.warning("Order sequence exhausted, used fallback number %s", number)

        increment_counter("orders_created_total", labels={"payment_method": order.payment_method})
        record_event(
            "order_created",
            {
                "order_number": order.order_number,
                "total_amount": float(order.total_amount),
                "items": len(order.items),
            },
        )
        self.logger.info("Order %s created", order.order_number, extra={"order_id": order.orderID})

        self._send_notifications(order)
        return order

    def _try_insert(self, number: str, values: Dict[str, Any], items: List[Dict[str, Any]]) -> Optional[Order]:
        """Insert the order under ``number``; None when the number is already taken."""
        order = Order(**values)
        order.order_number = number
        order.items = [OrderItem(**item) for item in items]
        try:
            self.db.add(order)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if "order_number" not in str(exc.orig):
                self.logger.exception("Order insert failed")
                raise
            increment_counter("order_number_conflicts_total")
            return None
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Order insert failed")
            raise
        self.db.refresh(order)
        return order

    def _validate(self, payload: Dict[str, Any], identity: Dict[str, Any]):
        """Check the whole payload before anything is written."""
        if not isinstance(payload, dict):
            raise ValidationError("Order payload must be an object")

        customer = pick(payload, "customerInfo", "customer_info", "customer") or {}
        items = pick(payload, "items")
        payment = pick(payload, "paymentInfo", "payment_info", "payment") or {}
        total = pick(payload, "totalAmount", "total_amount")

        if not isinstance(customer, dict):
            raise ValidationError("Customer info must be an object")
        name = text(customer.get("name"))
        phone = text(customer.get("phone"))
        address = text(customer.get("address"))
        if not (name and phone and address):
            raise ValidationError("Customer info is incomplete (name, phone, address required)")

        if not isinstance(items, list) or not items:
            raise ValidationError("Order items are required")

        if not isinstance(payment, dict):
            raise ValidationError("Payment info must be an object")
        method = text(payment.get("method"))
        if not method:
            raise ValidationError("Payment method is required")

        if total is None or total == "":
            raise ValidationError("Total amount is required")
        total_amount = parse_decimal(total, "totalAmount")
        if total_amount < 0:
            raise ValidationError("Total amount must be non-negative")

        email = text(customer.get("email")) or text(identity.get("email")) or None

        values = {
            "userID": identity.get("id"),
            "customer_name": name,
            "customer_phone": phone,
            "customer_address": address,
            "customer_email": email,
            "payment_method": method,
            "payment_screenshot_url": text(pick(payment, "screenshotUrl", "screenshot_url")) or None,
            "status": OrderStatus.PENDING,
            "total_amount": total_amount,
        }
        return values, [self._snapshot_item(item, index) for index, item in enumerate(items, start=1)]

    def _snapshot_item(self, item: Any, position: int) -> Dict[str, Any]:
        if not isinstance(item, dict):
            raise ValidationError(f"Item {position} must be an object")
        name = text(item.get("name"))
        if not name:
            raise ValidationError(f"Item {position} is missing a name")
        quantity = parse_int(item.get("quantity"), f"Item {position} quantity")
        if quantity <= 0:
            raise ValidationError(f"Item {position} quantity must be positive")
        raw_price = item.get("price")
        if raw_price is None or raw_price == "":
            raise ValidationError(f"Item {position} is missing a price")
        price = parse_decimal(raw_price, f"Item {position} price")
        if price < 0:
            raise ValidationError(f"Item {position} price must be non-negative")

        # Unknown or malformed ids are kept as null, like the storefront cart sends them
        product = None
        raw_id = pick(item, "productId", "product_id")
        try:
            product_id = int(raw_id) if raw_id is not None and not isinstance(raw_id, bool) else None
        except (TypeError, ValueError):
            product_id = None
        if product_id is not None:
            product = self.db.get(Product, product_id)
            if product is None:
                product_id = None

        category = text(item.get("category")) or (product.category if product and product.category else "")
        return {
            "productID": product_id,
            "name": name,
            "quantity": quantity,
            "price": price,
            "image_url": text(pick(item, "imageUrl", "image_url")),
            "category": category,
        }

    def _send_notifications(self, order: Order) -> None:
        order_data = self._email_payload(order)
        try:
            result = self.email_service.send_order_notification(order_data)
            if not result.success:
                self.logger.warning("Admin notification for %s not sent: %s", order.order_number, result.error)
        except Exception:
            self.logger.exception("Admin notification for %s failed (order kept)", order.order_number)

        if not order.customer_email:
            self.logger.warning("No customer email on %s, skipping confirmation", order.order_number)
            return
        try:
            result = self.email_service.send_order_confirmation(order_data)
            if not result.success:
                self.logger.warning("Confirmation for %s not sent: %s", order.order_number, result.error)
        except Exception:
            self.logger.exception("Confirmation for %s failed (order kept)", order.order_number)

    @staticmethod
    def _email_payload(order: Order) -> Dict[str, Any]:
        return {
            "order_number": order.order_number,
            "customer": {
                "name": order.customer_name,
                "phone": order.customer_phone,
                "email": order.customer_email,
                "address": order.customer_address,
            },
            "items": [
                {
                    "name": item.name,
                    "quantity": item.quantity,
                    "price": item.price,
                    "category": item.category,
                }
                for item in order.items
            ],
            "total_amount": order.total_amount,
            "payment_method": order.payment_method,
            "payment_screenshot_url": order.payment_screenshot_url,
            "created_at": order.created_at,
        }

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    def update_status(self, order_id: int, status: Any, notes: Optional[str] = None) -> Order:
        # Any status may follow any other; admins correct mistakes this way
        if not status:
            raise ValidationError("Status is required")
        try:
            new_status = OrderStatus(status)
        except ValueError:
            raise ValidationError("Invalid status")

        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")

        previous = _status_value(order.status)
        order.status = new_status
        if notes:
            order.notes = notes
        try:
            self.db.commit()
            self.db.refresh(order)
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to update status of order %s", order_id)
            raise

        record_event(
            "order_status_changed",
            {"order_number": order.order_number, "from": previous, "to": new_status.value},
        )
        return order

    def get_order(self, identifier: Any, viewer: Optional[Dict[str, Any]] = None) -> Order:
        """Look an order up by its order number, or by numeric id for its owner or an admin.

        Order numbers are what customers are given for tracking. Numeric ids are
        sequential, so a lookup by id from anyone else is answered as not found.
        """
        identifier = text(identifier)
        order = None
        if is_valid_order_number(identifier) or not identifier.isdigit():
            order = self.db.query(Order).filter(Order._order_number == identifier).first()
        elif viewer:
            order = self.db.get(Order, int(identifier))
            if order is not None and not self._owns(viewer, order):
                order = None
        if order is None:
            raise NotFoundError("Order not found")
        return order

    @staticmethod
    def _owns(viewer: Dict[str, Any], order: Order) -> bool:
        return viewer.get("role") == UserRole.ADMIN.value or order.userID == viewer.get("id")

    def list_user_orders(self, user_id: int) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(Order.userID == user_id)
            .order_by(desc(Order.created_at), desc(Order.orderID))
            .all()
        )

    def list_orders(self, status: Optional[str] = None, page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
        page = max(1, page)
        limit = limit or self.page_size
        query = self.db.query(Order)
        if status and status != "all":
            try:
                query = query.filter(Order.status == OrderStatus(status))
            except ValueError:
                raise ValidationError("Invalid status")

        total = query.count()
        orders = (
            query.order_by(desc(Order.created_at), desc(Order.orderID))
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "orders": [serialize_order(order) for order in orders],
            "total": total,
            "page": page,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def get_stats(self) -> Dict[str, Any]:
        counts = {status.value: 0 for status in OrderStatus}
        for status, count in self.db.query(Order.status, func.count(Order.orderID)).group_by(Order.status):
            counts[_status_value(status)] = int(count)

        revenue = (
            self.db.query(func.coalesce(func.sum(Order.total_amount), 0))
            .filter(Order.status == OrderStatus.DELIVERED)
            .scalar()
        )
        return {
            "total": sum(counts.values()),
            **counts,
            "total_revenue": float(Decimal(str(revenue or 0))),
        }
