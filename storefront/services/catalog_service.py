from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import Order, OrderItem, OrderStatus, Product
from storefront.observability import increment_counter, record_event
from storefront.services.errors import NotFoundError, ValidationError
from storefront.services.media_service import ImgBBUploader, MediaUploader, UploadError
from storefront.services.payloads import (
    LIKE_ESCAPE,
    contains_pattern,
    iso,
    parse_bool,
    parse_datetime,
    parse_decimal,
    parse_int,
    parse_string_list,
    text,
)
from storefront.services.pricing import to_utc_instant

_TEXT_FIELDS = (
    "description",
    "category",
    "image_url",
    "video_url",
    "promotion_badge",
    "promo_code",
    "promo_description",
)


class CatalogService:
    """
    Catalog reads and writes.

    Every read path goes through ``decorate`` so the storefront listing, the
    single product page, highlights and the admin dashboard all agree on the
    effective price and whether a discount is showing.
    """

    def __init__(
        self,
        db_session: Session,
        uploader: Optional[MediaUploader] = None,
        page_size: Optional[int] = None,
        highlight_limit: Optional[int] = None,
    ) -> None:
        self.db = db_session
        self.uploader = uploader or ImgBBUploader()
        self.page_size = page_size or Config.PRODUCT_PAGE_SIZE
        self.highlight_limit = highlight_limit or Config.HIGHLIGHT_LIMIT
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def decorate(self, product: Product, now: Optional[datetime] = None) -> Dict[str, Any]:
        quote = product.price_quote(now)
        data = {
            "id": product.productID,
            "name": product.name,
            "description": product.description,
            "price": float(product.price),
            "category": product.category,
            "image_url": product.image_url,
            "video_url": product.video_url,
            "discount_percentage": float(product.discount_percentage or 0),
            "discount_start": iso(product.discount_start),
            "discount_end": iso(product.discount_end),
            "is_featured": bool(product.is_featured),
            "promotion_badge": product.promotion_badge,
            "promo_code": product.promo_code,
            "promo_description": product.promo_description,
            "promo_expires_at": iso(product.promo_expires_at),
            "bundle_items": list(product.bundle_items or []),
            "stock": product.stock,
            "low_stock_threshold": product.low_stock_threshold,
            "stock_status": getattr(product.stock_status, "value", product.stock_status),
            "average_rating": float(product.average_rating or 0),
            "rating_count": product.rating_count or 0,
            "created_at": iso(product.created_at),
            "updated_at": iso(product.updated_at),
        }
        data.update(quote.to_dict())
        return data

    def list_products(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        page = max(1, page)
        limit = limit or self.page_size

        query = self.db.query(Product)
        if search and search.strip():
            pattern = contains_pattern(search.strip())
            query = query.filter(
                or_(
                    Product.name.ilike(pattern, escape=LIKE_ESCAPE),
                    Product.description.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )
        if category:
            query = query.filter(Product.category == category)

        total = query.count()
        products = (
            query.order_by(desc(Product.created_at), desc(Product.productID))
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "products": [self.decorate(product, now) for product in products],
            "total": total,
            "page": page,
            "total_pages": math.ceil(total / limit) if total else 0,
            "categories": self.list_categories(),
        }

    def list_categories(self) -> List[str]:
        rows = (
            self.db.query(Product.category)
            .filter(Product.category.isnot(None), Product.category != "")
            .distinct()
            .order_by(Product.category)
            .all()
        )
        return [row[0] for row in rows]

    def get_product(self, product_id: int) -> Product:
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        return product

    def admin_dashboard(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """All products, newest first. A discount that is not showing right now is reported as none."""
        products = self.db.query(Product).order_by(desc(Product.created_at), desc(Product.productID)).all()
        rows = []
        for product in products:
            data = self.decorate(product, now)
            if not data["is_discount_active"]:
                data["discount_percentage"] = 0.0
                data["discount_start"] = None
                data["discount_end"] = None
            rows.append(data)
        return rows

    # Highlights --------------------------------------------------------
    def featured(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        products = (
            self.db.query(Product)
            .filter(Product.is_featured.is_(True))
            .order_by(desc(Product.created_at), desc(Product.productID))
            .limit(limit or self.highlight_limit)
            .all()
        )
        return [self.decorate(product, now) for product in products]

    def bundles(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        # JSON emptiness is not portable across backends; filter here
        limit = limit or self.highlight_limit
        products = self.db.query(Product).order_by(desc(Product.created_at), desc(Product.productID)).all()
        bundled = [product for product in products if product.bundle_items]
        return [self.decorate(product, now) for product in bundled[:limit]]

    def best_sellers(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        limit = limit or self.highlight_limit
        units_sold = func.sum(OrderItem.quantity).label("units_sold")
        ranking = (
            self.db.query(OrderItem.productID, units_sold)
            .join(Order, Order.orderID == OrderItem.orderID)
            .filter(Order.status != OrderStatus.CANCELLED, OrderItem.productID.isnot(None))
            .group_by(OrderItem.productID)
            .order_by(desc(units_sold), OrderItem.productID)
            .all()
        )
        if not ranking:
            return []

        products = {
            product.productID: product
            for product in self.db.query(Product).filter(Product.productID.in_([row[0] for row in ranking]))
        }
        results = []
        for product_id, sold in ranking:
            product = products.get(product_id)
            if product is None:
                # Sold, then deleted from the catalog
                continue
            data = self.decorate(product, now)
            data["units_sold"] = int(sold or 0)
            results.append(data)
            if len(results) >= limit:
                break
        return results

    def new_arrivals(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        products = (
            self.db.query(Product)
            .order_by(desc(Product.created_at), desc(Product.productID))
            .limit(limit or self.highlight_limit)
            .all()
        )
        return [self.decorate(product, now) for product in products]

    def highlights(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
        now = now or datetime.now(timezone.utc)
        return {
            "featured": self.featured(limit, now),
            "bundles": self.bundles(limit, now),
            "best_sellers": self.best_sellers(limit, now),
            "new_arrivals": self.new_arrivals(limit, now),
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_product(self, payload: Dict[str, Any], image_path: Optional[str] = None) -> Product:
        values = self._validate(payload, existing=None)
        product = Product(**values)
        self._attach_image(product, image_path)
        try:
            self.db.add(product)
            self.db.commit()
            self.db.refresh(product)
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to create product %s", values.get("name"))
            raise

        increment_counter("catalog_mutations_total", labels={"action": "create"})
        record_event("product_created", {"product_id": product.productID, "name": product.name})
        return product

    def update_product(
        self,
        product_id: int,
        payload: Dict[str, Any],
        image_path: Optional[str] = None,
    ) -> Product:
        product = self.get_product(product_id)
        values = self._validate(payload, existing=product)
        for key, value in values.items():
            setattr(product, key, value)
        self._attach_image(product, image_path)
        try:
            self.db.commit()
            self.db.refresh(product)
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to update product %s", product_id)
            raise

        increment_counter("catalog_mutations_total", labels={"action": "update"})
        return product

    def delete_product(self, product_id: int) -> None:
        # Reviews and order lines keep the dangling id
        product = self.get_product(product_id)
        try:
            self.db.delete(product)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to delete product %s", product_id)
            raise

        increment_counter("catalog_mutations_total", labels={"action": "delete"})
        self.logger.info("Product %s deleted", product_id)

    def _attach_image(self, product: Product, image_path: Optional[str]) -> None:
        if not image_path:
            return
        try:
            product.image_url = self.uploader.upload(image_path, folder="products")
        except UploadError as exc:
            self.logger.warning("Product image upload failed, saving without it: %s", exc.message)

    def _validate(self, payload: Dict[str, Any], existing: Optional[Product]) -> Dict[str, Any]:
        """Parse and check a create/update payload; nothing is written when this raises."""
        creating = existing is None
        values: Dict[str, Any] = {}

        if creating or "name" in payload:
            name = str(payload.get("name") or "").strip()
            if not name:
                raise ValidationError("Product name is required")
            values["name"] = name

        if creating or "price" in payload:
            if payload.get("price") in (None, ""):
                raise ValidationError("Price is required")
            price = parse_decimal(payload["price"], "price")
            if price < 0:
                raise ValidationError("Price must be non-negative")
            values["price"] = price

        if "discount_percentage" in payload:
            raw = payload.get("discount_percentage")
            percentage = Decimal("0") if raw in (None, "") else parse_decimal(raw, "discount_percentage")
            if percentage < 0 or percentage > 100:
                raise ValidationError("Discount percentage must be between 0 and 100")
            values["discount_percentage"] = percentage

        for field_name in ("discount_start", "discount_end", "promo_expires_at"):
            if field_name in payload:
                values[field_name] = parse_datetime(payload.get(field_name), field_name)

        start = values["discount_start"] if "discount_start" in values else getattr(existing, "discount_start", None)
        end = values["discount_end"] if "discount_end" in values else getattr(existing, "discount_end", None)
        if (start is None) != (end is None):
            raise ValidationError("Discount start and end must be set together")
        if start is not None and to_utc_instant(start) > to_utc_instant(end):
            raise ValidationError("Discount start must not be after discount end")

        for field_name in ("stock", "low_stock_threshold"):
            if field_name in payload and payload.get(field_name) not in (None, ""):
                number = parse_int(payload[field_name], field_name)
                if number < 0:
                    raise ValidationError(f"{field_name} must be non-negative")
                values[field_name] = number

        for field_name in _TEXT_FIELDS:
            if field_name in payload:
                values[field_name] = text(payload.get(field_name))

        if "is_featured" in payload:
            values["is_featured"] = parse_bool(payload.get("is_featured"))
        if "bundle_items" in payload:
            values["bundle_items"] = parse_string_list(payload.get("bundle_items"), "bundle_items")

        return values

