from __future__ import annotations

import logging
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import Product, Review, UserRole
from storefront.observability import increment_counter, record_event, set_gauge
from storefront.services.errors import NotFoundError, PermissionDenied, ValidationError
from storefront.services.payloads import iso

MAX_COMMENT_LENGTH = 2000
_TWO_PLACES = Decimal("0.01")


class RatingAggregator:
    """
    Keeps Product.average_rating / Product.rating_count equal to the
    aggregate of the product's reviews.

    ``recompute`` is called inside the review mutation's transaction, after
    the mutation has been flushed and before the commit, so a read right
    after the request sees the new aggregates. The product row is locked
    for the duration so concurrent reviews on one product cannot overwrite
    each other's result.
    """

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def recompute(self, product_id: int) -> Tuple[Decimal, int]:
        self.db.flush()
        product = (
            self.db.query(Product)
            .filter(Product.productID == product_id)
            .with_for_update()
            .first()
        )
        average, count = (
            self.db.query(func.avg(Review.rating), func.count(Review.reviewID))
            .filter(Review.productID == product_id)
            .one()
        )
        count = int(count or 0)
        if count:
            average = Decimal(str(average)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
        else:
            average = Decimal("0.00")

        if product is not None:
            product.average_rating = average
            product.rating_count = count
        return average, count

    def reconcile_all(self) -> Dict[str, int]:
        """Recompute every product; returns how many had drifted."""
        checked = 0
        corrected = 0
        try:
            product_ids = [row[0] for row in self.db.query(Product.productID).all()]
            for product_id in product_ids:
                product = self.db.get(Product, product_id)
                before = (Decimal(str(product.average_rating or 0)), product.rating_count or 0)
                after = self.recompute(product_id)
                checked += 1
                if before != after:
                    corrected += 1
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Rating reconciliation failed")
            raise

        self.logger.info("Rating reconciliation checked %d products, corrected %d", checked, corrected)
        set_gauge("ratings_last_reconcile_corrected", corrected)
        record_event("ratings_reconciled", {"checked": checked, "corrected": corrected})
        return {"checked": checked, "corrected": corrected}


class ReviewService:
    """One review per (product, user); every mutation refreshes the product's aggregates."""

    def __init__(
        self,
        db_session: Session,
        aggregator: Optional[RatingAggregator] = None,
        page_size: Optional[int] = None,
    ) -> None:
        self.db = db_session
        self.aggregator = aggregator or RatingAggregator(db_session)
        self.page_size = page_size or Config.REVIEW_PAGE_SIZE
        self.logger = logging.getLogger(__name__)

    def upsert_review(
        self,
        product_id: int,
        user_id: int,
        rating: Any,
        title: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Tuple[Review, bool]:
        """Create the user's review of a product, or update it if one exists."""
        rating_value = self._validate_rating(rating)
        title = (title or "").strip()
        comment = (comment or "").strip()
        if len(comment) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comment must be at most {MAX_COMMENT_LENGTH} characters")

        if self.db.get(Product, product_id) is None:
            raise NotFoundError("Product not found")

        try:
            try:
                review, created = self._write_review(product_id, user_id, rating_value, title, comment)
            except IntegrityError:
                # A concurrent request inserted the same (product, user) pair first
                self.db.rollback()
                review, created = self._write_review(product_id, user_id, rating_value, title, comment)
            self.aggregator.recompute(product_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to store review for product %s", product_id)
            raise

        self.db.refresh(review)
        increment_counter("review_mutations_total", labels={"action": "create" if created else "update"})
        record_event(
            "review_saved",
            {"product_id": product_id, "user_id": user_id, "rating": rating_value, "created": created},
        )
        return review, created

    def delete_review(self, review_id: int, actor: Dict[str, Any]) -> int:
        review = self.db.get(Review, review_id)
        if review is None:
            raise NotFoundError("Review not found")

        is_admin = actor.get("role") == UserRole.ADMIN.value
        if not is_admin and review.userID != actor.get("id"):
            raise PermissionDenied("You can only delete your own review")

        product_id = review.productID
        try:
            self.db.delete(review)
            self.aggregator.recompute(product_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to delete review %s", review_id)
            raise

        increment_counter("review_mutations_total", labels={"action": "delete"})
        self.logger.info("Review %s deleted", review_id, extra={"product_id": product_id})
        return product_id

    def list_reviews(self, product_id: int, page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
        page = max(1, page)
        limit = limit or self.page_size
        query = self.db.query(Review).filter(Review.productID == product_id)
        total = query.count()
        reviews = (
            query.order_by(Review.created_at.desc(), Review.reviewID.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "reviews": [serialize_review(review) for review in reviews],
            "total": total,
            "page": page,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def get_summary(self, product_id: int) -> Dict[str, Any]:
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")

        distribution = {star: 0 for star in range(1, 6)}
        rows = (
            self.db.query(Review.rating, func.count(Review.reviewID))
            .filter(Review.productID == product_id)
            .group_by(Review.rating)
            .all()
        )
        for star, count in rows:
            distribution[int(star)] = int(count)

        return {
            "product_id": product_id,
            "average_rating": float(product.average_rating or 0),
            "rating_count": product.rating_count or 0,
            "distribution": distribution,
        }

    def _write_review(
        self,
        product_id: int,
        user_id: int,
        rating: int,
        title: str,
        comment: str,
    ) -> Tuple[Review, bool]:
        review = (
            self.db.query(Review)
            .filter(Review.productID == product_id, Review.userID == user_id)
            .first()
        )
        created = review is None
        if created:
            review = Review(productID=product_id, userID=user_id)
            self.db.add(review)
        review.rating = rating
        review.title = title
        review.comment = comment
        self.db.flush()
        return review, created

    @staticmethod
    def _validate_rating(rating: Any) -> int:
        if isinstance(rating, bool):
            raise ValidationError("Rating must be an integer between 1 and 5")
        try:
            value = int(str(rating).strip())
        except (TypeError, ValueError):
            raise ValidationError("Rating must be an integer between 1 and 5")
        if not 1 <= value <= 5:
            raise ValidationError("Rating must be an integer between 1 and 5")
        return value


def serialize_review(review: Review) -> Dict[str, Any]:
    user = review.user
    reviewer = None
    if user is not None:
        reviewer = user.full_name or user.email.split("@", 1)[0]
    return {
        "id": review.reviewID,
        "product_id": review.productID,
        "user_id": review.userID,
        "reviewer": reviewer,
        "rating": review.rating,
        "title": review.title,
        "comment": review.comment,
        "created_at": iso(review.created_at),
        "updated_at": iso(review.updated_at),
    }
