from __future__ import annotations

from flask import Blueprint, jsonify, request

from storefront.blueprints.auth import current_identity, login_required, page_args
from storefront.config import Config
from storefront.database import get_db
from storefront.services.rating_service import ReviewService, serialize_review

reviews_bp = Blueprint("reviews", __name__, url_prefix="/api/reviews")


def _get_review_service() -> ReviewService:
    return ReviewService(get_db())


@reviews_bp.route("/product/<int:product_id>", methods=["GET"])
def list_reviews(product_id: int):
    page, limit = page_args(Config.REVIEW_PAGE_SIZE)
    service = _get_review_service()
    result = service.list_reviews(product_id, page, limit)
    result["summary"] = service.get_summary(product_id)
    return jsonify(result)


@reviews_bp.route("/product/<int:product_id>", methods=["POST"])
@login_required
def upsert_review(product_id: int):
    payload = request.get_json(silent=True) or {}
    review, created = _get_review_service().upsert_review(
        product_id,
        current_identity()["id"],
        payload.get("rating"),
        title=payload.get("title"),
        comment=payload.get("comment"),
    )
    message = "Review added" if created else "Review updated"
    return jsonify({"message": message, "review": serialize_review(review)}), 201 if created else 200


@reviews_bp.route("/<int:review_id>", methods=["DELETE"])
@login_required
def delete_review(review_id: int):
    _get_review_service().delete_review(review_id, current_identity())
    return jsonify({"message": "Review deleted"})
