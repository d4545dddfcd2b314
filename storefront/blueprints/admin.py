from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Blueprint, jsonify, request

from storefront.blueprints.auth import admin_required
from storefront.blueprints.uploads import save_temp_upload
from storefront.database import get_db
from storefront.observability import get_metrics_snapshot
from storefront.services.catalog_service import CatalogService
from storefront.services.media_service import remove_temp_file
from storefront.services.rating_service import RatingAggregator

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

# The admin UI posts camelCase form fields
_FIELD_ALIASES = {
    "discountPercentage": "discount_percentage",
    "discountStart": "discount_start",
    "discountEnd": "discount_end",
    "imageUrl": "image_url",
    "videoUrl": "video_url",
    "isFeatured": "is_featured",
    "promotionBadge": "promotion_badge",
    "promoCode": "promo_code",
    "promoDescription": "promo_description",
    "promoExpiresAt": "promo_expires_at",
    "bundleItems": "bundle_items",
    "lowStockThreshold": "low_stock_threshold",
}


def _product_payload() -> Dict[str, Any]:
    if request.is_json:
        raw = request.get_json(silent=True) or {}
    else:
        raw = request.form.to_dict()
        for key in ("bundleItems", "bundle_items"):
            values = request.form.getlist(key)
            if len(values) > 1:
                raw[key] = values
    return {_FIELD_ALIASES.get(key, key): value for key, value in raw.items()}


def _get_catalog_service() -> CatalogService:
    return CatalogService(get_db())


def _discard_upload(image_path: Optional[str]) -> None:
    # The uploader deletes the file itself; this covers requests that fail before it runs
    if image_path:
        remove_temp_file(image_path)


@admin_bp.route("/dashboard", methods=["GET"])
@admin_required
def dashboard():
    return jsonify({"products": _get_catalog_service().admin_dashboard()})


@admin_bp.route("/add-product", methods=["POST"])
@admin_required
def add_product():
    payload = _product_payload()
    image_path = save_temp_upload(request.files.get("image"))
    service = _get_catalog_service()
    try:
        product = service.create_product(payload, image_path=image_path)
    finally:
        _discard_upload(image_path)
    return jsonify({"message": "Product added successfully", "product": service.decorate(product)}), 201


@admin_bp.route("/update-product/<int:product_id>", methods=["PUT"])
@admin_required
def update_product(product_id: int):
    payload = _product_payload()
    image_path = save_temp_upload(request.files.get("image"))
    service = _get_catalog_service()
    try:
        product = service.update_product(product_id, payload, image_path=image_path)
    finally:
        _discard_upload(image_path)
    return jsonify({"message": "Product updated successfully", "product": service.decorate(product)})


@admin_bp.route("/delete-product/<int:product_id>", methods=["DELETE"])
@admin_required
def delete_product(product_id: int):
    _get_catalog_service().delete_product(product_id)
    return jsonify({"message": "Product deleted successfully"})


@admin_bp.route("/ratings/reconcile", methods=["POST"])
@admin_required
def reconcile_ratings():
    return jsonify(RatingAggregator(get_db()).reconcile_all())


@admin_bp.route("/metrics", methods=["GET"])
@admin_required
def metrics():
    return jsonify(get_metrics_snapshot())
