from __future__ import annotations

from flask import Blueprint, jsonify, request

from storefront.blueprints.auth import page_args
from storefront.config import Config
from storefront.database import get_db
from storefront.services.catalog_service import CatalogService

products_bp = Blueprint("products", __name__, url_prefix="/api/product")


def _get_catalog_service() -> CatalogService:
    return CatalogService(get_db())


@products_bp.route("/", methods=["GET"])
def list_products():
    page, limit = page_args(Config.PRODUCT_PAGE_SIZE)
    result = _get_catalog_service().list_products(
        search=request.args.get("search", ""),
        category=request.args.get("category") or None,
        page=page,
        limit=limit,
    )
    return jsonify(result)


@products_bp.route("/categories", methods=["GET"])
def list_categories():
    return jsonify({"categories": _get_catalog_service().list_categories()})


@products_bp.route("/highlights", methods=["GET"])
def highlights():
    limit = request.args.get("limit", type=int)
    return jsonify(_get_catalog_service().highlights(limit=limit))


@products_bp.route("/<int:product_id>", methods=["GET"])
def get_product(product_id: int):
    service = _get_catalog_service()
    return jsonify({"product": service.decorate(service.get_product(product_id))})
