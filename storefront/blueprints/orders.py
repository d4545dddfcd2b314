from __future__ import annotations

from flask import Blueprint, jsonify, request

from storefront.blueprints.auth import admin_required, current_identity, login_required, optional_login, page_args
from storefront.config import Config
from storefront.database import get_db
from storefront.services.order_service import OrderService, serialize_order
from storefront.services.payloads import iso

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _get_order_service() -> OrderService:
    return OrderService(get_db())


@orders_bp.route("/create", methods=["POST"])
@optional_login
def create_order():
    payload = request.get_json(silent=True) or {}
    order = _get_order_service().create_order(payload, identity=current_identity())
    return jsonify(
        {
            "message": "Order placed successfully!",
            "order": {
                "id": order.orderID,
                "order_number": order.order_number,
                "status": order.status.value,
                "total_amount": float(order.total_amount),
                "created_at": iso(order.created_at),
            },
        }
    ), 201


@orders_bp.route("/user/history", methods=["GET"])
@login_required
def user_history():
    orders = _get_order_service().list_user_orders(current_identity()["id"])
    return jsonify({"orders": [serialize_order(order) for order in orders]})


@orders_bp.route("/admin/all", methods=["GET"])
@admin_required
def admin_list_orders():
    page, limit = page_args(Config.ORDER_PAGE_SIZE)
    return jsonify(_get_order_service().list_orders(request.args.get("status"), page, limit))


@orders_bp.route("/admin/update-status/<int:order_id>", methods=["PUT"])
@admin_required
def admin_update_status(order_id: int):
    payload = request.get_json(silent=True) or {}
    order = _get_order_service().update_status(order_id, payload.get("status"), payload.get("notes"))
    return jsonify({"message": "Order status updated successfully", "order": serialize_order(order)})


@orders_bp.route("/admin/stats", methods=["GET"])
@admin_required
def admin_stats():
    return jsonify(_get_order_service().get_stats())


@orders_bp.route("/<identifier>", methods=["GET"])
@optional_login
def get_order(identifier: str):
    # Tracking by order number needs no account; numeric ids only for the owner or an admin
    order = _get_order_service().get_order(identifier, viewer=current_identity())
    return jsonify({"order": serialize_order(order)})
