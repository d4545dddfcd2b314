from __future__ import annotations

from flask import Blueprint, jsonify, request

from storefront.blueprints.auth import current_identity, login_required
from storefront.database import get_db
from storefront.services.auth_service import AuthService, serialize_user

users_bp = Blueprint("users", __name__, url_prefix="/api/users")

_RESET_SENT_MESSAGE = "If an account exists, a reset link has been sent."


def _get_auth_service() -> AuthService:
    return AuthService(get_db())


@users_bp.route("/register", methods=["POST"])
def register():
    payload = request.get_json(silent=True) or {}
    user = _get_auth_service().register(payload)
    return jsonify({"message": "Account Created Successfully!", "user": serialize_user(user)}), 201


@users_bp.route("/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    result = _get_auth_service().login(payload.get("email"), payload.get("password"))
    return jsonify({"message": "Login successful", **result})


@users_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    payload = request.get_json(silent=True) or {}
    # Same answer whether or not the account exists
    _get_auth_service().forgot_password(payload.get("email"))
    return jsonify({"message": _RESET_SENT_MESSAGE})


@users_bp.route("/reset-password", methods=["POST"])
def reset_password():
    payload = request.get_json(silent=True) or {}
    _get_auth_service().reset_password(payload.get("token"), payload.get("password"))
    return jsonify({"message": "Password reset successful! Please log in with your new password."})


@users_bp.route("/me", methods=["GET"])
@login_required
def me():
    user = _get_auth_service().get_user(current_identity()["id"])
    return jsonify({"user": serialize_user(user)})
