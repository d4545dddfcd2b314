from __future__ import annotations

from functools import wraps
from typing import Any, Dict, Optional

from flask import g, request

from storefront.models import UserRole
from storefront.services.auth_service import decode_access_token
from storefront.services.errors import AuthenticationError, PermissionDenied


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def current_identity() -> Optional[Dict[str, Any]]:
    return getattr(g, "identity", None)


def _load_identity(required: bool) -> None:
    token = _bearer_token()
    if token is None:
        if required:
            raise AuthenticationError("No token provided")
        g.identity = None
        return
    g.identity = decode_access_token(token)


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        _load_identity(required=True)
        return view(*args, **kwargs)

    return wrapper


def optional_login(view):
    """Identity when a token is sent, guest otherwise. A bad token is still rejected."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        _load_identity(required=False)
        return view(*args, **kwargs)

    return wrapper


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        _load_identity(required=True)
        if g.identity.get("role") != UserRole.ADMIN.value:
            raise PermissionDenied("Admins only")
        return view(*args, **kwargs)

    return wrapper


def page_args(default_limit: int) -> tuple[int, int]:
    """``page`` and ``limit`` query parameters, clamped to sane values."""
    page = request.args.get("page", default=1, type=int) or 1
    limit = request.args.get("limit", default=default_limit, type=int) or default_limit
    return max(1, page), max(1, min(limit, 100))
