"""Parsing helpers for JSON and form payloads. Every failure is a ValidationError."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from storefront.services.errors import ValidationError
from storefront.services.pricing import to_utc_instant


def pick(mapping: Dict[str, Any], *keys: str) -> Any:
    """First non-null key; the storefront sends camelCase, scripts tend to send snake_case."""
    for key in keys:
        if key in mapping and mapping[key] is not None:
            return mapping[key]
    return None


def has_any(mapping: Dict[str, Any], *keys: str) -> bool:
    return any(key in mapping for key in keys)


def text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


LIKE_ESCAPE = "\\"


def contains_pattern(value: str) -> str:
    """``%value%`` for LIKE, with the value's own wildcards escaped by LIKE_ESCAPE."""
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def iso(value: Optional[datetime]) -> Optional[str]:
    value = to_utc_instant(value)
    return value.isoformat() if value else None


def parse_datetime(value: Any, field_name: str) -> Optional[datetime]:
    """Accept ISO-8601 strings (``Z`` suffix included) or datetimes; blank means unset."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc_instant(value)
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime")
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return to_utc_instant(datetime.fromisoformat(raw))
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime")


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number")
    if not number.is_finite():
        raise ValidationError(f"{field_name} must be a number")
    return number


def parse_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer")
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer")


def parse_string_list(value: Any, field_name: str) -> List[str]:
    """A list of strings, or a comma separated string from a form field."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field_name} must be a list")
    return [str(item).strip() for item in value if str(item).strip()]
