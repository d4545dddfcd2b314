from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from storefront.config import Config
from storefront.models import User, UserRole
from storefront.observability import increment_counter
from storefront.services.email_service import EmailService
from storefront.services.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    StorefrontError,
    ValidationError,
)
from storefront.services.payloads import iso, pick, text
from storefront.services.pricing import to_utc_instant

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6

_PROFILE_FIELDS = (
    ("first_name", ("firstName", "first_name")),
    ("last_name", ("lastName", "last_name")),
    ("phone", ("phone",)),
    ("address", ("address",)),
    ("city", ("city",)),
    ("state", ("state",)),
    ("country", ("country",)),
    ("zip_code", ("zipCode", "zip_code")),
)


def serialize_user(user: User) -> Dict[str, Any]:
    data = {
        "id": user.userID,
        "email": user.email,
        "role": user.role.value if hasattr(user.role, "value") else user.role,
        "created_at": iso(user.created_at),
    }
    for attribute, _ in _PROFILE_FIELDS:
        data[attribute] = getattr(user, attribute)
    return data


def create_access_token(user: User, expires_minutes: Optional[int] = None) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or Config.JWT_EXPIRES_MINUTES)
    claims = {
        "sub": str(user.userID),
        "role": user.role.value if hasattr(user.role, "value") else user.role,
        "email": user.email,
        "exp": expires,
    }
    return jwt.encode(claims, Config.JWT_SECRET, algorithm=Config.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Return the identity ``{id, role, email}`` carried by a token."""
    try:
        claims = jwt.decode(token, Config.JWT_SECRET, algorithms=[Config.JWT_ALGORITHM])
        return {"id": int(claims["sub"]), "role": claims.get("role"), "email": claims.get("email")}
    except (JWTError, KeyError, TypeError, ValueError):
        raise AuthenticationError("Invalid token")


class AuthService:
    def __init__(self, db_session: Session, email_service: Optional[EmailService] = None) -> None:
        self.db = db_session
        self.email_service = email_service or EmailService()
        self.logger = logging.getLogger(__name__)

    def register(self, payload: Dict[str, Any]) -> User:
        email = text(payload.get("email")).lower()
        password = payload.get("password") or ""
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("A valid email is required")
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if self._find_by_email(email):
            raise ConflictError("Email already registered")

        user = User(email=email, role=UserRole.USER)
        user.passwordHash = generate_password_hash(password)
        for attribute, keys in _PROFILE_FIELDS:
            value = pick(payload, *keys)
            if value is not None:
                setattr(user, attribute, text(value))

        try:
            self.db.add(user)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Email already registered")
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to register %s", email)
            raise
        self.db.refresh(user)
        increment_counter("users_registered_total")
        self.logger.info("User %s registered", user.userID)
        return user

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self._find_by_email(text(email).lower())
        if user is None or not check_password_hash(user.passwordHash, password or ""):
            increment_counter("login_failures_total")
            raise AuthenticationError("Invalid credentials")
        return {"token": create_access_token(user), "user": serialize_user(user)}

    def get_user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def forgot_password(self, email: str, now: Optional[datetime] = None) -> bool:
        """Issue a reset token and email it. False when no account matches."""
        user = self._find_by_email(text(email).lower())
        if user is None:
            return False

        now = now or datetime.now(timezone.utc)
        token = secrets.token_hex(32)
        user.reset_token = token
        user.reset_token_expires_at = now + timedelta(minutes=Config.PASSWORD_RESET_EXPIRY_MINUTES)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to store reset token for user %s", user.userID)
            raise

        result = self.email_service.send_password_reset(user.email, token)
        if not result.success:
            self.logger.error("Failed to send reset email to user %s: %s", user.userID, result.error)
            raise StorefrontError("Failed to send reset email. Please try again.")
        return True

    def reset_password(self, token: str, password: str, now: Optional[datetime] = None) -> User:
        if not token:
            raise ValidationError("Invalid or expired reset token")
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        now = now or datetime.now(timezone.utc)
        user = self.db.query(User).filter(User.reset_token == token).first()
        expires_at = to_utc_instant(user.reset_token_expires_at) if user else None
        if user is None or expires_at is None or expires_at <= now:
            raise ValidationError("Invalid or expired reset token")

        user.passwordHash = generate_password_hash(password)
        user.reset_token = None
        user.reset_token_expires_at = None
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to reset password for user %s", user.userID)
            raise
        self.logger.info("Password reset for user %s", user.userID)
        return user

    def _find_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        return self.db.query(User).filter(User.email == email).first()
