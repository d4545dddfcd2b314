"""Centralized application configuration for all environments."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Final

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Load environment variables once, prioritizing runtime env over file values
load_dotenv(dotenv_path=ENV_PATH, override=False)


def _str_to_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _csv_list(value: str | None, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    if not value:
        return default
    items = tuple(part.strip() for part in value.split(",") if part.strip())
    return items or default


def _determine_database_url() -> str:
    """
    Return a connection string using the following precedence:
    1. Explicit DATABASE_URL
    2. Individual DB_* components (for PostgreSQL)
    3. Local SQLite fallback (for onboarding / tests)
    """
    explicit_url = os.getenv("DATABASE_URL")
    if explicit_url:
        return explicit_url

    username = os.getenv("DB_USERNAME")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    name = os.getenv("DB_NAME")

    if all([username, password, host, port, name]):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return f"{driver}://{username}:{password}@{host}:{port}/{name}"

    fallback_path = BASE_DIR / "db" / "storefront.db"
    fallback_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{fallback_path.as_posix()}"


class Config:
    """Default runtime configuration shared across Flask, services, and scripts."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "Storefront")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")

    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _str_to_bool(os.getenv("FLASK_DEBUG"), default=APP_ENV == "development")
    TESTING: Final[bool] = _str_to_bool(os.getenv("FLASK_TESTING"), default=False)

    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = int(os.getenv("FLASK_RUN_PORT", "5000"))

    # Database
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _str_to_bool(os.getenv("SQL_ECHO"), default=False)
    DB_POOL_SIZE: Final[int] = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: Final[int] = int(os.getenv("DB_MAX_OVERFLOW", "20"))

    # Auth
    JWT_SECRET: Final[str] = os.getenv("JWT_SECRET", "devsecret")
    JWT_ALGORITHM: Final[str] = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_EXPIRES_MINUTES: Final[int] = int(os.getenv("JWT_EXPIRES_MINUTES", str(60 * 24)))
    PASSWORD_RESET_EXPIRY_MINUTES: Final[int] = int(os.getenv("PASSWORD_RESET_EXPIRY_MINUTES", "60"))
    FRONTEND_URL: Final[str] = os.getenv("FRONTEND_URL", "http://localhost:5173")
    CORS_ALLOWED_ORIGINS: Final[tuple[str, ...]] = _csv_list(
        os.getenv("CORS_ALLOWED_ORIGINS"),
        default=("http://localhost:5173",),
    )

    # Catalog
    LOW_STOCK_THRESHOLD: Final[int] = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))
    PRODUCT_PAGE_SIZE: Final[int] = int(os.getenv("PRODUCT_PAGE_SIZE", "8"))
    HIGHLIGHT_LIMIT: Final[int] = int(os.getenv("HIGHLIGHT_LIMIT", "8"))
    REVIEW_PAGE_SIZE: Final[int] = int(os.getenv("REVIEW_PAGE_SIZE", "10"))
    BLOG_PAGE_SIZE: Final[int] = int(os.getenv("BLOG_PAGE_SIZE", "6"))

    # Orders
    ORDER_PAGE_SIZE: Final[int] = int(os.getenv("ORDER_PAGE_SIZE", "20"))
    ORDER_NUMBER_PREFIX: Final[str] = os.getenv("ORDER_NUMBER_PREFIX", "ORD")
    ORDER_NUMBER_MAX_ATTEMPTS: Final[int] = int(os.getenv("ORDER_NUMBER_MAX_ATTEMPTS", "3"))
    # Calendar used for the date part of order numbers
    DEFAULT_TIMEZONE: Final[str] = os.getenv("DEFAULT_TIMEZONE", "UTC")

    # Email (Brevo transactional API)
    BREVO_API_KEY: Final[str] = os.getenv("BREVO_API_KEY", "")
    BREVO_API_URL: Final[str] = os.getenv("BREVO_API_URL", "https://api.brevo.com/v3/smtp/email")
    EMAIL_SENDER: Final[str] = os.getenv("EMAIL_SENDER", "orders@example.com")
    EMAIL_SENDER_NAME: Final[str] = os.getenv("EMAIL_SENDER_NAME", APP_NAME)
    ADMIN_NOTIFICATION_EMAIL: Final[str] = os.getenv("ADMIN_NOTIFICATION_EMAIL", "")
    EMAIL_TIMEOUT_SECONDS: Final[int] = int(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))

    # Media uploads
    IMGBB_API_KEY: Final[str] = os.getenv("IMGBB_API_KEY", "")
    IMGBB_API_URL: Final[str] = os.getenv("IMGBB_API_URL", "https://api.imgbb.com/1/upload")
    CLOUDINARY_CLOUD_NAME: Final[str] = os.getenv("CLOUDINARY_CLOUD_NAME", "")
    CLOUDINARY_API_KEY: Final[str] = os.getenv("CLOUDINARY_API_KEY", "")
    CLOUDINARY_API_SECRET: Final[str] = os.getenv("CLOUDINARY_API_SECRET", "")
    UPLOAD_TIMEOUT_SECONDS: Final[int] = int(os.getenv("UPLOAD_TIMEOUT_SECONDS", "30"))
    UPLOAD_TMP_DIR: Final[Path] = Path(os.getenv("UPLOAD_TMP_DIR", (BASE_DIR / "uploads").as_posix()))
    UPLOAD_MAX_BYTES: Final[int] = int(os.getenv("UPLOAD_MAX_BYTES", str(5 * 1024 * 1024)))
    UPLOAD_ALLOWED_EXTENSIONS: Final[tuple[str, ...]] = tuple(
        ext.lower() for ext in _csv_list(os.getenv("UPLOAD_ALLOWED_EXTENSIONS"), default=("png", "jpg", "jpeg", "webp"))
    )

    # Observability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _str_to_bool(os.getenv("STRUCTURED_LOGS_ENABLED"), default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Apply core configuration to a Flask app instance."""
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["SQLALCHEMY_ECHO"] = cls.SQL_ECHO
        app.config["MAX_CONTENT_LENGTH"] = cls.UPLOAD_MAX_BYTES
        cls.UPLOAD_TMP_DIR.mkdir(parents=True, exist_ok=True)
        app.config["UPLOAD_TMP_DIR"] = str(cls.UPLOAD_TMP_DIR)
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED
