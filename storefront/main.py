# storefront/main.py
import logging
import time

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from storefront.config import Config
from storefront.database import Base, close_db, engine
from storefront.blueprints.admin import admin_bp
from storefront.blueprints.blog import blog_bp
from storefront.blueprints.orders import orders_bp
from storefront.blueprints.products import products_bp
from storefront.blueprints.reviews import reviews_bp
from storefront.blueprints.uploads import uploads_bp
from storefront.blueprints.users import users_bp
from storefront.observability import (
    check_database_health,
    configure_logging,
    ensure_request_id,
    increment_counter,
    observe_latency,
)
from storefront.services.errors import StorefrontError

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)

for blueprint in (users_bp, products_bp, admin_bp, orders_bp, reviews_bp, blog_bp, uploads_bp):
    app.register_blueprint(blueprint)

logger = logging.getLogger(__name__)

_CORS_ALLOWED_HEADERS = f"Authorization, Content-Type, {Config.REQUEST_ID_HEADER}"
_CORS_ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"


def init_database():
    """Create any missing tables."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.exception("Error initializing database: %s", e)


init_database()


def _rollback_request_session() -> None:
    db = g.get("db")
    if db is not None:
        db.rollback()


@app.before_request
def before_request_logging():
    g.identity = None
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )


@app.after_request
def after_request_logging(response):
    started = getattr(g, "request_started_at", None)
    labels = {
        "method": request.method,
        "endpoint": request.endpoint or request.path,
        "status": str(response.status_code),
    }
    if started is not None:
        observe_latency("http_request_latency_ms", (time.perf_counter() - started) * 1000, labels=labels)
    if response.status_code >= 500:
        increment_counter("http_errors_total", labels=labels)
        logger.error("Request finished with error status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})

    response.headers[Config.REQUEST_ID_HEADER] = getattr(g, "request_id", "")
    origin = request.headers.get("Origin")
    if origin and origin in Config.CORS_ALLOWED_ORIGINS:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Headers"] = _CORS_ALLOWED_HEADERS
        response.headers["Access-Control-Allow-Methods"] = _CORS_ALLOWED_METHODS
        response.headers.add("Vary", "Origin")
    return response


@app.teardown_appcontext
def teardown_db(exception):
    close_db(exception)


@app.errorhandler(StorefrontError)
def handle_storefront_error(error: StorefrontError):
    _rollback_request_session()
    if error.status_code >= 500:
        logger.error("Request failed: %s", error.message)
    else:
        logger.info("Request rejected (%s): %s", error.status_code, error.message)
    return jsonify({"error": error.message}), error.status_code


@app.errorhandler(HTTPException)
def handle_http_error(error: HTTPException):
    return jsonify({"error": error.description}), error.code


@app.errorhandler(Exception)
def handle_unexpected_error(error: Exception):
    _rollback_request_session()
    logger.exception("Unhandled error: %s", error)
    return jsonify({"error": "Internal server error"}), 500


@app.route("/api/health", methods=["GET"])
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "UP" else 503
    return jsonify({"status": database["status"], "app": Config.APP_NAME, "database": database}), status_code
