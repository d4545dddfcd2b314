from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from flask import Flask, g, has_request_context, request

from storefront.config import Config

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}
_CONTEXT_FIELDS = ("request_id", "method", "path", "user_id", "user_role")

_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"

# Chatty third-party loggers; their DEBUG output drowns the API's own
_QUIET_LOGGERS = ("urllib3", "werkzeug")


class RequestContextFilter(logging.Filter):
    """Stamp each record with the request id and the caller's token identity."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = dict.fromkeys(_CONTEXT_FIELDS)
        if has_request_context():
            identity = getattr(g, "identity", None) or {}
            context.update(
                request_id=getattr(g, "request_id", None),
                method=request.method,
                path=request.path,
                user_id=identity.get("id"),
                user_role=identity.get("role"),
            )
        for key, value in context.items():
            setattr(record, key, value)
        if record.request_id is None:
            record.request_id = "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line for log shippers."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": Config.APP_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _CONTEXT_FIELDS:
            payload[key] = getattr(record, key, None)

        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and key not in payload
        }
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(app: Flask) -> None:
    """Install a single stdout handler on the root logger, JSON or plain text per Config."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    if Config.STRUCTURED_LOGS_ENABLED:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(Config.LOG_LEVEL)
    # Replace handlers so a reload does not duplicate output
    root_logger.handlers = [handler]

    # Flask's own logger propagates to root instead of keeping a second handler
    app.logger.handlers = []
    app.logger.propagate = True
    app.logger.setLevel(Config.LOG_LEVEL)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root_logger.level))

    app.logger.debug("Logging configured (structured=%s)", Config.STRUCTURED_LOGS_ENABLED)


def ensure_request_id() -> str:
    """Reuse the caller's request id header, or mint one for this request."""
    existing = getattr(g, "request_id", None)
    if existing:
        return existing
    incoming: Optional[str] = request.headers.get(Config.REQUEST_ID_HEADER)
    g.request_id = (incoming or "").strip()[:64] or uuid4().hex
    return g.request_id
