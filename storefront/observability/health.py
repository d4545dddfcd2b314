from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from storefront.database import engine

logger = logging.getLogger(__name__)


def check_database_health() -> Dict[str, Any]:
    """Run ``SELECT 1`` against the configured database and report UP or DOWN."""
    checked_at = datetime.now(timezone.utc).isoformat()
    started = time.perf_counter()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Database health check failed: %s", exc)
        return {"status": "DOWN", "detail": str(exc), "checked_at": checked_at}
    latency_ms = round((time.perf_counter() - started) * 1000, 2)
    return {"status": "UP", "latency_ms": latency_ms, "checked_at": checked_at}
