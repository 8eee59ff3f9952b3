"""HTTP scrape service wrapping the search orchestrator (Cloud Run friendly)."""

from __future__ import annotations

import hmac
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from flask import Flask, jsonify, request

from leadfinder.core import db
from leadfinder.core.config import get_settings
from leadfinder.core.planner import CATEGORY_CUSTOM, SearchValidationError
from leadfinder.core.search import get_orchestrator
from leadfinder.etl.transform import filter_by_address, filter_with_phone, filter_with_website

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "leadfinder-scraper"
SERVICE_VERSION = "1.0.0"

# ---------- App ----------
app = Flask(__name__)


def _error(status: int, error: str, message: str) -> Tuple[Any, int]:
    return jsonify({"success": False, "error": error, "message": message}), status


def _authorized() -> bool:
    expected = get_settings().secret_key
    provided = request.headers.get("x-secret-key", "")
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided, expected)


def _flag(payload: Dict[str, Any], name: str) -> bool:
    value = payload.get(name, False)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Service descriptor."""
    return jsonify(
        {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "endpoints": {"scrape": "POST /scrape", "health": "GET /health", "clear": "POST /cache/clear"},
            "status": "operational",
        }
    )


@app.get("/health")
def healthcheck() -> Any:
    """Liveness plus the state of the cache store."""
    settings = get_settings()
    store = get_orchestrator().cache.store
    if store.name == "memory":
        store_status = "memory"
    else:
        store_status = "connected" if store.healthy() else "disconnected"
    return (
        jsonify(
            {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "store": store_status,
                "fetchMode": settings.fetch_mode,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/scrape")
def scrape() -> Any:
    """
    Run a search and return the merged leads.
    Required JSON fields: keyword, location
    Optional: category, scope, subArea, userId, forceRefresh, withPhone, withWebsite, area
    """
    if not _authorized():
        return _error(401, "Unauthorized", "Invalid or missing x-secret-key header")

    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    keyword = str(payload.get("keyword") or "").strip()
    location = str(payload.get("location") or "").strip()
    if not keyword or not location:
        return _error(400, "Missing required fields", "Both keyword and location are required")

    user_id = payload.get("userId")
    started = time.monotonic()
    try:
        response = get_orchestrator().search(
            keyword,
            str(payload.get("category") or CATEGORY_CUSTOM),
            location,
            payload.get("scope") or "city",
            str(payload.get("subArea") or ""),
            force_refresh=_flag(payload, "forceRefresh"),
        )
    except SearchValidationError as exc:
        return _error(400, "Invalid request", str(exc))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Scrape failed for keyword=%s location=%s: %s", keyword, location, exc)
        return _error(500, "Scraping failed", str(exc))
    duration = time.monotonic() - started

    leads = response.results
    if _flag(payload, "withPhone"):
        leads = filter_with_phone(leads)
    if _flag(payload, "withWebsite"):
        leads = filter_with_website(leads)
    area = str(payload.get("area") or "").strip()
    if area:
        leads = filter_by_address(leads, area)

    if user_id:
        _log_search(
            user_id=str(user_id),
            keyword=keyword,
            location=location,
            results_count=len(leads),
            api_calls=response.api_calls,
            cached=response.cached,
            duration_seconds=round(duration, 2),
        )

    body = response.to_dict()
    body.update(
        {
            "success": True,
            "results": [lead.to_dict() for lead in leads],
            "count": len(leads),
            "duration": f"{duration:.2f}s",
            "message": "Results from cache" if response.cached else "Fresh scrape completed",
        }
    )
    return jsonify(body), 200


@app.post("/cache/clear")
def clear_cache() -> Any:
    """Mark the cached results for keyword/location as expired."""
    if not _authorized():
        return _error(401, "Unauthorized", "Invalid or missing x-secret-key header")

    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    try:
        cleared = get_orchestrator().clear_cache(
            str(payload.get("keyword") or ""),
            str(payload.get("location") or ""),
        )
    except SearchValidationError as exc:
        return _error(400, "Missing required fields", str(exc))
    return jsonify({"success": True, "cleared": cleared}), 200


# ---------- Internals ----------


def _log_search(**row: Any) -> None:
    if not get_settings().database_url:
        logger.debug("No database configured; skipping search log for user=%s", row.get("user_id"))
        return
    try:
        db.insert_search_log({**row, "source": SERVICE_NAME})
    except Exception as exc:  # noqa: BLE001
        logger.error("Failed to write search log for user=%s: %s", row.get("user_id"), exc)


def main() -> None:
    """Bind on the PORT Cloud Run injects, falling back to WORKER_PORT locally."""
    env_port = os.getenv("PORT")
    logger.info("[BOOT] ENV PORT=%s", env_port)

    settings = get_settings()
    port = int(env_port or settings.worker_port)
    if settings.database_url:
        db.ensure_schema()
    logger.info("[BOOT] fetch_mode=%s store=%s", settings.fetch_mode, "postgres" if settings.database_url else "memory")
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)

    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
