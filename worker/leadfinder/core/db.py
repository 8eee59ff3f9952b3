"""Database helpers for the search cache and search logs."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Optional

import psycopg2
from psycopg2 import extras, pool

from leadfinder.core.config import get_settings

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS search_cache (
    key TEXT PRIMARY KEY,
    keyword TEXT NOT NULL,
    location TEXT NOT NULL,
    places JSONB NOT NULL,
    results_count INTEGER NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    expires_at TIMESTAMPTZ,
    hit_count INTEGER NOT NULL DEFAULT 0,
    last_access_at TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS search_logs (
    id BIGSERIAL PRIMARY KEY,
    user_id TEXT NOT NULL,
    keyword TEXT NOT NULL,
    location TEXT NOT NULL,
    results_count INTEGER NOT NULL,
    api_calls INTEGER NOT NULL,
    cached BOOLEAN NOT NULL,
    duration_seconds DOUBLE PRECISION,
    source TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_SELECT_CACHE = """
SELECT key, keyword, location, places, results_count, created_at, expires_at, hit_count, last_access_at
FROM search_cache
WHERE key = %(key)s;
"""

_UPSERT_CACHE = """
INSERT INTO search_cache (
    key,
    keyword,
    location,
    places,
    results_count,
    created_at,
    expires_at,
    hit_count,
    last_access_at
) VALUES (
    %(key)s,
    %(keyword)s,
    %(location)s,
    %(places)s,
    %(results_count)s,
    %(created_at)s,
    %(expires_at)s,
    0,
    NULL
)
ON CONFLICT (key) DO UPDATE SET
    keyword = EXCLUDED.keyword,
    location = EXCLUDED.location,
    places = EXCLUDED.places,
    results_count = EXCLUDED.results_count,
    created_at = EXCLUDED.created_at,
    expires_at = EXCLUDED.expires_at,
    hit_count = 0,
    last_access_at = NULL;
"""

_TOUCH_CACHE = """
UPDATE search_cache
SET hit_count = hit_count + 1,
    last_access_at = %(accessed_at)s
WHERE key = %(key)s;
"""

_EXPIRE_CACHE = """
UPDATE search_cache
SET expires_at = TIMESTAMPTZ 'epoch'
WHERE key = %(key)s;
"""

_INSERT_SEARCH_LOG = """
INSERT INTO search_logs (
    user_id,
    keyword,
    location,
    results_count,
    api_calls,
    cached,
    duration_seconds,
    source
) VALUES (
    %(user_id)s,
    %(keyword)s,
    %(location)s,
    %(results_count)s,
    %(api_calls)s,
    %(cached)s,
    %(duration_seconds)s,
    %(source)s
);
"""


def ensure_schema() -> None:
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(_SCHEMA)
        conn.commit()
    logger.info("Database schema verified")


def fetch_cache_row(key: str) -> Optional[Dict[str, Any]]:
    with get_connection() as conn:
        with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
            cur.execute(_SELECT_CACHE, {"key": key})
            row = cur.fetchone()
    return dict(row) if row else None


def upsert_cache_row(row: Dict[str, Any]) -> None:
    """Fully overwrite the cache row for ``row['key']``, resetting hit counters."""
    if not row.get("key"):
        raise ValueError("key is required for cache upsert")
    params = {
        "key": row["key"],
        "keyword": row.get("keyword") or "",
        "location": row.get("location") or "",
        "places": extras.Json(row.get("places") or []),
        "results_count": int(row.get("results_count") or 0),
        "created_at": row.get("created_at"),
        "expires_at": row.get("expires_at"),
    }
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(_UPSERT_CACHE, params)
        conn.commit()
    logger.debug("Upserted cache row %s", params["key"])


def touch_cache_row(key: str, accessed_at: datetime) -> None:
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(_TOUCH_CACHE, {"key": key, "accessed_at": accessed_at})
        conn.commit()


def expire_cache_row(key: str) -> bool:
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(_EXPIRE_CACHE, {"key": key})
            updated = cur.rowcount
        conn.commit()
    return bool(updated)


def insert_search_log(row: Dict[str, Any]) -> None:
    params = {
        "user_id": row.get("user_id"),
        "keyword": row.get("keyword"),
        "location": row.get("location"),
        "results_count": row.get("results_count", 0),
        "api_calls": row.get("api_calls", 0),
        "cached": bool(row.get("cached")),
        "duration_seconds": row.get("duration_seconds"),
        "source": row.get("source"),
    }
    if not params["user_id"] or not params["keyword"] or not params["location"]:
        raise ValueError("user_id, keyword and location are required for search logs")
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(_INSERT_SEARCH_LOG, params)
        conn.commit()


def ping() -> bool:
    """Return True when the database answers a trivial query."""
    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()
        return True
    except (RuntimeError, psycopg2.Error) as exc:
        logger.warning("Database ping failed: %s", exc)
        return False
