"""Result cache keyed by (keyword, location).

Freshness is evaluated on read; nothing sweeps stale entries. Clearing an
entry stamps it with an epoch expiry instead of deleting it.
"""

from __future__ import annotations

import copy
import hashlib
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from leadfinder.core import db
from leadfinder.models import RawResult

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
DEFAULT_TTL = timedelta(days=7)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(keyword: str, location: str) -> str:
    """Stable hash of ``lower(keyword) + "|" + lower(location)``."""
    normalized = f"{keyword.strip().lower()}|{location.strip().lower()}"
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    key: str
    places: List[RawResult]
    created_at: datetime
    keyword: str = ""
    location: str = ""
    hit_count: int = 0
    last_access_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    results_count: int = field(default=-1)

    def __post_init__(self) -> None:
        if self.results_count < 0:
            self.results_count = len(self.places)

    def is_fresh(self, now: datetime, ttl: timedelta) -> bool:
        if self.expires_at is not None and self.expires_at <= now:
            return False
        return now - self.created_at < ttl

    def to_row(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "keyword": self.keyword,
            "location": self.location,
            "places": [place.to_dict() for place in self.places],
            "results_count": self.results_count,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "hit_count": self.hit_count,
            "last_access_at": self.last_access_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CacheEntry":
        places = [RawResult.from_dict(place) for place in row.get("places") or [] if isinstance(place, dict)]
        return cls(
            key=row["key"],
            keyword=row.get("keyword") or "",
            location=row.get("location") or "",
            places=places,
            results_count=row.get("results_count") if row.get("results_count") is not None else len(places),
            created_at=row["created_at"],
            expires_at=row.get("expires_at"),
            hit_count=row.get("hit_count") or 0,
            last_access_at=row.get("last_access_at"),
        )


class CacheStore:
    """Storage backend used by :class:`SearchCache`."""

    name = "abstract"

    def load(self, key: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def save(self, entry: CacheEntry) -> None:
        raise NotImplementedError

    def touch(self, key: str, accessed_at: datetime) -> None:
        raise NotImplementedError

    def expire(self, key: str) -> bool:
        raise NotImplementedError

    def healthy(self) -> bool:
        return True


class MemoryCacheStore(CacheStore):
    """Process-local store used when no database is configured."""

    name = "memory"

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            return copy.deepcopy(entry) if entry else None

    def save(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.key] = copy.deepcopy(entry)

    def touch(self, key: str, accessed_at: datetime) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.hit_count += 1
                entry.last_access_at = accessed_at

    def expire(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.expires_at = EPOCH
            return True


class PostgresCacheStore(CacheStore):
    name = "postgres"

    def load(self, key: str) -> Optional[CacheEntry]:
        row = db.fetch_cache_row(key)
        return CacheEntry.from_row(row) if row else None

    def save(self, entry: CacheEntry) -> None:
        db.upsert_cache_row(entry.to_row())

    def touch(self, key: str, accessed_at: datetime) -> None:
        db.touch_cache_row(key, accessed_at)

    def expire(self, key: str) -> bool:
        return db.expire_cache_row(key)

    def healthy(self) -> bool:
        return db.ping()


class SearchCache:
    def __init__(self, store: CacheStore, ttl: timedelta = DEFAULT_TTL, clock: Clock = utcnow) -> None:
        self.store = store
        self.ttl = ttl
        self._clock = clock

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return a fresh entry, or None for a missing or stale one.

        Stale entries are left in place for the next ``put`` to overwrite.
        """
        entry = self.store.load(key)
        if entry is None:
            logger.info("Cache miss for key=%s", key[:12])
            return None

        now = self._clock()
        if not entry.is_fresh(now, self.ttl):
            logger.info("Cache entry for key=%s is stale (created_at=%s)", key[:12], entry.created_at)
            return None

        try:
            self.store.touch(key, now)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to record cache hit for key=%s: %s", key[:12], exc)
        else:
            entry.hit_count += 1
            entry.last_access_at = now

        logger.info("Cache hit for key=%s (%d results)", key[:12], entry.results_count)
        return entry

    def put(self, key: str, places: List[RawResult], *, keyword: str = "", location: str = "") -> CacheEntry:
        """Overwrite the entry for ``key`` with a fresh result set."""
        now = self._clock()
        entry = CacheEntry(
            key=key,
            keyword=keyword,
            location=location,
            places=list(places),
            created_at=now,
            expires_at=now + self.ttl,
        )
        self.store.save(entry)
        logger.info("Cached %d results for key=%s", entry.results_count, key[:12])
        return entry

    def clear(self, keyword: str, location: str) -> bool:
        key = cache_key(keyword, location)
        cleared = self.store.expire(key)
        logger.info("Cleared cache for key=%s: %s", key[:12], "expired" if cleared else "no entry")
        return cleared


def build_cache(settings) -> SearchCache:
    """Pick the store for the current deployment."""
    store: CacheStore = PostgresCacheStore() if settings.database_url else MemoryCacheStore()
    return SearchCache(store, ttl=timedelta(days=settings.cache_ttl_days))
