"""Search orchestration: plan variants, fetch them in order, merge, cache.

Variants run one at a time in planner order, so the configured page and
variant delays bound the aggregate provider call rate.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple

from leadfinder.core.accounting import CallCounter, UsageReceipt
from leadfinder.core.cache import SearchCache, build_cache, cache_key
from leadfinder.core.config import Settings, get_settings
from leadfinder.core.dedup import Deduplicator
from leadfinder.core.fetch import FetchExecutor, SearchCancelled, build_executor
from leadfinder.core.planner import CATEGORY_CUSTOM, Scope, SearchRequest, SearchValidationError, plan_queries
from leadfinder.core.progress import Phase, ProgressReporter, ProgressSink
from leadfinder.etl.transform import to_leads
from leadfinder.models import NormalizedLead, RawResult

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[Settings, Optional[threading.Event]], FetchExecutor]

_FOLLOWER_POLL_SECONDS = 0.5


@dataclass(frozen=True)
class SearchResponse:
    results: List[NormalizedLead]
    api_calls: int
    cached: bool
    cost_usd: float = 0.0
    places: List[RawResult] = field(default_factory=list, repr=False)

    @property
    def count(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [lead.to_dict() for lead in self.results],
            "count": self.count,
            "apiCalls": self.api_calls,
            "costUsd": self.cost_usd,
            "cached": self.cached,
        }


class _InFlight:
    """Shared outcome of one in-progress fetch for a cache key."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.places: Optional[List[RawResult]] = None
        self.error: Optional[BaseException] = None


class SearchOrchestrator:
    def __init__(
        self,
        settings: Settings,
        cache: SearchCache,
        executor_factory: ExecutorFactory = build_executor,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self._executor_factory = executor_factory
        self._inflight: Dict[str, _InFlight] = {}
        self._inflight_lock = threading.Lock()

    def search(
        self,
        keyword: str,
        category: str,
        location: str,
        scope: "Scope | str" = Scope.CITY,
        sub_area: str = "",
        on_progress: Optional[ProgressSink] = None,
        *,
        force_refresh: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> SearchResponse:
        request = SearchRequest(
            keyword=keyword,
            location=location,
            category=category or CATEGORY_CUSTOM,
            scope=scope,
            sub_area=sub_area,
        )
        return self.run(request, on_progress, force_refresh=force_refresh, cancel_event=cancel_event)

    def run(
        self,
        request: SearchRequest,
        on_progress: Optional[ProgressSink] = None,
        *,
        force_refresh: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> SearchResponse:
        reporter = ProgressReporter(on_progress)
        key = cache_key(request.keyword, request.location)
        logger.info(
            "Search keyword=%s location=%s category=%s scope=%s force_refresh=%s",
            request.keyword,
            request.location,
            request.category,
            request.scope.value,
            force_refresh,
        )
        reporter.emit(Phase.START, "Starting search…", current=0, total=1)

        while True:
            if not force_refresh:
                cached = self._cached_response(key, reporter)
                if cached is not None:
                    return cached

            with self._inflight_lock:
                flight = self._inflight.get(key)
                leader = flight is None
                if leader:
                    flight = _InFlight()
                    self._inflight[key] = flight

            if leader:
                break
            followed = self._follow(key, flight, reporter, cancel_event)
            if followed is not None:
                return followed

        try:
            places, api_calls = self._fetch_all(request, reporter, cancel_event)
            self._write_cache(key, request, places)
            flight.places = places
        except BaseException as exc:
            flight.error = exc
            if not isinstance(exc, SearchCancelled):
                reporter.emit(Phase.ERROR, f"Search failed: {exc}")
            raise
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)
            flight.done.set()

        receipt = UsageReceipt.for_calls(api_calls, self.settings.cost_per_call_usd)
        reporter.emit(
            Phase.DONE,
            f"Found {len(places)} businesses",
            current=1,
            total=1,
            found=len(places),
            api_calls=receipt.api_calls,
        )
        return SearchResponse(
            results=to_leads(places),
            api_calls=receipt.api_calls,
            cached=False,
            cost_usd=receipt.cost_usd,
            places=places,
        )

    def _cached_response(self, key: str, reporter: ProgressReporter) -> Optional[SearchResponse]:
        try:
            entry = self.cache.get(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cache lookup failed for key=%s, searching live: %s", key[:12], exc)
            return None
        if entry is None:
            return None

        found = len(entry.places)
        reporter.emit(Phase.CACHED, "Loading from cache…", current=1, total=1, found=found)
        reporter.emit(Phase.DONE, f"Found {found} businesses (cached)", current=1, total=1, found=found)
        return SearchResponse(results=to_leads(entry.places), api_calls=0, cached=True, places=entry.places)

    def _follow(
        self,
        key: str,
        flight: _InFlight,
        reporter: ProgressReporter,
        cancel_event: Optional[threading.Event],
    ) -> Optional[SearchResponse]:
        """Wait for the leading fetch of ``key``.

        Returns None when the leader was cancelled by its own caller, so this
        caller can retry and lead the fetch itself.
        """
        logger.info("Joining in-flight search for key=%s", key[:12])
        reporter.emit(Phase.SEARCHING, "Identical search already running, waiting for it…", current=0, total=1)
        while not flight.done.wait(_FOLLOWER_POLL_SECONDS):
            if cancel_event is not None and cancel_event.is_set():
                raise SearchCancelled("Search cancelled by caller")

        if flight.error is not None:
            if isinstance(flight.error, SearchCancelled):
                logger.info("Leading search for key=%s was cancelled, retrying", key[:12])
                return None
            reporter.emit(Phase.ERROR, f"Search failed: {flight.error}")
            raise flight.error

        places = list(flight.places or [])
        reporter.emit(Phase.DONE, f"Found {len(places)} businesses", current=1, total=1, found=len(places))
        return SearchResponse(results=to_leads(places), api_calls=0, cached=True, places=places)

    def _fetch_all(
        self,
        request: SearchRequest,
        reporter: ProgressReporter,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[List[RawResult], int]:
        variants = plan_queries(request)
        total = len(variants)
        dedup = Deduplicator()
        counter = CallCounter()
        logger.info("Planned %d query variants", total)

        with self._executor_factory(self.settings, cancel_event) as executor:
            for index, variant in enumerate(variants, start=1):
                if cancel_event is not None and cancel_event.is_set():
                    raise SearchCancelled("Search cancelled by caller")
                if index > 1:
                    time.sleep(self.settings.variant_delay)

                reporter.emit(
                    Phase.SEARCHING,
                    f'Query {index}/{total}: "{variant}"',
                    current=index - 1,
                    total=total,
                    found=len(dedup),
                    api_calls=counter.value,
                )

                def on_page(page_results: List[RawResult], index: int = index) -> None:
                    counter.record_page(len(page_results))
                    fresh = dedup.add(page_results)
                    reporter.emit(
                        Phase.PAGE,
                        f"Query {index}/{total}: +{len(fresh)} new businesses",
                        current=index,
                        total=total,
                        found=len(dedup),
                        api_calls=counter.value,
                    )

                executor.fetch(variant, self.settings.max_pages, on_page)

        places = dedup.results
        logger.info(
            "All %d variants completed: %d unique results, %d duplicates dropped, %d provider calls",
            total,
            len(places),
            dedup.dropped,
            counter.value,
        )
        return places, counter.value

    def _write_cache(self, key: str, request: SearchRequest, places: List[RawResult]) -> None:
        try:
            self.cache.put(key, places, keyword=request.keyword, location=request.location)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to write cache for key=%s: %s", key[:12], exc)

    def clear_cache(self, keyword: str, location: str) -> bool:
        if not (keyword or "").strip() or not (location or "").strip():
            raise SearchValidationError("Both keyword and location are required")
        return self.cache.clear(keyword, location)


@lru_cache(maxsize=1)
def get_orchestrator() -> SearchOrchestrator:
    settings = get_settings()
    return SearchOrchestrator(settings, build_cache(settings))


def search(
    keyword: str,
    category: str,
    location: str,
    scope: "Scope | str" = Scope.CITY,
    sub_area: str = "",
    on_progress: Optional[ProgressSink] = None,
    *,
    force_refresh: bool = False,
    cancel_event: Optional[threading.Event] = None,
) -> SearchResponse:
    """Search entry point using the process-wide orchestrator."""
    return get_orchestrator().search(
        keyword,
        category,
        location,
        scope,
        sub_area,
        on_progress,
        force_refresh=force_refresh,
        cancel_event=cancel_event,
    )
