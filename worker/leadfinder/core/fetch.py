"""Fetch executors: run one query variant against the provider, page by page.

Both executors share one contract, ``fetch(variant, page_budget, on_page)``,
and are used as context managers so that any per-search resources are
released on every exit path.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from leadfinder.core.config import ConfigError, Settings
from leadfinder.core.dedup import identity_key
from leadfinder.etl.transform import to_raw_results
from leadfinder.models import RawResult
from leadfinder.vendors import google_places
from leadfinder.vendors.maps_browser import MapsBrowser, is_place_page, parse_feed, parse_place_page

logger = logging.getLogger(__name__)

PageCallback = Callable[[List[RawResult]], None]


class SearchCancelled(RuntimeError):
    """Raised when the caller asked the search to stop."""


class FetchExecutor:
    mode = "abstract"

    def __init__(self, settings: Settings, cancel_event: Optional[threading.Event] = None) -> None:
        self.settings = settings
        self._cancel_event = cancel_event

    def open(self) -> None:
        """Acquire per-search resources."""

    def close(self) -> None:
        """Release per-search resources."""

    def __enter__(self) -> "FetchExecutor":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.close()

    def fetch(self, variant: str, page_budget: int, on_page: PageCallback) -> List[RawResult]:
        raise NotImplementedError

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def _check_cancelled(self) -> None:
        if self.cancelled:
            raise SearchCancelled("Search cancelled by caller")


class DirectProviderExecutor(FetchExecutor):
    """Calls the Places text search API directly."""

    mode = "api"

    def open(self) -> None:
        if not self.settings.google_api_key:
            raise ConfigError("GOOGLE_API_KEY is required for the api fetch mode")

    def fetch(self, variant: str, page_budget: int, on_page: PageCallback) -> List[RawResult]:
        results: List[RawResult] = []
        page_token = None
        pages = 0

        while pages < page_budget:
            self._check_cancelled()
            response = google_places.text_search(
                query=variant,
                api_key=self.settings.google_api_key,
                pagetoken=page_token,
            )
            pages += 1
            page_results = to_raw_results(response.get("results", []))
            logger.info("Fetched %d results on page %d for query=%s", len(page_results), pages, variant)
            results.extend(page_results)
            on_page(page_results)

            if response.get("status") == google_places.ZERO_RESULTS:
                break
            page_token = response.get("next_page_token")
            if not page_token:
                break
            if pages < page_budget:
                # A fresh next_page_token is rejected as INVALID_REQUEST for about 2s.
                time.sleep(max(self.settings.page_delay, self.settings.page_token_delay))

        logger.info("Completed query=%s: pages=%d results=%d", variant, pages, len(results))
        return results


class BrowserScrapeExecutor(FetchExecutor):
    """Scrapes the Maps results feed with a headless browser.

    Each extraction pass after a round of scrolling counts as one page; a pass
    that surfaces nothing new ends the variant.
    """

    mode = "browser"

    def __init__(
        self,
        settings: Settings,
        cancel_event: Optional[threading.Event] = None,
        browser_factory: Optional[Callable[..., MapsBrowser]] = None,
    ) -> None:
        super().__init__(settings, cancel_event)
        self._browser_factory = browser_factory or MapsBrowser
        self._browser: Optional[MapsBrowser] = None

    def open(self) -> None:
        browser = self._browser_factory(
            headless=self.settings.browser_headless,
            feed_timeout_ms=self.settings.feed_timeout_ms,
        )
        browser.open()
        self._browser = browser

    def close(self) -> None:
        if self._browser is not None:
            self._browser.close()
            self._browser = None

    def fetch(self, variant: str, page_budget: int, on_page: PageCallback) -> List[RawResult]:
        if self._browser is None:
            raise RuntimeError("BrowserScrapeExecutor must be opened before fetching")

        self._check_cancelled()
        page = self._browser.open_results(variant)
        if page is None:
            on_page([])
            return []
        if is_place_page(page.url):
            return self._fetch_single_place(variant, page, on_page)

        results: List[RawResult] = []
        seen = set()
        try:
            for pass_number in range(1, page_budget + 1):
                self._check_cancelled()
                exhausted = self._browser.scroll_feed(page, cancel_event=self._cancel_event)
                self._check_cancelled()

                fresh = []
                for result in parse_feed(self._browser.feed_html(page)):
                    key = identity_key(result)
                    if key is None or key in seen:
                        continue
                    seen.add(key)
                    fresh.append(result)

                logger.info("Extraction pass %d for query=%s found %d new results", pass_number, variant, len(fresh))
                results.extend(fresh)
                on_page(fresh)
                if not fresh or exhausted:
                    break
                if pass_number < page_budget:
                    time.sleep(self.settings.page_delay)
        finally:
            page.close()

        return results

    def _fetch_single_place(self, variant: str, page, on_page: PageCallback) -> List[RawResult]:
        try:
            result = parse_place_page(self._browser.place_html(page), page.url)
        finally:
            page.close()
        found = [result] if result is not None else []
        logger.info("Query=%s resolved to a single place: %d result", variant, len(found))
        on_page(found)
        return found


def build_executor(settings: Settings, cancel_event: Optional[threading.Event] = None) -> FetchExecutor:
    """Select the executor for the deployment's configured fetch mode."""
    if settings.fetch_mode == BrowserScrapeExecutor.mode:
        return BrowserScrapeExecutor(settings, cancel_event)
    if settings.fetch_mode == DirectProviderExecutor.mode:
        return DirectProviderExecutor(settings, cancel_event)
    raise ConfigError(f"Unknown fetch mode: {settings.fetch_mode!r}")
