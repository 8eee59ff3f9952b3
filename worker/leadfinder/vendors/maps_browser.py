"""Headless-browser access to the Google Maps results feed.

Used when the Places API is not reachable from the deployment. One
``MapsBrowser`` owns one browser and one isolated context for the lifetime of
a single search.
"""

from __future__ import annotations

import logging
import random
import re
import threading
import time
from typing import List, Optional, Tuple
from urllib.parse import quote

from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from leadfinder.models import CLOSED_PERMANENTLY, CLOSED_TEMPORARILY, OPERATIONAL, RawResult
from leadfinder.vendors.google_places import ProviderError, ProviderUnavailableError

logger = logging.getLogger(__name__)

SEARCH_URL = "https://www.google.com/maps/search/{query}"
PLACE_PATH = "/maps/place/"
FEED_SELECTOR = 'div[role="feed"]'
USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)
LAUNCH_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
)
SCROLL_STAGES = 5
SCROLL_DELAY_RANGE = (2.0, 5.0)
NAVIGATION_TIMEOUT_MS = 60000

END_OF_LIST_TEXT = "reached the end of the list"
NO_RESULTS_TEXT = ("can't find", "did not match any", "no results")

PLACE_ID_REGEX = re.compile(r"!19s(ChIJ[^!?&/]+)")
FEATURE_ID_REGEX = re.compile(r"!1s(0x[0-9a-fA-F]+:0x[0-9a-fA-F]+)")
COORDS_REGEX = re.compile(r"!3d(-?\d+(?:\.\d+)?)!4d(-?\d+(?:\.\d+)?)")
RATING_REGEX = re.compile(r"(\d+(?:[.,]\d+)?)\s*stars?", re.IGNORECASE)
REVIEWS_REGEX = re.compile(r"([\d,.]+)\s*reviews?", re.IGNORECASE)
PAREN_COUNT_REGEX = re.compile(r"^\(([\d,.]+)\)$")
PHONE_REGEX = re.compile(r"^\+?\d[\d\s().\-]{6,}\d$")
RATING_SEGMENT_REGEX = re.compile(r"^\d[.,]\d\b")
STATUS_WORDS = ("open", "closed", "closes", "opens")


class BrowserLaunchError(ProviderError):
    """Raised when the headless browser cannot be started."""


class MapsBrowser:
    """Owns one Playwright browser and context with randomized fingerprints."""

    def __init__(
        self,
        *,
        headless: bool = True,
        feed_timeout_ms: int = 15000,
        navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._headless = headless
        self._feed_timeout_ms = feed_timeout_ms
        self._navigation_timeout_ms = navigation_timeout_ms
        self._rng = rng or random.Random()
        self._playwright = None
        self._browser = None
        self._context = None
        self.user_agent: Optional[str] = None
        self.viewport: Optional[dict] = None

    def open(self) -> None:
        self.user_agent = self._rng.choice(USER_AGENTS)
        self.viewport = {
            "width": 1920 + self._rng.randint(0, 99),
            "height": 1080 + self._rng.randint(0, 99),
        }
        try:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(headless=self._headless, args=list(LAUNCH_ARGS))
            self._context = self._browser.new_context(
                user_agent=self.user_agent,
                viewport=self.viewport,
                locale="en-US",
            )
        except PlaywrightError as exc:
            logger.error("Failed to launch headless browser: %s", exc)
            self.close()
            raise BrowserLaunchError(f"Could not launch browser: {exc}") from exc
        logger.info("Browser context ready viewport=%sx%s", self.viewport["width"], self.viewport["height"])

    def close(self) -> None:
        for attr, method in (("_context", "close"), ("_browser", "close"), ("_playwright", "stop")):
            resource = getattr(self, attr)
            if resource is None:
                continue
            try:
                getattr(resource, method)()
            except PlaywrightError as exc:
                logger.warning("Error while releasing %s: %s", attr.strip("_"), exc)
            setattr(self, attr, None)

    def __enter__(self) -> "MapsBrowser":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.close()

    def open_results(self, query: str):
        """Navigate to the results feed for ``query``.

        Returns the page, or None when Maps reports no results. A query that
        matches exactly one business lands on its place page instead of a
        feed; see ``is_place_page``. The caller closes the returned page.
        """
        if self._context is None:
            raise BrowserLaunchError("Browser context is not open")

        page = self._context.new_page()
        url = SEARCH_URL.format(query=quote(query))
        try:
            logger.info("Navigating to %s", url)
            page.goto(url, wait_until="domcontentloaded", timeout=self._navigation_timeout_ms)
            page.wait_for_selector(FEED_SELECTOR, timeout=self._feed_timeout_ms)
        except PlaywrightTimeoutError as exc:
            if is_place_page(page.url):
                logger.info("Query=%s matched a single place, no results feed", query)
                return page
            content = _safe_content(page).lower()
            page.close()
            if any(marker in content for marker in NO_RESULTS_TEXT):
                logger.info("Maps reported no results for query=%s", query)
                return None
            raise ProviderUnavailableError(f"Results feed did not appear for {query!r}") from exc
        except PlaywrightError as exc:
            page.close()
            raise ProviderUnavailableError(f"Navigation failed for {query!r}: {exc}") from exc
        return page

    def scroll_feed(
        self,
        page,
        *,
        stages: int = SCROLL_STAGES,
        cancel_event: Optional[threading.Event] = None,
    ) -> bool:
        """Scroll the feed to the bottom in stages. Returns True once the list is exhausted."""
        last_height = -1
        for stage in range(stages):
            if cancel_event is not None and cancel_event.is_set():
                return False
            height = page.evaluate(
                """(selector) => {
                    const feed = document.querySelector(selector);
                    if (!feed) { return 0; }
                    feed.scrollTop = feed.scrollHeight;
                    return feed.scrollHeight;
                }""",
                FEED_SELECTOR,
            )
            time.sleep(self._rng.uniform(*SCROLL_DELAY_RANGE))
            logger.debug("Scroll stage %d/%d height=%s", stage + 1, stages, height)
            if END_OF_LIST_TEXT in _safe_content(page).lower():
                return True
            if height == last_height:
                break
            last_height = height
        return False

    def place_html(self, page) -> str:
        return _safe_content(page)

    def feed_html(self, page) -> str:
        try:
            return page.inner_html(FEED_SELECTOR)
        except PlaywrightError as exc:
            raise ProviderUnavailableError(f"Results feed disappeared: {exc}") from exc


def is_place_page(url: Optional[str]) -> bool:
    return PLACE_PATH in (url or "")


def _safe_content(page) -> str:
    try:
        return page.content()
    except PlaywrightError:
        return ""


def _parse_number(text: str) -> Optional[float]:
    try:
        return float(text.replace(",", "."))
    except (TypeError, ValueError):
        return None


def _parse_count(text: str) -> Optional[int]:
    digits = "".join(ch for ch in text if ch.isdigit())
    return int(digits) if digits else None


def _ids_from_href(href: str) -> Tuple[Optional[str], Optional[float], Optional[float]]:
    place_id = None
    match = PLACE_ID_REGEX.search(href) or FEATURE_ID_REGEX.search(href)
    if match:
        place_id = match.group(1)
    lat = lng = None
    coords = COORDS_REGEX.search(href)
    if coords:
        lat, lng = float(coords.group(1)), float(coords.group(2))
    return place_id, lat, lng


def _status_from_text(text: str) -> str:
    lowered = text.lower()
    if "permanently closed" in lowered:
        return CLOSED_PERMANENTLY
    if "temporarily closed" in lowered:
        return CLOSED_TEMPORARILY
    return OPERATIONAL


def _item_text(soup, selector: str) -> Optional[str]:
    element = soup.select_one(selector)
    if element is None:
        return None
    label = element.get("aria-label") or ""
    if ":" in label:
        return label.split(":", 1)[1].strip() or None
    return element.get_text(" ", strip=True) or None


def _card_segments(card) -> List[str]:
    segments: List[str] = []
    for block in card.select("div.W4Efsd"):
        if block.find("div", class_="W4Efsd"):
            continue
        text = block.get_text(" ", strip=True)
        for part in text.split("·"):
            part = part.strip()
            if part:
                segments.append(part)
    return segments


def parse_card(card) -> Optional[RawResult]:
    link = card.select_one('a[href*="/maps/place/"]')
    headline = card.select_one(".fontHeadlineSmall, .qBF1Pd")
    name = (
        card.get("aria-label")
        or (headline.get_text(strip=True) if headline else None)
        or (link.get("aria-label") if link else None)
        or ""
    ).strip()
    if not name:
        return None

    place_id, lat, lng = _ids_from_href(link.get("href", "")) if link else (None, None, None)

    rating = rating_count = None
    stars = card.select_one('span[role="img"][aria-label]')
    if stars:
        label = stars["aria-label"]
        match = RATING_REGEX.search(label)
        if match:
            rating = _parse_number(match.group(1))
        match = REVIEWS_REGEX.search(label)
        if match:
            rating_count = _parse_count(match.group(1))
    if rating_count is None:
        for span in card.select("span"):
            match = PAREN_COUNT_REGEX.match(span.get_text(strip=True))
            if match:
                rating_count = _parse_count(match.group(1))
                break

    phone = None
    phone_el = card.select_one(".UsdlK")
    if phone_el:
        phone = phone_el.get_text(strip=True) or None

    address = None
    for segment in _card_segments(card):
        lowered = segment.lower()
        if PHONE_REGEX.match(segment):
            phone = phone or segment
            continue
        if any(lowered.startswith(word) for word in STATUS_WORDS) or RATING_SEGMENT_REGEX.match(segment):
            continue
        if address is None and (any(ch.isdigit() for ch in segment) or "," in segment):
            address = segment

    website = None
    site_link = card.select_one('a[data-value="Website"]')
    if site_link and site_link.get("href"):
        website = site_link["href"]
    else:
        for anchor in card.select("a[href]"):
            href = anchor["href"]
            if href.startswith("http") and "google." not in href:
                website = href
                break

    status = _status_from_text(card.get_text(" ", strip=True))

    return RawResult(
        name=name,
        place_id=place_id,
        address=address,
        phone=phone,
        website=website,
        rating=rating,
        rating_count=rating_count,
        status=status,
        latitude=lat,
        longitude=lng,
    )


def parse_feed(html: str) -> List[RawResult]:
    """Extract every business card from the feed HTML.

    A card that cannot be parsed is skipped on its own.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    cards = soup.select('div[role="article"]')
    if not cards:
        cards = [link.parent for link in soup.select("a.hfpxzc") if link.parent is not None]

    results: List[RawResult] = []
    for index, card in enumerate(cards):
        try:
            result = parse_card(card)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed result card %d: %s", index, exc)
            continue
        if result is not None:
            results.append(result)
    logger.debug("Parsed %d result cards from feed", len(results))
    return results


def parse_place_page(html: str, url: str) -> Optional[RawResult]:
    """Extract the single business shown on a ``/maps/place/`` page."""
    soup = BeautifulSoup(html or "", "html.parser")
    heading = soup.select_one("h1")
    name = heading.get_text(" ", strip=True) if heading else ""
    if not name:
        return None

    place_id, lat, lng = _ids_from_href(url)

    rating = rating_count = None
    for element in soup.select("[aria-label]"):
        label = element["aria-label"]
        if rating is None:
            match = RATING_REGEX.search(label)
            if match:
                rating = _parse_number(match.group(1))
        if rating_count is None:
            match = REVIEWS_REGEX.search(label)
            if match:
                rating_count = _parse_count(match.group(1))

    website = None
    site_link = soup.select_one('a[data-item-id="authority"]')
    if site_link and site_link.get("href"):
        website = site_link["href"]

    return RawResult(
        name=name,
        place_id=place_id,
        address=_item_text(soup, 'button[data-item-id="address"]'),
        phone=_item_text(soup, 'button[data-item-id^="phone:"]'),
        website=website,
        rating=rating,
        rating_count=rating_count,
        status=_status_from_text(soup.get_text(" ", strip=True)),
        latitude=lat,
        longitude=lng,
    )
