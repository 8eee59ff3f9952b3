import random

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from leadfinder.models import CLOSED_PERMANENTLY, CLOSED_TEMPORARILY, OPERATIONAL
from leadfinder.vendors import maps_browser
from leadfinder.vendors.google_places import ProviderUnavailableError

FEED_HTML = """
<div role="feed">
  <div><div role="article" aria-label="Sweet Crumbs Bakery">
    <a class="hfpxzc" aria-label="Sweet Crumbs Bakery"
       href="https://www.google.com/maps/place/Sweet+Crumbs/data=!4m7!3m6!1s0x3bc2c0:0x1a2b!8m2!3d18.5204!4d73.8567!16s%2Fg%2F11!19sChIJabc123?authuser=0"></a>
    <div class="qBF1Pd fontHeadlineSmall">Sweet Crumbs Bakery</div>
    <span role="img" aria-label="4.6 stars 212 Reviews"></span>
    <div class="W4Efsd"><span>Bakery</span> · <span>12 FC Road, Shivajinagar</span></div>
    <div class="W4Efsd"><span>Open</span> · <span>Closes 10 pm</span> · <span class="UsdlK">020 1234 5678</span></div>
    <a data-value="Website" href="https://sweetcrumbs.example"></a>
  </div></div>
  <div><div role="article" aria-label="Loaf Lane">
    <a class="hfpxzc" href="https://www.google.com/maps/place/Loaf+Lane/data=!4m5!3m4!8m2!3d18.51!4d73.84"></a>
    <span>(37)</span>
    <div class="W4Efsd"><span>Bakery</span> · <span>Permanently closed</span></div>
    <div class="W4Efsd">98765 43210</div>
  </div></div>
  <div role="article"></div>
</div>
"""


def test_parse_feed_extracts_cards():
    results = maps_browser.parse_feed(FEED_HTML)

    assert [r.name for r in results] == ["Sweet Crumbs Bakery", "Loaf Lane"]

    first = results[0]
    assert first.place_id == "ChIJabc123"
    assert first.latitude == pytest.approx(18.5204)
    assert first.longitude == pytest.approx(73.8567)
    assert first.rating == pytest.approx(4.6)
    assert first.rating_count == 212
    assert first.address == "12 FC Road, Shivajinagar"
    assert first.phone == "020 1234 5678"
    assert first.website == "https://sweetcrumbs.example"
    assert first.status == OPERATIONAL

    second = results[1]
    assert second.place_id is None
    assert second.phone == "98765 43210"
    assert second.rating_count == 37
    assert second.address is None
    assert second.status == CLOSED_PERMANENTLY


def test_parse_feed_skips_broken_cards(monkeypatch):
    original = maps_browser.parse_card

    def flaky(card):
        if card.get("aria-label") == "Loaf Lane":
            raise AttributeError("unexpected markup")
        return original(card)

    monkeypatch.setattr(maps_browser, "parse_card", flaky)

    assert [r.name for r in maps_browser.parse_feed(FEED_HTML)] == ["Sweet Crumbs Bakery"]


def test_parse_feed_handles_empty_html():
    assert maps_browser.parse_feed("") == []


class FakeContext:
    def __init__(self, page=None):
        self.page = page
        self.closed = False

    def new_page(self):
        return self.page

    def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, context_error=None):
        self.context_error = context_error
        self.context_kwargs = None
        self.context = FakeContext()
        self.closed = False

    def new_context(self, **kwargs):
        if self.context_error:
            raise self.context_error
        self.context_kwargs = kwargs
        return self.context

    def close(self):
        self.closed = True


class FakeChromium:
    def __init__(self, browser=None, launch_error=None):
        self.browser = browser
        self.launch_error = launch_error
        self.launch_kwargs = None

    def launch(self, **kwargs):
        if self.launch_error:
            raise self.launch_error
        self.launch_kwargs = kwargs
        return self.browser


class FakePlaywright:
    def __init__(self, chromium):
        self.chromium = chromium
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeStarter:
    def __init__(self, playwright):
        self.playwright = playwright

    def start(self):
        return self.playwright


def install_playwright(monkeypatch, chromium):
    playwright = FakePlaywright(chromium)
    monkeypatch.setattr(maps_browser, "sync_playwright", lambda: FakeStarter(playwright))
    return playwright


def test_open_randomizes_fingerprint_and_close_releases_everything(monkeypatch):
    browser = FakeBrowser()
    playwright = install_playwright(monkeypatch, FakeChromium(browser=browser))

    with maps_browser.MapsBrowser(rng=random.Random(7)) as session:
        assert session.user_agent in maps_browser.USER_AGENTS
        assert 1920 <= session.viewport["width"] < 2020
        assert 1080 <= session.viewport["height"] < 1180
        assert browser.context_kwargs["user_agent"] == session.user_agent

    assert browser.context.closed is True
    assert browser.closed is True
    assert playwright.stopped is True


def test_launch_failure_releases_partial_resources(monkeypatch):
    browser = FakeBrowser(context_error=PlaywrightError("context crashed"))
    playwright = install_playwright(monkeypatch, FakeChromium(browser=browser))

    with pytest.raises(maps_browser.BrowserLaunchError):
        maps_browser.MapsBrowser().open()

    assert browser.closed is True
    assert playwright.stopped is True


class FakeMapsPage:
    def __init__(self, content="", feed_error=None, heights=None, redirect=None):
        self._content = content
        self.feed_error = feed_error
        self.heights = list(heights or [])
        self.closed = False
        self.visited = None
        self.redirect = redirect
        self.url = "about:blank"

    def goto(self, url, wait_until=None, timeout=None):
        self.visited = url
        self.url = self.redirect or url

    def wait_for_selector(self, selector, timeout=None):
        if self.feed_error:
            raise self.feed_error

    def content(self):
        return self._content

    def evaluate(self, script, arg=None):
        return self.heights.pop(0)

    def close(self):
        self.closed = True


def open_session(monkeypatch, page):
    browser = FakeBrowser()
    browser.context = FakeContext(page)
    install_playwright(monkeypatch, FakeChromium(browser=browser))
    session = maps_browser.MapsBrowser(rng=random.Random(1))
    session.open()
    return session


def test_open_results_returns_page(monkeypatch):
    page = FakeMapsPage()
    session = open_session(monkeypatch, page)

    assert session.open_results("bakery in Pune") is page
    assert page.visited.endswith("bakery%20in%20Pune")


def test_open_results_treats_no_results_message_as_empty(monkeypatch):
    page = FakeMapsPage(
        content="<div>Google Maps can't find bakery in Atlantis</div>",
        feed_error=PlaywrightTimeoutError("feed timeout"),
    )
    session = open_session(monkeypatch, page)

    assert session.open_results("bakery in Atlantis") is None
    assert page.closed is True


def test_open_results_timeout_is_provider_unavailable(monkeypatch):
    page = FakeMapsPage(content="<div>loading</div>", feed_error=PlaywrightTimeoutError("feed timeout"))
    session = open_session(monkeypatch, page)

    with pytest.raises(ProviderUnavailableError):
        session.open_results("bakery in Pune")
    assert page.closed is True


def test_scroll_feed_paces_and_detects_end(monkeypatch, no_sleep):
    page = FakeMapsPage(content="You've reached the end of the list.", heights=[1000])
    session = open_session(monkeypatch, page)

    assert session.scroll_feed(page) is True
    assert len(no_sleep) == 1
    assert 2.0 <= no_sleep[0] <= 5.0


def test_scroll_feed_stops_when_height_is_stable(monkeypatch, no_sleep):
    page = FakeMapsPage(content="<div></div>", heights=[1000, 2000, 2000, 3000])
    session = open_session(monkeypatch, page)

    assert session.scroll_feed(page) is False
    assert len(no_sleep) == 3


PLACE_URL = (
    "https://www.google.com/maps/place/Sweet+Crumbs/data=!4m7!3m6!1s0x3bc2c0:0x1a2b!8m2!3d18.5204!4d73.8567"
    "!16s%2Fg%2F11!19sChIJabc123"
)

PLACE_HTML = """
<div role="main" aria-label="Sweet Crumbs Bakery">
  <h1 class="DUwDvf">Sweet Crumbs Bakery</h1>
  <span role="img" aria-label="4.6 stars "></span>
  <span aria-label="212 reviews">(212)</span>
  <button data-item-id="address" aria-label="Address: 12 FC Road, Shivajinagar, Pune"></button>
  <button data-item-id="phone:tel:02012345678" aria-label="Phone: 020 1234 5678"></button>
  <a data-item-id="authority" href="https://sweetcrumbs.example"></a>
  <div>Temporarily closed</div>
</div>
"""


def test_open_results_keeps_single_place_page(monkeypatch):
    page = FakeMapsPage(
        content=PLACE_HTML,
        feed_error=PlaywrightTimeoutError("feed timeout"),
        redirect=PLACE_URL,
    )
    session = open_session(monkeypatch, page)

    assert session.open_results("bakery-sweet crumbs Pune") is page
    assert page.closed is False
    assert maps_browser.is_place_page(page.url)
    assert not maps_browser.is_place_page("https://www.google.com/maps/search/bakery")


def test_parse_place_page_extracts_business():
    result = maps_browser.parse_place_page(PLACE_HTML, PLACE_URL)

    assert result.name == "Sweet Crumbs Bakery"
    assert result.place_id == "ChIJabc123"
    assert result.latitude == pytest.approx(18.5204)
    assert result.rating == pytest.approx(4.6)
    assert result.rating_count == 212
    assert result.address == "12 FC Road, Shivajinagar, Pune"
    assert result.phone == "020 1234 5678"
    assert result.website == "https://sweetcrumbs.example"
    assert result.status == CLOSED_TEMPORARILY


def test_parse_place_page_without_heading_is_empty():
    assert maps_browser.parse_place_page("<div>loading</div>", PLACE_URL) is None
