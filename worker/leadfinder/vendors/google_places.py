"""Client utilities for the Google Places text search API."""

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/place"

OK = "OK"
ZERO_RESULTS = "ZERO_RESULTS"


class ProviderError(RuntimeError):
    """Base class for failures talking to the search provider."""


class GooglePlacesError(ProviderError):
    """Raised when the Places API returns a non-successful status."""


class ProviderUnavailableError(ProviderError):
    """Raised when the provider cannot be reached or times out."""


def text_search(query: str, api_key: str, pagetoken: Optional[str] = None, timeout: int = 10) -> Dict[str, Any]:
    """Run one text search page. ``ZERO_RESULTS`` is returned, never raised."""
    params = {"query": query, "key": api_key}
    if pagetoken:
        params["pagetoken"] = pagetoken
    try:
        response = _SESSION.get(f"{_BASE_URL}/textsearch/json", params=params, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.error("text_search request failed for query=%s: %s", query, exc)
        raise ProviderUnavailableError(f"Places API request failed: {exc}") from exc

    payload = response.json()
    status = payload.get("status")
    if status not in {OK, ZERO_RESULTS}:
        logger.error("text_search failed: status=%s, error_message=%s", status, payload.get("error_message"))
        raise GooglePlacesError(f"Places API returned {status}: {payload.get('error_message') or 'no details'}")
    return payload
