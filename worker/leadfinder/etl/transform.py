"""Utilities for turning provider payloads into RawResult and NormalizedLead objects."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from leadfinder.models import OPERATIONAL, NormalizedLead, RawResult

logger = logging.getLogger(__name__)


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            return int(digits)
    return None


def to_raw_result(place: Dict[str, Any]) -> Optional[RawResult]:
    """Convert one Places text-search result. Returns None for unusable records."""
    name = _strip_or_none(place.get("name"))
    if not name:
        return None

    location = (place.get("geometry") or {}).get("location") or {}
    return RawResult(
        name=name,
        place_id=_strip_or_none(place.get("place_id")),
        address=_strip_or_none(place.get("formatted_address") or place.get("vicinity")),
        phone=_strip_or_none(place.get("formatted_phone_number") or place.get("international_phone_number")),
        website=_strip_or_none(place.get("website")),
        rating=_safe_float(place.get("rating")),
        rating_count=_safe_int(place.get("user_ratings_total")),
        status=_strip_or_none(place.get("business_status")) or OPERATIONAL,
        latitude=_safe_float(location.get("lat")),
        longitude=_safe_float(location.get("lng")),
    )


def to_raw_results(places: Iterable[Any]) -> List[RawResult]:
    """Convert a page of results, skipping malformed records individually."""
    results: List[RawResult] = []
    for place in places or []:
        if not isinstance(place, dict):
            logger.debug("Skipping non-dict place record: %r", place)
            continue
        try:
            raw = to_raw_result(place)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed place record %s: %s", place.get("place_id"), exc)
            continue
        if raw is None:
            logger.debug("Skipping place record without a name: %s", place.get("place_id"))
            continue
        results.append(raw)
    return results


def to_lead(raw: RawResult, index: int = 0) -> NormalizedLead:
    """Project a RawResult onto the lead shape, defaulting every optional field."""
    lead_id = raw.place_id or f"lead_{index}"
    return NormalizedLead(
        id=lead_id,
        name=raw.name or "",
        address=raw.address or "",
        phone=raw.phone or "",
        website=raw.website or "",
        rating=raw.rating,
        rating_count=raw.rating_count or 0,
        status=raw.status or OPERATIONAL,
        latitude=raw.latitude,
        longitude=raw.longitude,
    )


def to_leads(raws: Iterable[RawResult]) -> List[NormalizedLead]:
    return [to_lead(raw, index) for index, raw in enumerate(raws)]


def filter_with_phone(leads: Iterable[NormalizedLead]) -> List[NormalizedLead]:
    return [lead for lead in leads if lead.phone.strip()]


def filter_with_website(leads: Iterable[NormalizedLead]) -> List[NormalizedLead]:
    return [lead for lead in leads if lead.website.strip()]


def filter_by_address(leads: Iterable[NormalizedLead], area: Optional[str]) -> List[NormalizedLead]:
    """Keep leads whose address mentions ``area``; everything passes when area is blank."""
    leads = list(leads)
    term = (area or "").strip().lower()
    if not term:
        return leads
    return [lead for lead in leads if term in lead.address.lower()]
