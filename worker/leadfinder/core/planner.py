"""Query planning: turn one search request into the free-text queries we send to the provider."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import List

MAX_VARIANTS = 6

CATEGORY_ALL = "All"
CATEGORY_CUSTOM = "Custom"

BUSINESS_TYPES = ("retailer", "wholesaler", "manufacturer", "distributor", "dealer", "shop")


class SearchValidationError(ValueError):
    """Raised when a search request is missing its keyword or location."""


class Scope(str, enum.Enum):
    CITY = "city"
    NEIGHBOURHOOD = "neighbourhood"
    SPECIFIC = "specific"

    @classmethod
    def parse(cls, value: "str | Scope | None") -> "Scope":
        if isinstance(value, cls):
            return value
        text = (value or cls.CITY.value).strip().lower()
        # Accept the US spelling as well.
        if text == "neighborhood":
            text = cls.NEIGHBOURHOOD.value
        try:
            return cls(text)
        except ValueError as exc:
            raise SearchValidationError(f"Unknown search scope: {value!r}") from exc


@dataclass(frozen=True)
class SearchRequest:
    keyword: str
    location: str
    category: str = CATEGORY_CUSTOM
    scope: Scope = Scope.CITY
    sub_area: str = ""

    def __post_init__(self) -> None:
        keyword = (self.keyword or "").strip()
        location = (self.location or "").strip()
        if not keyword or not location:
            raise SearchValidationError("Both keyword and location are required")
        object.__setattr__(self, "keyword", keyword)
        object.__setattr__(self, "location", location)
        object.__setattr__(self, "category", (self.category or CATEGORY_CUSTOM).strip() or CATEGORY_CUSTOM)
        object.__setattr__(self, "scope", Scope.parse(self.scope))
        object.__setattr__(self, "sub_area", (self.sub_area or "").strip())

    @property
    def location_token(self) -> str:
        """Location text used inside every query variant."""
        if self.scope is not Scope.CITY and self.sub_area:
            return f"{self.sub_area}, {self.location}"
        return self.location


def _all_category_queries(keyword: str, place: str) -> List[str]:
    queries: List[str] = []
    for business_type in BUSINESS_TYPES:
        queries.append(f"{keyword} {business_type} in {place}")
        queries.append(f"{business_type} of {keyword} in {place}")
    return queries


def _custom_queries(keyword: str, place: str) -> List[str]:
    return [
        f"{keyword} shop in {place}",
        f"{keyword} store in {place}",
        f"{keyword} seller in {place}",
        f"{keyword} dealer in {place}",
        f"buy {keyword} in {place}",
        f"{keyword} in {place}",
    ]


def _category_queries(keyword: str, category: str, place: str) -> List[str]:
    return [
        f"{category} {keyword} in {place}",
        f"{keyword} {category} in {place}",
        f"{keyword} {category} near {place}",
        f"{keyword}-{category} {place}",
        f"{keyword} {category.lower()} {place}",
        f"{category} for {keyword} in {place}",
    ]


def plan_queries(request: SearchRequest) -> List[str]:
    """Return the ordered, de-duplicated query variants for ``request``.

    Pure and deterministic: the same request always yields the same list,
    capped at ``MAX_VARIANTS`` entries.
    """
    place = request.location_token
    if request.category == CATEGORY_ALL:
        candidates = _all_category_queries(request.keyword, place)
    elif request.category == CATEGORY_CUSTOM:
        candidates = _custom_queries(request.keyword, place)
    else:
        candidates = _category_queries(request.keyword, request.category, place)

    variants: List[str] = []
    seen = set()
    for query in candidates:
        normalized = query.lower()
        if normalized in seen:
            continue
        seen.add(normalized)
        variants.append(query)
        if len(variants) == MAX_VARIANTS:
            break
    return variants
