"""Core data models shared by the search pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

OPERATIONAL = "OPERATIONAL"
CLOSED_TEMPORARILY = "CLOSED_TEMPORARILY"
CLOSED_PERMANENTLY = "CLOSED_PERMANENTLY"


@dataclass(slots=True)
class RawResult:
    """One business record as returned by a single provider page.

    ``place_id`` is the provider-assigned identity. The browser scraper cannot
    always recover it, in which case it stays ``None``.
    """

    name: str
    place_id: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    status: str = OPERATIONAL
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawResult":
        return cls(
            name=data.get("name") or "",
            place_id=data.get("place_id"),
            address=data.get("address"),
            phone=data.get("phone"),
            website=data.get("website"),
            rating=data.get("rating"),
            rating_count=data.get("rating_count"),
            status=data.get("status") or OPERATIONAL,
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
        )


@dataclass(slots=True)
class NormalizedLead:
    """Externally visible lead. Every field is always present."""

    id: str
    name: str
    address: str = ""
    phone: str = ""
    website: str = ""
    rating: Optional[float] = None
    rating_count: int = 0
    status: str = OPERATIONAL
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
