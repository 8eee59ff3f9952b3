"""Cross-query deduplication of provider results."""

from __future__ import annotations

import logging
import re
import threading
from typing import Iterable, List, Optional, Set

import phonenumbers

from leadfinder.models import RawResult

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def _phone_key(phone: str, default_region: Optional[str]) -> Optional[str]:
    try:
        parsed = phonenumbers.parse(phone, default_region)
    except phonenumbers.NumberParseException:
        parsed = None
    if parsed is not None and phonenumbers.is_possible_number(parsed):
        return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    digits = _NON_DIGITS.sub("", phone)
    return digits or None


def identity_key(result: RawResult, default_region: Optional[str] = None) -> Optional[str]:
    """Key used to decide whether two results are the same business.

    Provider identity wins. Without one we fall back to the phone number and
    then the lower-cased name; this weaker key can merge distinct branches that
    share a name, which is accepted.
    """
    if result.place_id:
        return f"id:{result.place_id}"
    if result.phone:
        phone = _phone_key(result.phone, default_region)
        if phone:
            return f"phone:{phone}"
    name = (result.name or "").strip().lower()
    if name:
        return f"name:{name}"
    return None


class Deduplicator:
    """Seen-set spanning every page of every variant of one search.

    ``add`` is safe to call from several threads.
    """

    def __init__(self, default_region: Optional[str] = None) -> None:
        self._default_region = default_region
        self._seen: Set[str] = set()
        self._results: List[RawResult] = []
        self._lock = threading.Lock()
        self.dropped = 0

    def add(self, results: Iterable[RawResult]) -> List[RawResult]:
        """Record a page of results and return only the ones not seen before."""
        fresh: List[RawResult] = []
        with self._lock:
            for result in results:
                key = identity_key(result, self._default_region)
                if key is None or key in self._seen:
                    self.dropped += 1
                    continue
                self._seen.add(key)
                self._results.append(result)
                fresh.append(result)
        return fresh

    @property
    def results(self) -> List[RawResult]:
        with self._lock:
            return list(self._results)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


def merge(pages: Iterable[Iterable[RawResult]], default_region: Optional[str] = None) -> List[RawResult]:
    """Merge result pages in order, keeping the first occurrence of each identity."""
    dedup = Deduplicator(default_region)
    for page in pages:
        dedup.add(page)
    logger.debug("Merged %d unique results, dropped %d duplicates", len(dedup), dedup.dropped)
    return dedup.results
