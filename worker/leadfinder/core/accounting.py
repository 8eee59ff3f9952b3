"""Provider-call accounting handed back to the caller for quota debits."""

from __future__ import annotations

import threading
from dataclasses import dataclass


class CallCounter:
    """Counts billable provider pages for a single search.

    A page is billed only when it returned at least one result. A
    ZERO_RESULTS page, or a browser pass that found nothing new, is free, so a
    search whose only productive page is the first one reports one call.
    """

    def __init__(self) -> None:
        self._count = 0
        self._lock = threading.Lock()

    def record_page(self, result_count: int) -> None:
        if result_count <= 0:
            return
        with self._lock:
            self._count += 1

    @property
    def value(self) -> int:
        with self._lock:
            return self._count


@dataclass(frozen=True)
class UsageReceipt:
    api_calls: int
    cost_usd: float

    @classmethod
    def for_calls(cls, api_calls: int, cost_per_call_usd: float) -> "UsageReceipt":
        return cls(api_calls=api_calls, cost_usd=round(api_calls * cost_per_call_usd, 4))
