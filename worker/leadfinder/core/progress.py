"""Typed progress events pushed to the caller while a search runs."""

from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class Phase(str, enum.Enum):
    START = "start"
    SEARCHING = "searching"
    PAGE = "page"
    CACHED = "cached"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """``current``/``total`` count query variants, not pages."""

    phase: Phase
    message: str
    current: int = 0
    total: int = 0
    found: int = 0
    api_calls: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        return data


ProgressSink = Callable[[ProgressEvent], Any]


class ProgressReporter:
    """Push-only wrapper around a caller supplied sink.

    A sink that raises is logged and otherwise ignored so that progress
    reporting can never abort a search.
    """

    def __init__(self, sink: Optional[ProgressSink] = None) -> None:
        self._sink = sink

    def emit(self, phase: Phase, message: str, **counters: int) -> None:
        if self._sink is None:
            return
        event = ProgressEvent(phase=phase, message=message, **counters)
        try:
            self._sink(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Progress sink raised on %s event: %s", phase.value, exc)
