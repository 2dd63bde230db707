"""Connectivity spans and the bounded store that merges probe outcomes."""
from __future__ import annotations

import enum
import logging
import threading
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Kind(enum.IntEnum):
    """Connectivity state of a span."""

    OFFLINE = 0
    ONLINE = 1

    @classmethod
    def from_outcome(cls, ok: bool) -> "Kind":
        return cls.ONLINE if ok else cls.OFFLINE

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(slots=True)
class Span:
    """A maximal period during which connectivity did not change."""

    kind: Kind
    start_time: datetime
    end_time: datetime

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def is_online(self) -> bool:
        return self.kind is Kind.ONLINE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": str(self.kind),
            "start_time": self.start_time.isoformat(timespec="milliseconds"),
            "end_time": self.end_time.isoformat(timespec="milliseconds"),
            "duration": self.duration.total_seconds(),
        }


class SpanStore:
    """Ordered, alternating timeline of spans guarded by a single lock.

    ``update`` extends the open (last) span when the outcome matches its kind
    and otherwise opens a new span, evicting the oldest one first when
    ``max_spans`` is reached. ``snapshot`` hands out copies only.
    """

    def __init__(self, max_spans: Optional[int] = None, *, clock: Optional[Clock] = None) -> None:
        if max_spans is not None and max_spans < 0:
            raise ValueError("max_spans must be >= 0")
        self.max_spans = max_spans or None
        self._clock = clock or _utc_now
        self._spans: Deque[Span] = deque()
        self._lock = threading.Lock()
        self.evicted = 0

    def update(self, kind: Kind) -> Span:
        """Apply one probe outcome and return a copy of the affected span."""
        kind = Kind(kind)
        with self._lock:
            now = self._now()
            if self._spans and self._spans[-1].kind == kind:
                current = self._spans[-1]
                current.end_time = now
                return replace(current)

            if self.max_spans and len(self._spans) >= self.max_spans:
                dropped = self._spans.popleft()
                self.evicted += 1
                logger.debug("Evicted %s span started at %s", dropped.kind, dropped.start_time)
            span = Span(kind=kind, start_time=now, end_time=now)
            self._spans.append(span)
            return replace(span)

    def snapshot(self) -> List[Span]:
        with self._lock:
            return [replace(span) for span in self._spans]

    def last(self) -> Optional[Span]:
        with self._lock:
            return replace(self._spans[-1]) if self._spans else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._spans)

    def _now(self) -> datetime:
        # Clamp against clocks that step backwards so spans stay ordered.
        now = self._clock()
        if self._spans and now < self._spans[-1].end_time:
            return self._spans[-1].end_time
        return now


def summarize(spans: List[Span]) -> Dict[str, Any]:
    """Totals for a timeline: span counts, seconds per kind and online ratio."""
    online = sum((s.duration for s in spans if s.is_online), timedelta())
    offline = sum((s.duration for s in spans if not s.is_online), timedelta())
    total = (online + offline).total_seconds()
    return {
        "spans": len(spans),
        "online_spans": sum(1 for s in spans if s.is_online),
        "offline_spans": sum(1 for s in spans if not s.is_online),
        "online_seconds": online.total_seconds(),
        "offline_seconds": offline.total_seconds(),
        "online_ratio": online.total_seconds() / total if total else None,
        "current": str(spans[-1].kind) if spans else None,
    }


__all__ = ["Kind", "Span", "SpanStore", "Clock", "summarize"]
