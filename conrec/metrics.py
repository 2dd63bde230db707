"""CSV event log for recorder activity (probes, transitions, evictions)."""
from __future__ import annotations

import contextlib
import csv
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

FIELDS: Sequence[str] = (
    "timestamp",
    "event",
    "status",
    "value",
    "message",
    "extra",
)


def _encode_extra(extra: Mapping[str, Any]) -> str:
    if not extra:
        return ""
    try:
        return json.dumps(extra, separators=(",", ":"), sort_keys=True, default=str)
    except (TypeError, ValueError):
        return repr(extra)


@dataclass(slots=True)
class MetricRecord:
    """One CSV row."""

    timestamp: str
    event: str
    status: Optional[str] = None
    value: Optional[float] = None
    message: Optional[str] = None
    extra: str = ""

    def as_row(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "event": self.event,
            "status": self.status or "",
            "value": "" if self.value is None else self.value,
            "message": self.message or "",
            "extra": self.extra,
        }


@dataclass(slots=True)
class Timing:
    """Wall time of a measured block, filled in when the block exits."""

    duration: float = 0.0


@contextlib.contextmanager
def measure() -> Iterator[Timing]:
    timing = Timing()
    start = perf_counter()
    try:
        yield timing
    finally:
        timing.duration = perf_counter() - start


class MetricsLogger:
    """Append-only CSV log shared by any number of recorders.

    Rows are written and flushed one at a time under a lock, so the file can
    be tailed while recorders are running. ``scope`` attaches extra fields to
    every row logged from the current thread.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        static_extra: Mapping[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._static_extra: Dict[str, Any] = dict(static_extra or {})
        self._lock = threading.Lock()
        self._context = threading.local()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists() or self.path.stat().st_size == 0:
            with self.path.open("w", newline="", encoding="utf-8") as handle:
                csv.DictWriter(handle, fieldnames=FIELDS).writeheader()

    def log(
        self,
        event: str,
        *,
        status: Optional[str] = None,
        value: Optional[float] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        payload: Dict[str, Any] = dict(self._static_extra)
        for layer in self._stack():
            payload.update(layer)
        if extra:
            payload.update(extra)
        record = MetricRecord(
            timestamp=self._timestamp(),
            event=event,
            status=status,
            value=value,
            message=message,
            extra=_encode_extra(payload),
        )
        with self._lock:
            with self.path.open("a", newline="", encoding="utf-8") as handle:
                csv.DictWriter(handle, fieldnames=FIELDS).writerow(record.as_row())
                handle.flush()

    @contextlib.contextmanager
    def scope(self, extra: Mapping[str, Any] | None = None, **extra_kwargs: Any) -> Iterator[None]:
        layer: Dict[str, Any] = dict(extra or {})
        layer.update(extra_kwargs)
        stack = self._stack()
        stack.append(layer)
        try:
            yield
        finally:
            stack.pop()

    @contextlib.contextmanager
    def timer(
        self,
        event: str,
        *,
        status: str = "ok",
        error_status: str = "error",
        extra: Optional[Mapping[str, Any]] = None,
        **extra_kwargs: Any,
    ) -> Iterator[Timing]:
        """Log ``event`` with the block's duration as its value.

        An exception leaving the block is logged with ``error_status`` and its
        text, then re-raised. A failure to write the row is only logged, it
        never replaces the block's own outcome.
        """
        payload: Dict[str, Any] = dict(extra or {})
        payload.update(extra_kwargs)
        with measure() as timing:
            try:
                with self.scope(payload):
                    yield timing
            except Exception as exc:
                failure = exc
            else:
                failure = None
        row_extra = dict(payload, duration=timing.duration)
        if failure is not None:
            row_extra["exception"] = type(failure).__name__
        try:
            self.log(
                event,
                status=error_status if failure is not None else status,
                value=timing.duration,
                message=str(failure) if failure is not None else None,
                extra=row_extra,
            )
        except Exception:
            logger.debug("Metrics logging failed for %s", event, exc_info=True)
        if failure is not None:
            raise failure

    def _timestamp(self) -> str:
        dt = self._clock()
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds")

    def _stack(self) -> List[Dict[str, Any]]:
        stack = getattr(self._context, "stack", None)
        if stack is None:
            stack = []
            self._context.stack = stack
        return stack


__all__ = ["MetricsLogger", "MetricRecord", "Timing", "measure", "FIELDS"]
