"""Background connectivity recorder."""
from __future__ import annotations

import contextlib
import logging
import threading
from dataclasses import dataclass, fields
from time import monotonic
from typing import Any, Dict, List, Optional, Tuple

from conrec.metrics import MetricsLogger, measure
from conrec.probe import Probe, http_probe
from conrec.spans import Clock, Kind, Span, SpanStore

logger = logging.getLogger(__name__)

DEFAULT_PROBE_INTERVAL = 2.0
DEFAULT_PROBE_TIMEOUT = 0.5
# A probe running this much longer than its timeout is ignoring the deadline.
OVERRUN_GRACE = 1.0


def _positive(value: Any, default: float) -> float:
    if value is None:
        return default
    value = float(value)
    return value if value > 0 else default


@dataclass(frozen=True, slots=True)
class RecorderConfig:
    """Immutable recorder settings.

    Build instances with :meth:`resolve`, which applies the documented
    defaults: ``probe_interval`` 2s, ``probe_timeout`` 0.5s, the HTTP
    reachability probe and no bound on retained spans.
    """

    probe: Probe = http_probe
    probe_interval: float = DEFAULT_PROBE_INTERVAL
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    max_spans: Optional[int] = None
    name: str = "default"

    @classmethod
    def resolve(cls, **settings: Any) -> "RecorderConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(settings) - known)
        if unknown:
            raise TypeError(f"unknown recorder setting(s): {', '.join(unknown)}")

        probe = settings.get("probe") or http_probe
        if not callable(probe):
            raise TypeError("probe must be callable")

        max_spans = settings.get("max_spans")
        if max_spans is not None:
            max_spans = int(max_spans)
            if max_spans < 0:
                raise ValueError("max_spans must be >= 0")

        return cls(
            probe=probe,
            probe_interval=_positive(settings.get("probe_interval"), DEFAULT_PROBE_INTERVAL),
            probe_timeout=_positive(settings.get("probe_timeout"), DEFAULT_PROBE_TIMEOUT),
            max_spans=max_spans or None,
            name=str(settings.get("name") or "default"),
        )

    def as_settings(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class Recorder:
    """Record internet connectivity as a timeline of online/offline spans.

    The recorder starts probing as soon as it is constructed: one probe per
    ``probe_interval`` on a daemon thread, each bounded by ``probe_timeout``.
    Probes run one at a time; when a probe outlasts the interval the missed
    ticks are dropped rather than queued.

    ``spans()`` may be called from any thread. ``stop()`` blocks until the
    loop has exited, after which the timeline no longer changes. Calling
    ``stop()`` again, or from several threads at once, just waits for the same
    shutdown. A stopped recorder cannot be restarted.
    """

    def __init__(
        self,
        config: Optional[RecorderConfig] = None,
        *,
        metrics: Optional[MetricsLogger] = None,
        clock: Optional[Clock] = None,
        **settings: Any,
    ) -> None:
        merged = config.as_settings() if config is not None else {}
        merged.update(settings)
        self.config = RecorderConfig.resolve(**merged)
        self.metrics = metrics

        self._store = SpanStore(self.config.max_spans, clock=clock)
        self._stop_event = threading.Event()
        self._probed = threading.Condition()
        self._probe_count = 0
        self._last_kind: Optional[Kind] = None

        self._thread = threading.Thread(
            target=self._record_loop,
            name=f"conrec-recorder-{self.config.name}",
            daemon=True,
        )
        self._thread.start()

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------
    def spans(self) -> List[Span]:
        """Return a copy of all recorded spans, oldest first."""
        return self._store.snapshot()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if threading.current_thread() is self._thread:
            # Called from inside a probe; the loop exits once it returns.
            return
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning(
                "Recorder %s did not stop within %.2fs; a probe is still running",
                self.config.name,
                timeout,
            )

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()

    @property
    def probe_count(self) -> int:
        with self._probed:
            return self._probe_count

    @property
    def evicted(self) -> int:
        return self._store.evicted

    def wait_for_probes(self, count: int, timeout: Optional[float] = None) -> bool:
        """Block until at least ``count`` probes have been recorded."""
        with self._probed:
            return self._probed.wait_for(
                lambda: self._probe_count >= count or self._stop_event.is_set(),
                timeout,
            ) and self._probe_count >= count

    def __enter__(self) -> "Recorder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def __repr__(self) -> str:
        state = "running" if self.running else "stopped"
        return f"<Recorder {self.config.name!r} {state} spans={len(self._store)}>"

    # ------------------------------------------------------------------
    # Record loop
    # ------------------------------------------------------------------
    def _record_loop(self) -> None:
        interval = self.config.probe_interval
        metrics_scope = contextlib.nullcontext()
        if self.metrics:
            metrics_scope = self.metrics.scope(recorder=self.config.name)

        with metrics_scope:
            logger.info(
                "Recorder %s started (interval=%.3fs, timeout=%.3fs, max_spans=%s)",
                self.config.name,
                interval,
                self.config.probe_timeout,
                self.config.max_spans,
            )
            self._log(
                "recorder_start",
                status="ok",
                extra={
                    "probe_interval": interval,
                    "probe_timeout": self.config.probe_timeout,
                    "max_spans": self.config.max_spans,
                },
            )
            try:
                next_tick = monotonic() + interval
                while not self._stop_event.wait(max(0.0, next_tick - monotonic())):
                    self._record()
                    next_tick += interval
                    now = monotonic()
                    if next_tick < now:
                        next_tick += ((now - next_tick) // interval + 1) * interval
            finally:
                with self._probed:
                    self._probed.notify_all()
                logger.info("Recorder %s stopped after %d probes", self.config.name, self._probe_count)
                self._log("recorder_stop", status="ok", value=float(self._probe_count))

    def _record(self) -> None:
        ok, elapsed = self._run_probe()
        if elapsed > self.config.probe_timeout + OVERRUN_GRACE:
            logger.warning(
                "Probe took %.2fs, well past its %.2fs timeout",
                elapsed,
                self.config.probe_timeout,
            )

        kind = Kind.from_outcome(ok)
        evicted_before = self._store.evicted
        span = self._store.update(kind)

        with self._probed:
            self._probe_count += 1
            self._probed.notify_all()

        if kind != self._last_kind:
            if self._last_kind is not None:
                logger.info("Connectivity changed: %s -> %s", self._last_kind, kind)
            self._last_kind = kind
            self._log("transition", status=str(kind), extra={"start_time": span.start_time.isoformat()})
        if self._store.evicted != evicted_before:
            self._log("evict", status="ok", value=float(self._store.evicted))

    def _run_probe(self) -> Tuple[bool, float]:
        # The timer writes the "probe" row: status ok/error, value = seconds.
        timer = self.metrics.timer("probe") if self.metrics else measure()
        try:
            with timer as timing:
                if self.config.probe(self.config.probe_timeout) is False:
                    raise RuntimeError("probe reported failure")
        except Exception as exc:
            logger.debug("Probe failed: %s", exc)
            return False, timing.duration
        return True, timing.duration

    def _log(
        self,
        event: str,
        *,
        status: Optional[str] = None,
        value: Optional[float] = None,
        message: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.log(event, status=status, value=value, message=message, extra=extra)
        except Exception:  # pragma: no cover - I/O failure safeguard
            logger.debug("Metrics logging failed for %s", event, exc_info=True)


__all__ = [
    "Recorder",
    "RecorderConfig",
    "DEFAULT_PROBE_INTERVAL",
    "DEFAULT_PROBE_TIMEOUT",
]
