"""Connectivity probes.

A probe is any callable taking the timeout in seconds. Returning normally
means the internet is reachable; raising (or returning ``False``) means it is
not. Probes must honour the timeout and must not retry on their own, the
next scheduled tick is the retry.
"""
from __future__ import annotations

import logging
import threading
from time import monotonic
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_PROBE_URL = "http://connectivitycheck.gstatic.com/generate_204"
NO_CONTENT = 204

Probe = Callable[[float], object]


class ProbeError(RuntimeError):
    """Raised by the HTTP probe when the endpoint answers unexpectedly."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"unexpected response code from {url}: {status_code}")
        self.url = url
        self.status_code = status_code


def http_probe(
    timeout: float,
    *,
    url: str = DEFAULT_PROBE_URL,
    session: Optional[requests.Session] = None,
) -> None:
    """Send a HEAD request to a "no content" endpoint and expect a 204.

    ``timeout`` is a total deadline covering name resolution, connect and the
    whole response. The request runs on a daemon worker thread; when the
    deadline passes the probe raises :class:`requests.Timeout` straight away
    and the worker closes whatever late response it eventually gets. A 204
    that completes after the deadline still counts as a failure.
    """
    sender = session if session is not None else requests
    deadline = monotonic() + timeout
    abandoned = threading.Event()
    outcome: Dict[str, Any] = {}

    def _send() -> None:
        try:
            response = sender.head(url, timeout=(timeout, timeout), allow_redirects=False)
        except Exception as exc:
            outcome["error"] = exc
            return
        outcome["response"] = response
        if abandoned.is_set():
            response.close()

    worker = threading.Thread(target=_send, name="conrec-http-probe", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        abandoned.set()
        # The worker may have finished between join() and set().
        late = outcome.get("response")
        if late is not None:
            late.close()
        logger.debug("No response from %s within %.2fs", url, timeout)
        raise requests.Timeout(f"no response from {url} within {timeout:.2f}s")

    if "error" in outcome:
        raise outcome["error"]
    response = outcome["response"]
    try:
        if monotonic() > deadline:
            raise requests.Timeout(f"response from {url} arrived after {timeout:.2f}s")
        if response.status_code != NO_CONTENT:
            raise ProbeError(url, response.status_code)
    finally:
        response.close()


def make_http_probe(url: str = DEFAULT_PROBE_URL, session: Optional[requests.Session] = None) -> Probe:
    """Bind :func:`http_probe` to an alternate endpoint or session."""

    def _probe(timeout: float) -> None:
        http_probe(timeout, url=url, session=session)

    _probe.__name__ = f"http_probe[{url}]"
    return _probe


__all__ = [
    "DEFAULT_PROBE_URL",
    "Probe",
    "ProbeError",
    "http_probe",
    "make_http_probe",
]
