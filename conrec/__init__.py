"""Record one's internet connectivity as a timeline of online/offline spans.

Typical use::

    from conrec import Recorder

    recorder = Recorder(probe_interval=5.0)
    ...
    for span in recorder.spans():
        print(span.kind, span.start_time, span.duration)
    recorder.stop()
"""
from .probe import DEFAULT_PROBE_URL, Probe, ProbeError, http_probe, make_http_probe
from .recorder import Recorder, RecorderConfig
from .spans import Kind, Span, SpanStore, summarize

__all__ = [
    "Recorder",
    "RecorderConfig",
    "Kind",
    "Span",
    "SpanStore",
    "summarize",
    "Probe",
    "ProbeError",
    "http_probe",
    "make_http_probe",
    "DEFAULT_PROBE_URL",
]
