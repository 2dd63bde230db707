"""conrec command-line interface."""
from __future__ import annotations

import argparse
import contextlib
import json
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Any, List, Optional

from rich.console import Console
from rich.table import Table

from conrec.metrics import MetricsLogger
from conrec.probe import DEFAULT_PROBE_URL, make_http_probe
from conrec.recorder import DEFAULT_PROBE_INTERVAL, DEFAULT_PROBE_TIMEOUT, Recorder
from conrec.spans import Span, summarize

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    try:
        return int(raw) if raw else None
    except ValueError:
        return None


def _build_recorder(args: argparse.Namespace) -> Recorder:
    if args.interval <= 0 or args.timeout <= 0:
        raise ValueError("interval and timeout must be positive")
    if args.max_spans is not None and args.max_spans < 0:
        raise ValueError("--max-spans must be >= 0")
    metrics = MetricsLogger(Path(args.log)) if args.log else None
    return Recorder(
        probe=make_http_probe(args.url),
        probe_interval=args.interval,
        probe_timeout=args.timeout,
        max_spans=args.max_spans,
        name=args.name,
        metrics=metrics,
    )


def _print_spans(spans: List[Span], *, as_json: bool) -> None:
    if as_json:
        json.dump({"summary": summarize(spans), "spans": [s.to_dict() for s in spans]}, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return
    console = Console()
    table = Table(title="Connectivity Timeline")
    for column in ("KIND", "START", "END", "DURATION"):
        table.add_column(column)
    for span in spans:
        style = "green" if span.is_online else "red"
        table.add_row(
            f"[{style}]{span.kind}[/{style}]",
            span.start_time.isoformat(timespec="seconds"),
            span.end_time.isoformat(timespec="seconds"),
            f"{span.duration.total_seconds():.1f}s",
        )
    console.print(table)
    ratio = summarize(spans)["online_ratio"]
    if ratio is not None:
        console.print(f"online {ratio:.1%} of recorded time")


def _cmd_record(args: argparse.Namespace) -> int:
    recorder = _build_recorder(args)
    done = threading.Event()

    def _signal_handler(*_: Any) -> None:
        done.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(ValueError):
            previous[sig] = signal.signal(sig, _signal_handler)

    if args.duration:
        logger.info("Recording for %.1fs", args.duration)
    else:
        logger.info("Recording until interrupted (Ctrl-C to stop)")
    try:
        done.wait(args.duration)
    finally:
        recorder.stop()
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    _print_spans(recorder.spans(), as_json=args.json)
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from conrec.api import create_app

    recorder = _build_recorder(args)
    try:
        uvicorn.run(create_app(recorder), host=args.host, port=args.port, log_level="info")
    finally:
        recorder.stop()
    return 0


def _add_recorder_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--interval",
        type=float,
        default=_env_float("CONREC_PROBE_INTERVAL", DEFAULT_PROBE_INTERVAL),
        help="Seconds between probes",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=_env_float("CONREC_PROBE_TIMEOUT", DEFAULT_PROBE_TIMEOUT),
        help="Per-probe timeout seconds",
    )
    parser.add_argument(
        "--max-spans",
        type=int,
        default=_env_int("CONREC_MAX_SPANS"),
        help="Maximum spans to retain (0 = unbounded)",
    )
    parser.add_argument("--url", default=os.getenv("CONREC_PROBE_URL", DEFAULT_PROBE_URL), help="204 endpoint to probe")
    parser.add_argument("--name", default="default", help="Recorder label used in logs")
    parser.add_argument("--log", help="Optional CSV file for probe metrics")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Record internet connectivity over time")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity")
    sub = parser.add_subparsers(dest="command", required=True)

    record = sub.add_parser("record", help="Record for a while and print the timeline")
    _add_recorder_arguments(record)
    record.add_argument("--duration", type=float, help="Stop after this many seconds (default: until Ctrl-C)")
    record.add_argument("--json", action="store_true", help="Output JSON")
    record.set_defaults(handler=_cmd_record)

    serve = sub.add_parser("serve", help="Record and serve the timeline over HTTP")
    _add_recorder_arguments(serve)
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=3333)
    serve.set_defaults(handler=_cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return args.handler(args)
    except ValueError as exc:
        parser.error(str(exc))
    return 2


if __name__ == "__main__":
    sys.exit(main())
