"""Tests for the command-line interface."""
from __future__ import annotations

import contextlib
import io
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from conrec import cli


class CliTest(unittest.TestCase):
    def test_record_json_output(self) -> None:
        out = io.StringIO()
        with patch("conrec.cli.make_http_probe", return_value=lambda _timeout: None) as factory:
            with contextlib.redirect_stdout(out):
                code = cli.main(
                    [
                        "record",
                        "--duration",
                        "0.05",
                        "--interval",
                        "0.005",
                        "--url",
                        "http://probe.test/generate_204",
                        "--json",
                    ]
                )
        self.assertEqual(code, 0)
        factory.assert_called_once_with("http://probe.test/generate_204")
        payload = json.loads(out.getvalue())
        self.assertEqual(len(payload["spans"]), 1)
        self.assertEqual(payload["spans"][0]["kind"], "online")
        self.assertEqual(payload["summary"]["current"], "online")

    def test_record_table_output_and_metrics_log(self) -> None:
        out = io.StringIO()
        with tempfile.TemporaryDirectory() as tmp:
            log_path = Path(tmp, "probes.csv")
            with patch("conrec.cli.make_http_probe", return_value=lambda _timeout: False):
                with contextlib.redirect_stdout(out):
                    code = cli.main(
                        ["record", "--duration", "0.05", "--interval", "0.005", "--log", str(log_path)]
                    )
            self.assertEqual(code, 0)
            self.assertIn("recorder_start", log_path.read_text(encoding="utf-8"))
        self.assertIn("offline", out.getvalue())

    def test_invalid_interval_is_a_usage_error(self) -> None:
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit) as ctx:
                cli.main(["record", "--interval", "0", "--duration", "0.01"])
        self.assertEqual(ctx.exception.code, 2)

    def test_record_logs_its_duration(self) -> None:
        with patch("conrec.cli.make_http_probe", return_value=lambda _timeout: None):
            with self.assertLogs("conrec.cli", level="INFO") as captured:
                with contextlib.redirect_stdout(io.StringIO()):
                    cli.main(["record", "--duration", "0.02", "--interval", "0.005", "--json"])
        self.assertTrue(any("Recording for" in line for line in captured.output))

    def test_environment_defaults(self) -> None:
        env = {"CONREC_PROBE_INTERVAL": "7.5", "CONREC_MAX_SPANS": "12", "CONREC_PROBE_URL": "http://x.test/204"}
        with patch.dict("os.environ", env):
            args = cli._build_parser().parse_args(["record"])
        self.assertEqual(args.interval, 7.5)
        self.assertEqual(args.max_spans, 12)
        self.assertEqual(args.url, "http://x.test/204")
        self.assertEqual(args.timeout, 0.5)

    def test_serve_stops_recorder_when_server_exits(self) -> None:
        with patch("conrec.cli.make_http_probe", return_value=lambda _timeout: None), patch(
            "uvicorn.run"
        ) as run:
            code = cli.main(["serve", "--interval", "0.01", "--port", "4444"])
        self.assertEqual(code, 0)
        app = run.call_args.args[0]
        self.assertFalse(app.state.recorder.running)
        self.assertEqual(run.call_args.kwargs["port"], 4444)


if __name__ == "__main__":
    unittest.main()
