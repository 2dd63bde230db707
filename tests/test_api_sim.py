"""Integration-style tests for the FastAPI layer using a fake probe."""
from __future__ import annotations

import inspect
import unittest

from fastapi.testclient import TestClient

from conrec.api import create_app
from conrec.recorder import Recorder


class _FlappingProbe:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, _timeout: float) -> None:
        self.calls += 1
        if self.calls % 2 == 0:
            raise ConnectionError("link down")


class ApiSimulationTest(unittest.TestCase):
    def setUp(self) -> None:
        self.recorder = Recorder(probe=_FlappingProbe(), probe_interval=0.001, name="api-test")
        self.assertTrue(self.recorder.wait_for_probes(4, timeout=2.0))
        self.client = TestClient(create_app(self.recorder))

    def tearDown(self) -> None:
        self.client.close()
        self.recorder.stop()

    def test_health_reports_running_recorder(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "ok")
        self.assertIn("time", payload)
        self.assertGreaterEqual(payload["probes"], 4)

    def test_health_after_stop(self) -> None:
        self.recorder.stop()
        self.assertEqual(self.client.get("/health").json()["status"], "stopped")

    def test_spans_endpoint_returns_timeline_and_summary(self) -> None:
        self.recorder.stop()
        response = self.client.get("/spans")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["recorder"], "api-test")
        spans = payload["spans"]
        self.assertEqual(len(spans), self.recorder.probe_count)
        self.assertEqual(spans[0]["kind"], "online")
        self.assertEqual(spans[1]["kind"], "offline")
        self.assertEqual(payload["summary"]["spans"], len(spans))
        self.assertEqual({"kind", "start_time", "end_time", "duration"}, set(spans[0]))

    def test_spans_limit_keeps_most_recent(self) -> None:
        self.recorder.stop()
        everything = self.client.get("/spans").json()["spans"]
        recent = self.client.get("/spans", params={"limit": 2}).json()["spans"]
        self.assertEqual(recent, everything[-2:])

    def test_spans_limit_must_be_positive(self) -> None:
        response = self.client.get("/spans", params={"limit": 0})
        self.assertEqual(response.status_code, 422)

    def test_chart_is_png(self) -> None:
        response = self.client.get("/chart.png", params={"width": 400, "height": 200})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "image/png")
        self.assertTrue(response.content.startswith(b"\x89PNG"))

    def test_chart_renders_off_the_event_loop(self) -> None:
        app = self.client.app
        route = next(r for r in app.routes if getattr(r, "path", None) == "/chart.png")
        self.assertFalse(inspect.iscoroutinefunction(route.endpoint))

    def test_chart_render_is_logged(self) -> None:
        with self.assertLogs("conrec.api", level="DEBUG") as captured:
            self.client.get("/chart.png")
        self.assertTrue(any("chart" in line for line in captured.output))

    def test_index_redirects_to_chart(self) -> None:
        response = self.client.get("/", follow_redirects=False)
        self.assertIn(response.status_code, (302, 307))
        self.assertEqual(response.headers["location"], "/chart.png")


if __name__ == "__main__":
    unittest.main()
