"""HTTP endpoint exposing a recorder's timeline as JSON and as a chart."""
from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import FastAPI, Query
from fastapi.responses import RedirectResponse, Response

from conrec.chart import render_png
from conrec.recorder import Recorder
from conrec.spans import summarize

logger = logging.getLogger(__name__)


def create_app(recorder: Recorder, *, title: str = "conrec") -> FastAPI:
    """Build an app bound to ``recorder``; the app never stops it."""
    app = FastAPI(title=title, version="0.1.0")
    app.state.recorder = recorder

    @app.get("/health")
    async def health():
        return {
            "status": "ok" if recorder.running else "stopped",
            "time": time.time(),
            "probes": recorder.probe_count,
        }

    @app.get("/spans")
    async def spans(limit: Optional[int] = Query(None, ge=1, description="Only the most recent spans")):
        timeline = recorder.spans()
        if limit:
            timeline = timeline[-limit:]
        return {
            "recorder": recorder.config.name,
            "summary": summarize(timeline),
            "spans": [span.to_dict() for span in timeline],
        }

    @app.get("/chart.png")
    def chart(
        width: int = Query(800, ge=200, le=4000),
        height: int = Query(400, ge=150, le=2000),
    ):
        timeline = recorder.spans()
        png = render_png(timeline, width=width, height=height)
        logger.debug("Rendered %d spans into a %dx%d chart", len(timeline), width, height)
        return Response(content=png, media_type="image/png")

    @app.get("/")
    async def index():
        return RedirectResponse(url="/chart.png")

    return app


__all__ = ["create_app"]
