"""Step-timeline chart of recorded spans, rendered with Pillow."""
from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import List, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont

from conrec.spans import Span

Point = Tuple[float, int]

BACKGROUND = (255, 255, 255)
GRID_COLOR = (220, 220, 220)
AXIS_COLOR = (90, 90, 90)
LINE_COLOR = (0, 255, 0)
POINT_COLOR = (255, 0, 0)
TEXT_COLOR = (40, 40, 40)


def step_points(spans: Sequence[Span]) -> List[Point]:
    """Two points per span (start and end) at height 1 online, 0 offline."""
    points: List[Point] = []
    for span in spans:
        level = 1 if span.is_online else 0
        points.append((span.start_time.timestamp(), level))
        points.append((span.end_time.timestamp(), level))
    return points


def _load_font(size: int) -> ImageFont.ImageFont:
    try:
        return ImageFont.truetype("DejaVuSans.ttf", size)
    except OSError:
        return ImageFont.load_default()


def _time_label(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d\n%H:%M:%S")


def render_png(
    spans: Sequence[Span],
    *,
    width: int = 800,
    height: int = 400,
    title: str = "Connectivity",
) -> bytes:
    image = Image.new("RGB", (width, height), color=BACKGROUND)
    draw = ImageDraw.Draw(image)
    title_font = _load_font(18)
    label_font = _load_font(11)

    left, right, top, bottom = 90, width - 30, 50, height - 60
    draw.text((left, 15), title, fill=TEXT_COLOR, font=title_font)

    def y_for(level: int) -> float:
        return bottom - level * (bottom - top)

    for level, label in ((0, "offline"), (1, "online")):
        y = y_for(level)
        draw.line([(left, y), (right, y)], fill=GRID_COLOR)
        draw.text((10, y - 7), label, fill=TEXT_COLOR, font=label_font)
    draw.line([(left, top), (left, bottom)], fill=AXIS_COLOR)
    draw.line([(left, bottom), (right, bottom)], fill=AXIS_COLOR)

    points = step_points(spans)
    if not points:
        draw.text((left + 10, (top + bottom) / 2), "no data", fill=TEXT_COLOR, font=label_font)
        return _encode(image)

    x_min, x_max = points[0][0], points[-1][0]
    span_x = (x_max - x_min) or 1.0

    def x_for(ts: float) -> float:
        return left + (ts - x_min) / span_x * (right - left)

    for index in range(5):
        ts = x_min + span_x * index / 4
        x = x_for(ts)
        draw.line([(x, top), (x, bottom)], fill=GRID_COLOR)
        draw.multiline_text((x - 30, bottom + 8), _time_label(ts), fill=TEXT_COLOR, font=label_font)

    pixels = [(x_for(ts), y_for(level)) for ts, level in points]
    if len(pixels) > 1:
        draw.line(pixels, fill=LINE_COLOR, width=2)
    for x, y in pixels:
        draw.ellipse([(x - 3, y - 3), (x + 3, y + 3)], outline=POINT_COLOR)

    return _encode(image)


def _encode(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


__all__ = ["step_points", "render_png"]
