"""Conversions between normalized annotation boxes and page pixel boxes.

Normalized boxes are ``{x_center, y_center, width, height}`` fractions of the
full page. Pixel boxes are ``{x, y, width, height}`` relative to the top-left
corner of the rendered page.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

BBOX_KEYS = ("x_center", "y_center", "width", "height")
PIXEL_KEYS = ("x", "y", "width", "height")
BBOX_PRECISION = 6


@dataclass(frozen=True)
class PageRect:
    width: float
    height: float
    left: float = 0.0
    top: float = 0.0

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0

    def contains(self, x: float, y: float) -> bool:
        return 0 <= x <= self.width and 0 <= y <= self.height


def _require_page_rect(page_rect: Optional[PageRect]) -> PageRect:
    if page_rect is None or not page_rect.is_valid:
        raise ValueError(f"A page rectangle with non-zero size is required, got {page_rect!r}.")
    return page_rect


def _snap(value: float) -> int:
    return int(round(value))


def pixel_box(x: float, y: float, width: float, height: float) -> Dict[str, float]:
    return {"x": x, "y": y, "width": width, "height": height}


def coerce_pixel_box(data: Mapping[str, Any]) -> Dict[str, float]:
    return {key: float(data.get(key, 0.0) or 0.0) for key in PIXEL_KEYS}


def coerce_bbox(data: Mapping[str, Any]) -> Dict[str, float]:
    return {key: float(data.get(key, 0.0) or 0.0) for key in BBOX_KEYS}


def to_pixels(bbox: Mapping[str, Any], page_rect: PageRect) -> Dict[str, int]:
    """Project a normalized box onto ``page_rect``.

    Every component is snapped with ``round()`` so repeated projections of an
    unchanged box are identical.
    """
    norm = coerce_bbox(bbox)
    return {
        "x": _snap((norm["x_center"] - norm["width"] / 2) * page_rect.width),
        "y": _snap((norm["y_center"] - norm["height"] / 2) * page_rect.height),
        "width": _snap(norm["width"] * page_rect.width),
        "height": _snap(norm["height"] * page_rect.height),
    }


def to_normalized(box: Mapping[str, Any], page_rect: Optional[PageRect]) -> Dict[str, float]:
    rect = _require_page_rect(page_rect)
    px = coerce_pixel_box(box)
    return {
        "x_center": round((px["x"] + px["width"] / 2) / rect.width, BBOX_PRECISION),
        "y_center": round((px["y"] + px["height"] / 2) / rect.height, BBOX_PRECISION),
        "width": round(px["width"] / rect.width, BBOX_PRECISION),
        "height": round(px["height"] / rect.height, BBOX_PRECISION),
    }


def to_target_pixels(
    bbox: Mapping[str, Any],
    source_size: PageRect,
    target_size: PageRect,
) -> Dict[str, int]:
    """Normalized box -> source image pixels -> target pixels.

    Used when a box was produced against an image whose pixel size differs
    from the rendered target. Rounding happens once, on the target values.
    """
    source = _require_page_rect(source_size)
    target = _require_page_rect(target_size)
    norm = coerce_bbox(bbox)
    x_src = (norm["x_center"] - norm["width"] / 2) * source.width
    y_src = (norm["y_center"] - norm["height"] / 2) * source.height
    w_src = norm["width"] * source.width
    h_src = norm["height"] * source.height

    sx = target.width / source.width
    sy = target.height / source.height
    return {
        "x": _snap(x_src * sx),
        "y": _snap(y_src * sy),
        "width": _snap(w_src * sx),
        "height": _snap(h_src * sy),
    }


def rescale_point(point: Tuple[float, float], source: PageRect, target: PageRect) -> Tuple[float, float]:
    src = _require_page_rect(source)
    dst = _require_page_rect(target)
    return (point[0] * dst.width / src.width, point[1] * dst.height / src.height)


def rescale_pixel_box(box: Mapping[str, Any], source: PageRect, target: PageRect) -> Dict[str, float]:
    src = _require_page_rect(source)
    dst = _require_page_rect(target)
    px = coerce_pixel_box(box)
    sx = dst.width / src.width
    sy = dst.height / src.height
    return pixel_box(px["x"] * sx, px["y"] * sy, px["width"] * sx, px["height"] * sy)


def normalize_pixel_box(box: Mapping[str, Any]) -> Dict[str, float]:
    """Flip negative width/height so the box grows right and down from its origin."""
    px = coerce_pixel_box(box)
    x, y, w, h = px["x"], px["y"], px["width"], px["height"]
    if w < 0:
        x, w = x + w, -w
    if h < 0:
        y, h = y + h, -h
    return pixel_box(x, y, w, h)


def span_box(origin: Tuple[float, float], current: Tuple[float, float]) -> Dict[str, float]:
    return normalize_pixel_box(pixel_box(origin[0], origin[1], current[0] - origin[0], current[1] - origin[1]))


def clamp_pixel_box(box: Mapping[str, Any], page_rect: PageRect) -> Dict[str, float]:
    px = normalize_pixel_box(box)
    left = max(0.0, px["x"])
    top = max(0.0, px["y"])
    right = min(float(page_rect.width), px["x"] + px["width"])
    bottom = min(float(page_rect.height), px["y"] + px["height"])
    return pixel_box(left, top, max(0.0, right - left), max(0.0, bottom - top))


def is_degenerate(box: Mapping[str, Any], min_side: float = 0.0) -> bool:
    width = float(box.get("width", 0.0) or 0.0)
    height = float(box.get("height", 0.0) or 0.0)
    return width <= min_side or height <= min_side


def contains_point(box: Mapping[str, Any], x: float, y: float) -> bool:
    px = coerce_pixel_box(box)
    return px["x"] <= x <= px["x"] + px["width"] and px["y"] <= y <= px["y"] + px["height"]


__all__ = [
    "BBOX_KEYS",
    "BBOX_PRECISION",
    "PIXEL_KEYS",
    "PageRect",
    "clamp_pixel_box",
    "coerce_bbox",
    "coerce_pixel_box",
    "contains_point",
    "is_degenerate",
    "normalize_pixel_box",
    "pixel_box",
    "rescale_pixel_box",
    "rescale_point",
    "span_box",
    "to_normalized",
    "to_pixels",
    "to_target_pixels",
]
