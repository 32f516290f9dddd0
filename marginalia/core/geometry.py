"""Conversions between page-local pixel rectangles and normalized page coordinates.

Everything here is pure. Pixel rectangles live in content coordinates (the
scrollable page column, origin at its top-left); normalized rectangles are
fractions of one page box and survive zoom changes unchanged.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Sequence, Tuple

Matrix = Tuple[float, float, float, float, float, float]

IDENTITY: Matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

# Rectangles thinner than this (in pixels) carry no visible area.
DEGENERATE_EPS = 0.5


def clamp01(value: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def contains(self, x: float, y: float) -> bool:
        return self.x <= x <= self.right and self.y <= y <= self.bottom

    def intersects(self, other: "Rect") -> bool:
        return not (
            other.x > self.right
            or other.right < self.x
            or other.y > self.bottom
            or other.bottom < self.y
        )

    def union(self, other: "Rect") -> "Rect":
        x0 = min(self.x, other.x)
        y0 = min(self.y, other.y)
        x1 = max(self.right, other.right)
        y1 = max(self.bottom, other.bottom)
        return Rect(x0, y0, x1 - x0, y1 - y0)

    def translated(self, dx: float, dy: float) -> "Rect":
        return Rect(self.x + dx, self.y + dy, self.width, self.height)

    def is_degenerate(self, eps: float = DEGENERATE_EPS) -> bool:
        return self.width < eps or self.height < eps

    @classmethod
    def from_points(cls, x0: float, y0: float, x1: float, y1: float) -> "Rect":
        left, right = sorted((float(x0), float(x1)))
        top, bottom = sorted((float(y0), float(y1)))
        return cls(left, top, right - left, bottom - top)


@dataclass(frozen=True)
class NormalizedRect:
    """Rectangle expressed as fractions (0..1) of a page box."""

    x: float
    y: float
    w: float
    h: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NormalizedRect":
        if not isinstance(data, dict):
            raise TypeError("normalized rect must be an object")
        return cls(
            x=clamp01(data["x"]),
            y=clamp01(data["y"]),
            w=clamp01(data["w"]),
            h=clamp01(data["h"]),
        )


def normalize_rect(rect: Rect, page_box: Rect) -> NormalizedRect:
    """Express `rect` relative to `page_box`, clamping each component."""
    if page_box.width <= 0 or page_box.height <= 0:
        return NormalizedRect(0.0, 0.0, 0.0, 0.0)
    return NormalizedRect(
        x=clamp01((rect.x - page_box.x) / page_box.width),
        y=clamp01((rect.y - page_box.y) / page_box.height),
        w=clamp01(rect.width / page_box.width),
        h=clamp01(rect.height / page_box.height),
    )


def denormalize_rect(norm: NormalizedRect, width: float, height: float) -> Rect:
    """Page-local pixel rectangle for `norm` at the given page box size."""
    return Rect(norm.x * width, norm.y * height, norm.w * width, norm.h * height)


def normalize_y(y: float, page_top: float, page_height: float) -> float:
    if page_height <= 0:
        return 0.0
    return clamp01((y - page_top) / page_height)


def scale_box(width: float, height: float, factor: float) -> Tuple[float, float]:
    if not math.isfinite(factor) or factor <= 0:
        return (width, height)
    return (width * factor, height * factor)


def transform_multiply(m1: Sequence[float], m2: Sequence[float]) -> Matrix:
    """Compose two affine matrices, `m1` applied after `m2`."""
    return (
        m1[0] * m2[0] + m1[2] * m2[1],
        m1[1] * m2[0] + m1[3] * m2[1],
        m1[0] * m2[2] + m1[2] * m2[3],
        m1[1] * m2[2] + m1[3] * m2[3],
        m1[0] * m2[4] + m1[2] * m2[5] + m1[4],
        m1[1] * m2[4] + m1[3] * m2[5] + m1[5],
    )


def apply_transform(m: Sequence[float], x: float, y: float) -> Tuple[float, float]:
    return (m[0] * x + m[2] * y + m[4], m[1] * x + m[3] * y + m[5])


__all__ = [
    "DEGENERATE_EPS",
    "IDENTITY",
    "Matrix",
    "NormalizedRect",
    "Rect",
    "apply_transform",
    "clamp01",
    "denormalize_rect",
    "normalize_rect",
    "normalize_y",
    "scale_box",
    "transform_multiply",
]
