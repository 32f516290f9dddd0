from __future__ import annotations

import math

import pytest

from marginalia.core.document import TextRun, Viewport, layout_text_runs
from marginalia.core.geometry import (
    NormalizedRect,
    Rect,
    apply_transform,
    clamp01,
    denormalize_rect,
    normalize_rect,
    normalize_y,
    scale_box,
    transform_multiply,
)
from marginalia.core.render_token import GenerationCounter


def test_normalize_rect_is_relative_to_page_box() -> None:
    page = Rect(10.0, 100.0, 200.0, 400.0)
    norm = normalize_rect(Rect(60.0, 200.0, 50.0, 40.0), page)

    assert norm == NormalizedRect(0.25, 0.25, 0.25, 0.1)
    back = denormalize_rect(norm, page.width, page.height)
    assert back == Rect(50.0, 100.0, 50.0, 40.0)


def test_normalize_rect_clamps_and_handles_empty_page() -> None:
    page = Rect(0.0, 0.0, 100.0, 100.0)
    norm = normalize_rect(Rect(-20.0, 50.0, 300.0, 10.0), page)
    assert norm.x == 0.0
    assert norm.w == 1.0

    assert normalize_rect(Rect(1, 1, 1, 1), Rect(0, 0, 0, 10)) == NormalizedRect(0, 0, 0, 0)


def test_normalized_rect_from_dict_clamps_values() -> None:
    norm = NormalizedRect.from_dict({"x": -1, "y": 0.5, "w": 2, "h": "0.25"})
    assert norm == NormalizedRect(0.0, 0.5, 1.0, 0.25)
    assert norm.to_dict() == {"x": 0.0, "y": 0.5, "w": 1.0, "h": 0.25}
    with pytest.raises(KeyError):
        NormalizedRect.from_dict({"x": 0.1})


def test_normalize_y_and_clamp01() -> None:
    assert normalize_y(150.0, 100.0, 200.0) == pytest.approx(0.25)
    assert normalize_y(50.0, 100.0, 200.0) == 0.0
    assert normalize_y(500.0, 100.0, 200.0) == 1.0
    assert normalize_y(10.0, 0.0, 0.0) == 0.0
    assert clamp01(float("nan")) == 0.0
    assert clamp01("nope") == 0.0


def test_scale_box_ignores_invalid_factors() -> None:
    assert scale_box(100.0, 200.0, 1.5) == (150.0, 300.0)
    assert scale_box(100.0, 200.0, 0.0) == (100.0, 200.0)
    assert scale_box(100.0, 200.0, math.inf) == (100.0, 200.0)


def test_rect_hit_testing_and_union() -> None:
    a = Rect(0.0, 0.0, 10.0, 10.0)
    b = Rect(20.0, 5.0, 10.0, 10.0)
    assert a.contains(10.0, 10.0)
    assert not a.intersects(b)
    assert a.union(b) == Rect(0.0, 0.0, 30.0, 15.0)
    assert Rect.from_points(5, 8, 1, 2) == Rect(1.0, 2.0, 4.0, 6.0)
    assert Rect(0, 0, 0.2, 10).is_degenerate()


def test_transform_multiply_composes_scale_and_translation() -> None:
    scale = (2.0, 0.0, 0.0, 2.0, 0.0, 0.0)
    move = (1.0, 0.0, 0.0, 1.0, 5.0, 7.0)
    combined = transform_multiply(scale, move)
    assert combined == (2.0, 0.0, 0.0, 2.0, 10.0, 14.0)
    assert apply_transform(combined, 1.0, 1.0) == (12.0, 16.0)


def test_layout_text_runs_places_span_above_baseline() -> None:
    viewport = Viewport.for_page(600.0, 800.0, 1.5)
    runs = [
        TextRun("Hello", (10.0, 0.0, 0.0, 10.0, 100.0, 200.0), width=30.0, font_name="Helv"),
        TextRun("", (10.0, 0.0, 0.0, 10.0, 0.0, 0.0)),
    ]
    overlay = layout_text_runs(runs, viewport)

    assert len(overlay.spans) == 1
    span = overlay.spans[0]
    assert span.font_size == pytest.approx(15.0)
    assert span.left == pytest.approx(150.0)
    assert span.top == pytest.approx(300.0 - 15.0)
    assert span.width == pytest.approx(45.0)
    assert overlay.text == "Hello"


def test_generation_counter_invalidates_older_tokens() -> None:
    counter = GenerationCounter()
    first = counter.advance()
    assert first.is_current()
    second = counter.advance()
    assert not first.is_current()
    assert second.is_current()
    assert counter.token() == second
