from __future__ import annotations

import pytest

from pid_annotator.geometry import (
    PageRect,
    clamp_pixel_box,
    contains_point,
    is_degenerate,
    rescale_pixel_box,
    rescale_point,
    span_box,
    to_normalized,
    to_pixels,
    to_target_pixels,
)


PAGE = PageRect(width=800, height=1000)


def test_to_normalized_matches_reference_box() -> None:
    bbox = to_normalized({"x": 100, "y": 100, "width": 50, "height": 40}, PAGE)

    assert bbox["x_center"] == pytest.approx(0.15625)
    assert bbox["y_center"] == pytest.approx(0.12)
    assert bbox["width"] == pytest.approx(0.0625)
    assert bbox["height"] == pytest.approx(0.04)


@pytest.mark.parametrize(
    "rect",
    [PageRect(width=800, height=1000), PageRect(width=1234, height=987), PageRect(width=4767, height=3367)],
)
def test_integer_pixel_boxes_survive_normalization(rect: PageRect) -> None:
    for box in (
        {"x": 0, "y": 0, "width": 1, "height": 1},
        {"x": 100, "y": 100, "width": 50, "height": 40},
        {"x": 17, "y": 333, "width": 211, "height": 97},
        {"x": 0, "y": 0, "width": int(rect.width), "height": int(rect.height)},
    ):
        assert to_pixels(to_normalized(box, rect), rect) == box


@pytest.mark.parametrize(
    "bbox",
    [
        {"x_center": 0.5, "y_center": 0.5, "width": 1.0, "height": 1.0},
        {"x_center": 0.15625, "y_center": 0.12, "width": 0.0625, "height": 0.04},
        {"x_center": 0.731, "y_center": 0.268, "width": 0.0123, "height": 0.311},
    ],
)
def test_normalized_boxes_survive_pixel_projection(bbox) -> None:
    for rect in (PAGE, PageRect(width=1234, height=987)):
        back = to_normalized(to_pixels(bbox, rect), rect)
        assert back["x_center"] == pytest.approx(bbox["x_center"], abs=1 / rect.width)
        assert back["y_center"] == pytest.approx(bbox["y_center"], abs=1 / rect.height)
        assert back["width"] == pytest.approx(bbox["width"], abs=1 / rect.width)
        assert back["height"] == pytest.approx(bbox["height"], abs=1 / rect.height)


def test_to_pixels_is_stable_for_unchanged_input() -> None:
    bbox = {"x_center": 0.333333, "y_center": 0.666667, "width": 0.1, "height": 0.05}

    first = to_pixels(bbox, PAGE)
    second = to_pixels(bbox, PAGE)

    assert first == second
    assert all(isinstance(value, int) for value in first.values())


def test_to_normalized_requires_a_sized_page() -> None:
    with pytest.raises(ValueError):
        to_normalized({"x": 1, "y": 1, "width": 2, "height": 2}, PageRect(width=0, height=100))
    with pytest.raises(ValueError):
        to_normalized({"x": 1, "y": 1, "width": 2, "height": 2}, None)


def test_target_pixels_agree_with_direct_projection() -> None:
    bbox = {"x_center": 0.15625, "y_center": 0.12, "width": 0.0625, "height": 0.04}
    source = PageRect(width=4767, height=3367)

    assert to_target_pixels(bbox, source, PAGE) == to_pixels(bbox, PAGE)


def test_target_pixels_rejects_empty_source() -> None:
    with pytest.raises(ValueError):
        to_target_pixels({"x_center": 0.5, "y_center": 0.5, "width": 0.1, "height": 0.1}, PageRect(0, 0), PAGE)


def test_rescale_keeps_relative_position() -> None:
    half = PageRect(width=400, height=500)

    assert rescale_point((100, 100), PAGE, half) == (50, 50)
    assert rescale_pixel_box({"x": 100, "y": 100, "width": 50, "height": 40}, PAGE, half) == {
        "x": 50,
        "y": 50,
        "width": 25,
        "height": 20,
    }


def test_span_box_normalizes_reverse_drag() -> None:
    assert span_box((150, 140), (100, 100)) == {"x": 100, "y": 100, "width": 50, "height": 40}


def test_clamp_pixel_box_clips_to_page() -> None:
    clamped = clamp_pixel_box({"x": -20, "y": 980, "width": 60, "height": 50}, PAGE)

    assert clamped == {"x": 0.0, "y": 980, "width": 40, "height": 20}


def test_degenerate_and_contains() -> None:
    assert is_degenerate({"x": 1, "y": 1, "width": 0, "height": 10})
    assert is_degenerate({"x": 1, "y": 1, "width": 3, "height": 3}, min_side=3)
    assert not is_degenerate({"x": 1, "y": 1, "width": 4, "height": 4}, min_side=3)

    box = {"x": 10, "y": 10, "width": 5, "height": 5}
    assert contains_point(box, 10, 15)
    assert not contains_point(box, 16, 12)
