"""Pointer and keyboard state machine for drawing, moving and resizing boxes.

The engine works in pixel coordinates relative to the top-left corner of the
page rectangle currently published by the viewport tracker. Boxes are read
from and written to the annotation store in normalized coordinates; pixel
values only live for the duration of a gesture.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .annotation_core import AnnotationRecord, AnnotationStore, normalize_bbox_data
from .config import InteractionConfig
from .geometry import (
    PageRect,
    clamp_pixel_box,
    contains_point,
    coerce_pixel_box,
    is_degenerate,
    pixel_box,
    rescale_pixel_box,
    rescale_point,
    span_box,
    to_normalized,
    to_pixels,
)
from .schemas import NEUTRAL_COLOR
from .viewport import ViewportTracker

logger = logging.getLogger("pid_annotator.interaction")

Point = Tuple[float, float]
PixelBox = Dict[str, float]

H_TOP = "top"
H_BOTTOM = "bottom"
H_LEFT = "left"
H_RIGHT = "right"
H_TOP_LEFT = "top_left"
H_TOP_RIGHT = "top_right"
H_BOTTOM_LEFT = "bottom_left"
H_BOTTOM_RIGHT = "bottom_right"

_LEFT_HANDLES = (H_LEFT, H_TOP_LEFT, H_BOTTOM_LEFT)
_RIGHT_HANDLES = (H_RIGHT, H_TOP_RIGHT, H_BOTTOM_RIGHT)
_TOP_HANDLES = (H_TOP, H_TOP_LEFT, H_TOP_RIGHT)
_BOTTOM_HANDLES = (H_BOTTOM, H_BOTTOM_LEFT, H_BOTTOM_RIGHT)

# Reference render size used when no page rect is known yet.
FALLBACK_PAGE_RECT = PageRect(width=800, height=1000)

NO_CONTEXT_MESSAGE = "Please select a category before drawing."


@dataclass
class Idle:
    pass


@dataclass
class Drawing:
    origin: Point
    current: Point


@dataclass
class PendingLabel:
    draft: PixelBox
    bbox: Dict[str, float]


@dataclass
class Pressed:
    annotation_id: str
    pointer_start: Point
    original_box: PixelBox


@dataclass
class Dragging:
    annotation_id: str
    pointer_start: Point
    original_box: PixelBox
    current_box: PixelBox


@dataclass
class Transform:
    offset_x: float = 0.0
    offset_y: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0

    @property
    def is_identity(self) -> bool:
        return self.offset_x == 0 and self.offset_y == 0 and self.scale_x == 1.0 and self.scale_y == 1.0


@dataclass
class Resizing:
    annotation_id: str
    handle: str
    pointer_start: Point
    original_box: PixelBox
    transform: Transform = field(default_factory=Transform)


State = Union[Idle, Drawing, PendingLabel, Pressed, Dragging, Resizing]
_GESTURE_STATES = (Drawing, Pressed, Dragging, Resizing)


def handle_at(box: PixelBox, x: float, y: float, margin: float) -> Optional[str]:
    # Small boxes keep a draggable interior.
    margin = min(margin, box["width"] / 4, box["height"] / 4)
    left = box["x"]
    top = box["y"]
    right = box["x"] + box["width"]
    bottom = box["y"] + box["height"]
    near_left = abs(x - left) <= margin
    near_right = abs(x - right) <= margin
    near_top = abs(y - top) <= margin
    near_bottom = abs(y - bottom) <= margin

    inside_x = (left + margin) < x < (right - margin)
    inside_y = (top + margin) < y < (bottom - margin)

    if near_left and near_top:
        return H_TOP_LEFT
    if near_right and near_top:
        return H_TOP_RIGHT
    if near_left and near_bottom:
        return H_BOTTOM_LEFT
    if near_right and near_bottom:
        return H_BOTTOM_RIGHT
    if near_left and inside_y:
        return H_LEFT
    if near_right and inside_y:
        return H_RIGHT
    if near_top and inside_x:
        return H_TOP
    if near_bottom and inside_x:
        return H_BOTTOM
    return None


def resize_box(
    original: PixelBox,
    handle: str,
    dx: float,
    dy: float,
    bounds: PageRect,
    min_side: float,
) -> PixelBox:
    """Move the edges named by ``handle``; the opposite edges stay anchored."""
    moving_left = handle in _LEFT_HANDLES
    moving_right = handle in _RIGHT_HANDLES
    moving_top = handle in _TOP_HANDLES
    moving_bottom = handle in _BOTTOM_HANDLES

    left = original["x"]
    top = original["y"]
    right = original["x"] + original["width"]
    bottom = original["y"] + original["height"]

    if moving_left:
        left = min(max(left + dx, 0.0), right - min_side)
    if moving_right:
        right = max(min(right + dx, float(bounds.width)), left + min_side)
    if moving_top:
        top = min(max(top + dy, 0.0), bottom - min_side)
    if moving_bottom:
        bottom = max(min(bottom + dy, float(bounds.height)), top + min_side)

    return pixel_box(left, top, right - left, bottom - top)


def transform_between(original: PixelBox, target: PixelBox) -> Transform:
    scale_x = target["width"] / original["width"] if original["width"] else 1.0
    scale_y = target["height"] / original["height"] if original["height"] else 1.0
    return Transform(
        offset_x=target["x"] - original["x"],
        offset_y=target["y"] - original["y"],
        scale_x=scale_x,
        scale_y=scale_y,
    )


def bake_transform(original: PixelBox, transform: Transform) -> PixelBox:
    return pixel_box(
        original["x"] + transform.offset_x,
        original["y"] + transform.offset_y,
        original["width"] * transform.scale_x,
        original["height"] * transform.scale_y,
    )


def shift_inside(box: PixelBox, dx: float, dy: float, bounds: PageRect) -> PixelBox:
    """Translate ``box`` by the delta, pushed back inside ``bounds``."""
    x = box["x"] + dx
    y = box["y"] + dy
    max_x = float(bounds.width) - box["width"]
    max_y = float(bounds.height) - box["height"]
    x = min(max(x, 0.0), max(max_x, 0.0))
    y = min(max(y, 0.0), max(max_y, 0.0))
    return pixel_box(x, y, box["width"], box["height"])


class InteractionEngine:
    def __init__(
        self,
        store: AnnotationStore,
        viewport: ViewportTracker,
        config: Optional[InteractionConfig] = None,
        default_category: Optional[str] = None,
        category_colors: Optional[Dict[str, str]] = None,
        on_rejected: Optional[Callable[[str], None]] = None,
        on_label_requested: Optional[Callable[[PixelBox], None]] = None,
        on_changed: Optional[Callable[[], None]] = None,
    ) -> None:
        self.store = store
        self.viewport = viewport
        self.config = config or InteractionConfig()
        self.default_category = default_category
        self.category_colors: Dict[str, str] = dict(category_colors or {})
        self.on_rejected = on_rejected
        self.on_label_requested = on_label_requested
        self.on_changed = on_changed
        self._state: State = Idle()
        self._gesture_rect: Optional[PageRect] = None
        self._active_category: Optional[str] = None
        self._active_label: Optional[str] = None
        self._hidden_categories: set[str] = set()
        self._mounted = True
        self._unsubscribe_viewport = viewport.subscribe(self._on_page_rect_changed)

    # -- context ---------------------------------------------------------

    @property
    def state(self) -> State:
        return self._state

    @property
    def is_idle(self) -> bool:
        return isinstance(self._state, Idle)

    @property
    def active_category(self) -> Optional[str]:
        return self._active_category

    @property
    def active_label(self) -> Optional[str]:
        return self._active_label

    def set_active_category(self, category: Optional[str]) -> None:
        self._active_category = (category or "").strip() or None

    def set_active_label(self, label: Optional[str]) -> None:
        self._active_label = (label or "").strip() or None

    @property
    def has_draw_context(self) -> bool:
        return self._active_category is not None or self._active_label is not None

    def page_rect(self) -> Optional[PageRect]:
        rect = self.viewport.current()
        if rect is None or not rect.is_valid:
            return None
        return rect

    def set_category_visible(self, category: str, visible: bool) -> None:
        if visible:
            self._hidden_categories.discard(category)
        else:
            self._hidden_categories.add(category)
        self._notify()

    def is_category_visible(self, category: Optional[str]) -> bool:
        return category is None or category not in self._hidden_categories

    def category_color(self, category: Optional[str]) -> str:
        if category is None:
            return NEUTRAL_COLOR
        return self.category_colors.get(category, NEUTRAL_COLOR)

    # -- projections -----------------------------------------------------

    def visible_records(self) -> List[AnnotationRecord]:
        return [record for record in self.store.records() if self.is_category_visible(record.category)]

    def projected_boxes(self) -> List[Tuple[AnnotationRecord, PixelBox, bool]]:
        rect = self.page_rect()
        if rect is None:
            return []
        selected_id = self.store.selected_id
        boxes: List[Tuple[AnnotationRecord, PixelBox, bool]] = []
        for record in self.visible_records():
            box: PixelBox = dict(to_pixels(record.bbox, rect))
            preview = self._preview_for(record.id)
            if preview is not None:
                box = preview
            boxes.append((record, box, record.id == selected_id))
        return boxes

    def draft_box(self) -> Optional[PixelBox]:
        state = self._state
        rect = self.page_rect()
        if isinstance(state, Drawing) and rect is not None:
            return clamp_pixel_box(span_box(state.origin, state.current), rect)
        if isinstance(state, PendingLabel):
            return dict(state.draft)
        return None

    def hit_test(self, x: float, y: float) -> Optional[str]:
        """Return the topmost visible annotation under the point."""
        rect = self.page_rect()
        if rect is None:
            return None
        for record in reversed(self.visible_records()):
            if contains_point(to_pixels(record.bbox, rect), x, y):
                return record.id
        return None

    # -- pointer events --------------------------------------------------

    def pointer_down(self, x: float, y: float) -> bool:
        if not self._mounted or not self.is_idle:
            return False
        rect = self.page_rect()
        if rect is None:
            logger.debug("pointer down ignored, page rect unavailable")
            self.viewport.refresh("pointer")
            return False

        hit_id = self.hit_test(x, y)
        if hit_id is not None:
            record = self.store.get(hit_id)
            assert record is not None
            self.store.select(hit_id)
            box: PixelBox = dict(to_pixels(record.bbox, rect))
            handle = handle_at(box, x, y, self.config.resize_margin_px)
            self._gesture_rect = rect
            if handle is not None:
                self._state = Resizing(annotation_id=hit_id, handle=handle, pointer_start=(x, y), original_box=box)
            else:
                self._state = Pressed(annotation_id=hit_id, pointer_start=(x, y), original_box=box)
            self._notify()
            return True

        if not rect.contains(x, y):
            return False
        if not self.has_draw_context:
            logger.warning("draw rejected: no active category or label")
            if self.on_rejected is not None:
                self.on_rejected(NO_CONTEXT_MESSAGE)
            return False

        self._gesture_rect = rect
        self._state = Drawing(origin=(x, y), current=(x, y))
        self._notify()
        return True

    def pointer_move(self, x: float, y: float) -> bool:
        state = self._state
        rect = self._gesture_rect
        if rect is None:
            return False

        if isinstance(state, Drawing):
            state.current = (x, y)
        elif isinstance(state, Pressed):
            if (x, y) == state.pointer_start:
                return False
            self._state = Dragging(
                annotation_id=state.annotation_id,
                pointer_start=state.pointer_start,
                original_box=state.original_box,
                current_box=dict(state.original_box),
            )
            return self.pointer_move(x, y)
        elif isinstance(state, Dragging):
            dx = x - state.pointer_start[0]
            dy = y - state.pointer_start[1]
            state.current_box = shift_inside(state.original_box, dx, dy, rect)
        elif isinstance(state, Resizing):
            dx = x - state.pointer_start[0]
            dy = y - state.pointer_start[1]
            target = resize_box(state.original_box, state.handle, dx, dy, rect, self.config.min_resize_side_px)
            state.transform = transform_between(state.original_box, target)
        else:
            return False
        self._notify()
        return True

    def pointer_up(self, x: float, y: float) -> bool:
        state = self._state
        if isinstance(state, Drawing):
            state.current = (x, y)
            return self._finish_drawing(state)
        if isinstance(state, Pressed):
            if (x, y) == state.pointer_start:
                self._reset()
                return True
            self.pointer_move(x, y)
            state = self._state
        if isinstance(state, Dragging):
            self.pointer_move(x, y)
            final = dict(state.current_box)
            self._commit_box(state.annotation_id, state.original_box, final)
            return True
        if isinstance(state, Resizing):
            self.pointer_move(x, y)
            final = self._commit_transform(state)
            self._commit_box(state.annotation_id, state.original_box, final)
            return True
        return False

    def key_press(self, key: str, shift: bool = False) -> bool:
        if key in ("Escape", "Esc"):
            return self.cancel()
        if not self.is_idle:
            return False
        if key in ("Delete", "Backspace"):
            return self.delete_selected()
        step = self.config.nudge_step_large_px if shift else self.config.nudge_step_px
        deltas = {"Left": (-step, 0), "Right": (step, 0), "Up": (0, -step), "Down": (0, step)}
        if key in deltas:
            return self.nudge_selected(*deltas[key])
        return False

    # -- commands --------------------------------------------------------

    def confirm_label(
        self,
        label: Optional[str] = None,
        fields: Optional[Dict[str, Any]] = None,
        category: Optional[str] = None,
    ) -> Optional[str]:
        state = self._state
        if not isinstance(state, PendingLabel):
            return None
        text = (label or "").strip() or self._active_label
        annotation_id = self.store.add(
            {
                "bbox": state.bbox,
                "label": text,
                "category": category or self._active_category,
                "fields": fields or {},
            }
        )
        self.store.select(annotation_id)
        self._reset()
        return annotation_id

    def cancel(self) -> bool:
        """Discard any draft or uncommitted transform."""
        if self.is_idle:
            return False
        logger.debug("gesture cancelled in state %s", type(self._state).__name__)
        self._reset()
        return True

    def unmount(self) -> None:
        self.cancel()
        self._mounted = False
        self._unsubscribe_viewport()

    def add_placeholder(self) -> str:
        self.cancel()
        rect = self.page_rect() or FALLBACK_PAGE_RECT
        placeholder = self.config.placeholder_box
        box = clamp_pixel_box(
            pixel_box(placeholder.x, placeholder.y, placeholder.width, placeholder.height),
            rect,
        )
        if is_degenerate(box):
            rect = FALLBACK_PAGE_RECT
            box = pixel_box(placeholder.x, placeholder.y, placeholder.width, placeholder.height)
        annotation_id = self.store.add(
            {
                "bbox": to_normalized(box, rect),
                "label": self._active_label,
                "category": self._active_category or self.default_category,
            }
        )
        self.store.select(annotation_id)
        return annotation_id

    def delete_selected(self) -> bool:
        selected_id = self.store.selected_id
        if selected_id is None:
            return False
        return self.store.remove(selected_id)

    def nudge_selected(self, dx: float, dy: float) -> bool:
        rect = self.page_rect()
        record = self.store.selected()
        if rect is None or record is None:
            return False
        original: PixelBox = dict(to_pixels(record.bbox, rect))
        moved = shift_inside(original, dx, dy, rect)
        if moved == original:
            return False
        return self.store.update(record.id, {"bbox": to_normalized(moved, rect)})

    # -- internals -------------------------------------------------------

    def _finish_drawing(self, state: Drawing) -> bool:
        rect = self._gesture_rect
        assert rect is not None
        draft = clamp_pixel_box(span_box(state.origin, state.current), rect)
        if is_degenerate(draft, self.config.min_draw_side_px):
            logger.debug("dropping zero-area draft %s", draft)
            self._reset()
            return True
        try:
            bbox = normalize_bbox_data(to_normalized(draft, rect))
        except ValueError as exc:
            logger.debug("dropping draft: %s", exc)
            self._reset()
            return True
        self._state = PendingLabel(draft=draft, bbox=bbox)
        self._gesture_rect = None
        self._notify()
        if self.on_label_requested is not None:
            self.on_label_requested(dict(draft))
        return True

    def _commit_transform(self, state: Resizing) -> PixelBox:
        """Bake the transient scale into an absolute box and reset it to unity."""
        final = bake_transform(state.original_box, state.transform)
        state.transform = Transform()
        return final

    def _commit_box(self, annotation_id: str, original: PixelBox, final: PixelBox) -> None:
        rect = self._gesture_rect
        self._reset()
        if rect is None or coerce_pixel_box(final) == coerce_pixel_box(original):
            return
        if is_degenerate(final):
            logger.debug("dropping zero-area commit for id=%s", annotation_id)
            return
        self.store.update(annotation_id, {"bbox": to_normalized(final, rect)})

    def _preview_for(self, annotation_id: str) -> Optional[PixelBox]:
        state = self._state
        if isinstance(state, Dragging) and state.annotation_id == annotation_id:
            return dict(state.current_box)
        if isinstance(state, Resizing) and state.annotation_id == annotation_id:
            return bake_transform(state.original_box, state.transform)
        return None

    def _on_page_rect_changed(self, rect: Optional[PageRect]) -> None:
        state = self._state
        old = self._gesture_rect
        if isinstance(state, PendingLabel):
            self._notify()
            return
        if not isinstance(state, _GESTURE_STATES) or old is None:
            self._notify()
            return
        if rect is None or not rect.is_valid:
            self.cancel()
            return

        if isinstance(state, Drawing):
            self._state = Drawing(origin=rescale_point(state.origin, old, rect), current=rescale_point(state.current, old, rect))
        elif isinstance(state, Pressed):
            self._state = replace(
                state,
                pointer_start=rescale_point(state.pointer_start, old, rect),
                original_box=rescale_pixel_box(state.original_box, old, rect),
            )
        elif isinstance(state, Dragging):
            self._state = replace(
                state,
                pointer_start=rescale_point(state.pointer_start, old, rect),
                original_box=rescale_pixel_box(state.original_box, old, rect),
                current_box=rescale_pixel_box(state.current_box, old, rect),
            )
        elif isinstance(state, Resizing):
            self._state = replace(
                state,
                pointer_start=rescale_point(state.pointer_start, old, rect),
                original_box=rescale_pixel_box(state.original_box, old, rect),
                transform=replace(
                    state.transform,
                    offset_x=state.transform.offset_x * rect.width / old.width,
                    offset_y=state.transform.offset_y * rect.height / old.height,
                ),
            )
        self._gesture_rect = rect
        self._notify()

    def _reset(self) -> None:
        self._state = Idle()
        self._gesture_rect = None
        self._notify()

    def _notify(self) -> None:
        if self.on_changed is not None:
            self.on_changed()


__all__ = [
    "Drawing",
    "Dragging",
    "FALLBACK_PAGE_RECT",
    "H_BOTTOM",
    "H_BOTTOM_LEFT",
    "H_BOTTOM_RIGHT",
    "H_LEFT",
    "H_RIGHT",
    "H_TOP",
    "H_TOP_LEFT",
    "H_TOP_RIGHT",
    "Idle",
    "InteractionEngine",
    "NO_CONTEXT_MESSAGE",
    "PendingLabel",
    "Pressed",
    "Resizing",
    "State",
    "Transform",
    "bake_transform",
    "handle_at",
    "resize_box",
    "shift_inside",
    "transform_between",
]
