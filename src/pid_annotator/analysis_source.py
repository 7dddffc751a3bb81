"""Initial annotation batches supplied by an external analysis step."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .annotation_core import AnnotationStore, normalize_bbox_data, normalize_category, normalize_confidence
from .geometry import BBOX_KEYS, PageRect, to_normalized
from .schemas import Category

logger = logging.getLogger("pid_annotator.analysis")

ANALYSIS_PLACEHOLDER_LABEL = "Unknown"
_LIST_KEYS = ("annotations", "results", "data")
_KNOWN_CATEGORIES = {c.value.lower() for c in Category}


def _items_from_payload(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in _LIST_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    raise ValueError("Analysis payload must be a list or contain an annotations/results/data list.")


def _image_size_from_payload(payload: Any) -> Optional[PageRect]:
    if not isinstance(payload, dict):
        return None
    raw = payload.get("image_size")
    if not isinstance(raw, dict):
        return None
    try:
        size = PageRect(width=float(raw["width"]), height=float(raw["height"]))
    except (KeyError, TypeError, ValueError):
        return None
    return size if size.is_valid else None


def _flatten_metadata(metadata: Any, prefix: str = "") -> Dict[str, str]:
    if not isinstance(metadata, dict):
        return {}
    flat: Dict[str, str] = {}
    for key, value in metadata.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten_metadata(value, prefix=f"{name}."))
        elif isinstance(value, list):
            flat[name] = json.dumps(value, ensure_ascii=False)
        elif value is not None:
            flat[name] = str(value)
    return flat


def _item_bbox(raw_bbox: Any, image_size: Optional[PageRect]) -> Dict[str, float]:
    if not isinstance(raw_bbox, dict):
        raise ValueError(f"missing bbox: {raw_bbox!r}")
    if all(key in raw_bbox for key in BBOX_KEYS):
        return normalize_bbox_data(raw_bbox)
    if image_size is not None and all(key in raw_bbox for key in ("x", "y", "width", "height")):
        return normalize_bbox_data(to_normalized(raw_bbox, image_size))
    raise ValueError(f"unsupported bbox shape: {raw_bbox!r}")


def parse_analysis_payload(payload: Any, placeholder_label: str = ANALYSIS_PLACEHOLDER_LABEL) -> List[Dict[str, Any]]:
    """Turn an analysis batch into partial annotation records.

    Missing optional fields fall back to documented defaults: ``label`` to the
    placeholder, ``confidence`` to absent, ``fields`` to empty.
    """
    image_size = _image_size_from_payload(payload)
    partials: List[Dict[str, Any]] = []
    for idx, item in enumerate(_items_from_payload(payload)):
        if not isinstance(item, dict):
            continue
        try:
            bbox = _item_bbox(item.get("bbox"), image_size)
        except ValueError as exc:
            logger.warning("skipping analysis item %d: %s", idx, exc)
            continue

        class_name = item.get("class")
        label = item.get("label") or class_name or placeholder_label
        category = item.get("category")
        if category in (None, "") and isinstance(class_name, str) and class_name.lower() in _KNOWN_CATEGORIES:
            category = class_name

        partial: Dict[str, Any] = {
            "bbox": bbox,
            "label": str(label),
            "category": normalize_category(category),
            "confidence": normalize_confidence(item.get("confidence")),
            "fields": _flatten_metadata(item.get("metadata")),
        }
        if item.get("id") not in (None, ""):
            partial["id"] = str(item["id"])
        partials.append(partial)
    return partials


def load_analysis_file(path: Path, placeholder_label: str = ANALYSIS_PLACEHOLDER_LABEL) -> List[Dict[str, Any]]:
    source = Path(path)
    if not source.is_file():
        raise FileNotFoundError(f"Analysis source not found: {source}")
    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid analysis JSON at {source}: {exc}") from exc
    partials = parse_analysis_payload(payload, placeholder_label=placeholder_label)
    logger.info("loaded %d analysis boxes from %s", len(partials), source)
    return partials


class OneShotLoadGate:
    """Applies an asynchronously loaded batch at most once, and only while mounted.

    ``begin()`` hands out a ticket; a result delivered with a stale ticket, a
    second time, or after ``unmount()`` is discarded.
    """

    def __init__(self, store: AnnotationStore, on_applied: Optional[Callable[[List[str]], None]] = None) -> None:
        self.store = store
        self.on_applied = on_applied
        self._mounted = True
        self._ticket = 0
        self._delivered = False

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def in_flight(self) -> bool:
        return self._mounted and self._ticket > 0 and not self._delivered

    def begin(self) -> int:
        self._ticket += 1
        self._delivered = False
        return self._ticket

    def deliver(self, ticket: int, partials: List[Dict[str, Any]]) -> bool:
        if not self._mounted:
            logger.debug("discarding analysis result delivered after unmount")
            return False
        if ticket != self._ticket or self._delivered:
            logger.debug("discarding stale analysis result ticket=%s current=%s", ticket, self._ticket)
            return False
        self._delivered = True
        ids = self.store.replace_all(partials)
        if self.on_applied is not None:
            self.on_applied(ids)
        return True

    def fail(self, ticket: int) -> None:
        if ticket == self._ticket:
            self._delivered = True

    def unmount(self) -> None:
        self._mounted = False


__all__ = [
    "ANALYSIS_PLACEHOLDER_LABEL",
    "OneShotLoadGate",
    "load_analysis_file",
    "parse_analysis_payload",
]
