"""Core data helpers for the page annotator.

This module intentionally has no Qt dependency so it can be unit tested.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from .geometry import BBOX_KEYS, BBOX_PRECISION
from .schemas import Annotation, AnnotationDocument, Category

logger = logging.getLogger("pid_annotator.store")

PLACEHOLDER_LABEL = "New Annotation"
RECORD_KEYS = ("id", "label", "category", "bbox", "fields", "confidence")


@dataclass
class AnnotationRecord:
    id: str
    bbox: Dict[str, float]
    label: str = PLACEHOLDER_LABEL
    category: Optional[str] = None
    fields: Dict[str, str] = field(default_factory=dict)
    confidence: Optional[float] = None

    def copy(self) -> "AnnotationRecord":
        return AnnotationRecord(
            id=self.id,
            bbox=dict(self.bbox),
            label=self.label,
            category=self.category,
            fields=dict(self.fields),
            confidence=self.confidence,
        )


@dataclass(frozen=True)
class StoreEvent:
    kind: str
    annotation_id: Optional[str] = None


def normalize_label(value: Any, placeholder: str = PLACEHOLDER_LABEL) -> str:
    text = "" if value is None else str(value).strip()
    return text or placeholder


def normalize_category(value: Any) -> Optional[str]:
    if value in ("", None):
        return None
    text = str(value).strip()
    for category in Category:
        if text.lower() == category.value.lower():
            return category.value
    return text or None


def normalize_fields(data: Optional[Dict[str, Any]]) -> Dict[str, str]:
    if not isinstance(data, dict):
        return {}
    fields: Dict[str, str] = {}
    for key, value in data.items():
        if value is None:
            continue
        key_text = str(key).strip()
        if not key_text:
            continue
        fields[key_text] = value if isinstance(value, str) else str(value)
    return fields


def normalize_confidence(value: Any) -> Optional[float]:
    if value in ("", None):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_bbox_data(data: Optional[Dict[str, Any]]) -> Dict[str, float]:
    """Coerce a normalized bbox, clipping to the page and rejecting zero area."""
    raw = data or {}
    try:
        values = {key: float(raw[key]) for key in BBOX_KEYS}
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"bbox requires numeric {', '.join(BBOX_KEYS)}: {data!r}") from exc

    left = max(0.0, values["x_center"] - values["width"] / 2)
    top = max(0.0, values["y_center"] - values["height"] / 2)
    right = min(1.0, values["x_center"] + values["width"] / 2)
    bottom = min(1.0, values["y_center"] + values["height"] / 2)
    width = right - left
    height = bottom - top
    if width <= 0 or height <= 0:
        raise ValueError(f"bbox has zero area: {data!r}")
    return {
        "x_center": round(left + width / 2, BBOX_PRECISION),
        "y_center": round(top + height / 2, BBOX_PRECISION),
        "width": round(width, BBOX_PRECISION),
        "height": round(height, BBOX_PRECISION),
    }


def record_to_dict(record: AnnotationRecord) -> Dict[str, Any]:
    model = Annotation(
        id=record.id,
        label=record.label,
        category=record.category,
        bbox=record.bbox,
        fields=record.fields,
        confidence=record.confidence,
    )
    return model.model_dump(mode="json")


Listener = Callable[[StoreEvent], None]


class AnnotationStore:
    """Ordered annotation records held in normalized coordinates.

    Insertion order is display order; the last record is drawn on top.
    Listeners are called after a mutation has been fully applied.
    """

    def __init__(self, placeholder_label: str = PLACEHOLDER_LABEL) -> None:
        self.placeholder_label = placeholder_label
        self._records: List[AnnotationRecord] = []
        self._selected_id: Optional[str] = None
        self._issued_ids: set[str] = set()
        self._next_seq = 1
        self._listeners: List[Listener] = []

    # -- queries ---------------------------------------------------------

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[AnnotationRecord]:
        return iter(self.records())

    def __contains__(self, annotation_id: object) -> bool:
        return self._index_of(annotation_id) >= 0

    def records(self) -> List[AnnotationRecord]:
        return [record.copy() for record in self._records]

    def get(self, annotation_id: Optional[str]) -> Optional[AnnotationRecord]:
        idx = self._index_of(annotation_id)
        if idx < 0:
            return None
        return self._records[idx].copy()

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    def selected(self) -> Optional[AnnotationRecord]:
        return self.get(self._selected_id)

    def ids(self) -> List[str]:
        return [record.id for record in self._records]

    # -- subscriptions ---------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, kind: str, annotation_id: Optional[str] = None) -> None:
        event = StoreEvent(kind=kind, annotation_id=annotation_id)
        for listener in list(self._listeners):
            listener(event)

    # -- mutations -------------------------------------------------------

    def add(self, partial: Optional[Dict[str, Any]] = None) -> str:
        record = self._build_record(partial or {})
        self._records.append(record)
        self._issued_ids.add(record.id)
        logger.debug("added annotation id=%s label=%s", record.id, record.label)
        self._emit("added", record.id)
        return record.id

    def update(self, annotation_id: Optional[str], patch: Dict[str, Any]) -> bool:
        idx = self._index_of(annotation_id)
        if idx < 0:
            logger.debug("update ignored, unknown annotation id=%s", annotation_id)
            return False
        current = self._records[idx]
        updated = current.copy()

        if "bbox" in patch:
            try:
                updated.bbox = normalize_bbox_data(patch["bbox"])
            except ValueError as exc:
                logger.debug("update ignored for id=%s: %s", annotation_id, exc)
                return False
        if "label" in patch:
            updated.label = normalize_label(patch["label"], self.placeholder_label)
        if "category" in patch:
            updated.category = normalize_category(patch["category"])
        if "confidence" in patch:
            updated.confidence = normalize_confidence(patch["confidence"])
        if "fields" in patch:
            updated.fields = {**current.fields, **normalize_fields(patch["fields"])}

        if updated == current:
            return True
        self._records[idx] = updated
        self._emit("updated", updated.id)
        return True

    def remove(self, annotation_id: Optional[str]) -> bool:
        idx = self._index_of(annotation_id)
        if idx < 0:
            logger.debug("remove ignored, unknown annotation id=%s", annotation_id)
            return False
        removed = self._records.pop(idx)
        if self._selected_id == removed.id:
            self._selected_id = None
        self._emit("removed", removed.id)
        return True

    def select(self, annotation_id: Optional[str]) -> bool:
        if annotation_id is not None and self._index_of(annotation_id) < 0:
            logger.debug("select ignored, unknown annotation id=%s", annotation_id)
            return False
        if annotation_id == self._selected_id:
            return True
        self._selected_id = annotation_id
        self._emit("selected", annotation_id)
        return True

    def replace_all(self, partials: Iterable[Dict[str, Any]]) -> List[str]:
        """Swap the whole collection; invalid entries are skipped."""
        new_records: List[AnnotationRecord] = []
        claimed: set[str] = set()
        for partial in partials:
            try:
                record = self._build_record(partial, extra_taken=claimed)
            except ValueError as exc:
                logger.warning("skipping annotation during load: %s", exc)
                continue
            claimed.add(record.id)
            self._issued_ids.add(record.id)
            new_records.append(record)
        self._records = new_records
        self._selected_id = None
        self._emit("reset")
        return [record.id for record in new_records]

    # -- persistence -----------------------------------------------------

    def to_payload(self) -> List[Dict[str, Any]]:
        return build_annotations_payload(self._records)

    def load_payload(self, payload: Any) -> List[str]:
        return self.replace_all(parse_annotations_payload(payload))

    @classmethod
    def from_payload(cls, payload: Any, placeholder_label: str = PLACEHOLDER_LABEL) -> "AnnotationStore":
        store = cls(placeholder_label=placeholder_label)
        store.load_payload(payload)
        return store

    # -- internals -------------------------------------------------------

    def _index_of(self, annotation_id: object) -> int:
        if annotation_id is None:
            return -1
        key = str(annotation_id)
        for idx, record in enumerate(self._records):
            if record.id == key:
                return idx
        return -1

    def _new_id(self, taken: set[str]) -> str:
        while True:
            candidate = f"ann-{self._next_seq}"
            self._next_seq += 1
            if candidate not in self._issued_ids and candidate not in taken:
                return candidate

    def _build_record(self, partial: Dict[str, Any], extra_taken: Optional[set[str]] = None) -> AnnotationRecord:
        taken = set(extra_taken or ())
        bbox = normalize_bbox_data(partial.get("bbox"))
        raw_id = partial.get("id")
        requested = str(raw_id).strip() if raw_id not in (None, "") else ""
        if requested and requested not in self._issued_ids and requested not in taken:
            annotation_id = requested
        else:
            annotation_id = self._new_id(taken)
        return AnnotationRecord(
            id=annotation_id,
            bbox=bbox,
            label=normalize_label(partial.get("label"), self.placeholder_label),
            category=normalize_category(partial.get("category")),
            fields=normalize_fields(partial.get("fields")),
            confidence=normalize_confidence(partial.get("confidence")),
        )


def parse_annotations_payload(payload: Any) -> List[Dict[str, Any]]:
    """Accept a flat list of records or an object with an ``annotations`` list."""
    if isinstance(payload, dict):
        payload = payload.get("annotations", [])
    if not isinstance(payload, list):
        raise ValueError("Annotations payload must be a list of records.")
    partials: List[Dict[str, Any]] = []
    for raw in payload:
        if not isinstance(raw, dict):
            continue
        partials.append({key: raw.get(key) for key in RECORD_KEYS if key in raw})
    return partials


def build_annotations_payload(records: Sequence[AnnotationRecord]) -> List[Dict[str, Any]]:
    return [record_to_dict(record) for record in records]


def serialize_annotations_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def load_annotations_file(path: Path, placeholder_label: str = PLACEHOLDER_LABEL) -> AnnotationStore:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid annotations JSON at {path}: {exc}") from exc
    return AnnotationStore.from_payload(payload, placeholder_label=placeholder_label)


def save_annotations_file(path: Path, store: AnnotationStore) -> Path:
    target = Path(path)
    payload = store.to_payload()
    try:
        AnnotationDocument.model_validate({"annotations": payload})
    except ValidationError as exc:
        raise ValueError(f"Refusing to save invalid annotations:\n{exc}") from exc
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(serialize_annotations_json(payload), encoding="utf-8")
    logger.info("saved %d annotations to %s", len(payload), target)
    return target


__all__ = [
    "AnnotationRecord",
    "AnnotationStore",
    "PLACEHOLDER_LABEL",
    "StoreEvent",
    "build_annotations_payload",
    "load_annotations_file",
    "normalize_bbox_data",
    "normalize_category",
    "normalize_confidence",
    "normalize_fields",
    "normalize_label",
    "parse_annotations_payload",
    "record_to_dict",
    "save_annotations_file",
    "serialize_annotations_json",
    "ValidationError",
]
