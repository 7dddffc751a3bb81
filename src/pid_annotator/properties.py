"""Form state for the descriptive fields of the selected annotation."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from .annotation_core import AnnotationRecord, AnnotationStore, StoreEvent
from .config import FieldSpec, default_field_specs

logger = logging.getLogger("pid_annotator.properties")


def form_from_record(record: Optional[AnnotationRecord], specs: Sequence[FieldSpec]) -> Dict[str, str]:
    form: Dict[str, str] = {}
    for spec in specs:
        if record is None:
            form[spec.key] = ""
        elif spec.key == "label":
            form[spec.key] = record.label
        elif spec.key == "category":
            form[spec.key] = record.category or ""
        else:
            form[spec.key] = record.fields.get(spec.key, "")
    return form


def patch_from_form(form: Dict[str, Any], existing_fields: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Split a flat form into the store's ``label``/``category``/``fields`` patch.

    Blank values are only written for keys already present in ``existing_fields``.
    """
    existing = existing_fields or {}
    patch: Dict[str, Any] = {}
    extra: Dict[str, str] = {}
    for key, value in form.items():
        text = "" if value is None else str(value).strip()
        if key == "label":
            patch["label"] = text
        elif key == "category":
            patch["category"] = text or None
        elif text or key in existing:
            extra[key] = text
    if extra:
        patch["fields"] = extra
    return patch


class PropertiesEditor:
    def __init__(
        self,
        store: AnnotationStore,
        field_specs: Optional[Sequence[FieldSpec]] = None,
        on_changed: Optional[Callable[[], None]] = None,
    ) -> None:
        self.store = store
        self.field_specs: List[FieldSpec] = list(field_specs or default_field_specs())
        self.on_changed = on_changed
        self._form: Dict[str, str] = form_from_record(None, self.field_specs)
        self._loaded_id: Optional[str] = None
        self._unsubscribe = store.subscribe(self._on_store_event)
        self._load()

    @property
    def is_open(self) -> bool:
        return self.store.selected_id is not None

    @property
    def annotation_id(self) -> Optional[str]:
        return self._loaded_id

    @property
    def form(self) -> Dict[str, str]:
        return dict(self._form)

    def reload(self) -> None:
        self._load()
        if self.on_changed is not None:
            self.on_changed()

    def set_field(self, key: str, value: str) -> None:
        if self._loaded_id is None:
            return
        self._form[key] = value

    def on_save(self, patch: Optional[Dict[str, Any]] = None) -> bool:
        selected_id = self.store.selected_id
        if selected_id is None:
            return False
        record = self.store.get(selected_id)
        existing = record.fields if record is not None else {}
        store_patch = patch_from_form(self._form if patch is None else patch, existing)
        saved = self.store.update(selected_id, store_patch)
        if not saved:
            logger.info("save skipped, annotation %s no longer exists", selected_id)
        self.store.select(None)
        return saved

    def on_delete(self, annotation_id: Optional[str] = None) -> bool:
        target = annotation_id if annotation_id is not None else self.store.selected_id
        removed = self.store.remove(target)
        self.store.select(None)
        return removed

    def close(self) -> None:
        self._unsubscribe()

    def _load(self) -> None:
        record = self.store.selected()
        self._loaded_id = record.id if record is not None else None
        self._form = form_from_record(record, self.field_specs)

    def _on_store_event(self, event: StoreEvent) -> None:
        if event.kind in ("selected", "removed", "reset"):
            self.reload()


__all__ = ["PropertiesEditor", "form_from_record", "patch_from_form"]
