from __future__ import annotations

from pid_annotator.annotation_core import AnnotationStore
from pid_annotator.config import FieldSpec
from pid_annotator.properties import PropertiesEditor, form_from_record, patch_from_form


BOX = {"x_center": 0.5, "y_center": 0.5, "width": 0.2, "height": 0.1}


def make_store() -> tuple:
    store = AnnotationStore()
    annotation_id = store.add(
        {"bbox": BOX, "label": "PV-101", "category": "Valve", "fields": {"type": "globe", "tag_no": "101"}}
    )
    return store, annotation_id


def test_editor_is_closed_until_something_is_selected() -> None:
    store, annotation_id = make_store()
    editor = PropertiesEditor(store)

    assert editor.is_open is False
    assert set(editor.form.values()) == {""}

    store.select(annotation_id)

    assert editor.is_open
    assert editor.annotation_id == annotation_id
    assert editor.form["label"] == "PV-101"
    assert editor.form["category"] == "Valve"
    assert editor.form["type"] == "globe"
    assert editor.form["design_specification_1"] == ""


def test_save_merges_fields_and_clears_selection() -> None:
    store, annotation_id = make_store()
    changes = []
    editor = PropertiesEditor(store, on_changed=lambda: changes.append(editor.is_open))
    store.select(annotation_id)

    editor.set_field("label", "  PV-102 ")
    editor.set_field("design_specification_1", "PN16")
    assert editor.on_save()

    record = store.get(annotation_id)
    assert record.label == "PV-102"
    assert record.fields["design_specification_1"] == "PN16"
    assert record.fields["type"] == "globe"
    assert record.bbox == BOX
    assert store.selected_id is None
    assert editor.is_open is False
    assert changes[-1] is False


def test_save_with_explicit_patch_and_empty_category() -> None:
    store, annotation_id = make_store()
    editor = PropertiesEditor(store)
    store.select(annotation_id)

    assert editor.on_save({"label": "", "category": "", "tag_no": "FV-9"})

    record = store.get(annotation_id)
    assert record.label == "New Annotation"
    assert record.category is None
    assert record.fields["tag_no"] == "FV-9"


def test_save_without_selection_does_nothing() -> None:
    store, _annotation_id = make_store()
    editor = PropertiesEditor(store)

    assert editor.on_save({"label": "x"}) is False
    editor.set_field("label", "ignored")
    assert editor.form["label"] == ""


def test_delete_removes_record_and_clears_selection() -> None:
    store, annotation_id = make_store()
    editor = PropertiesEditor(store)
    store.select(annotation_id)

    assert editor.on_delete()

    assert annotation_id not in store
    assert store.selected_id is None
    assert editor.is_open is False
    assert editor.on_delete(annotation_id) is False


def test_editor_follows_external_removal_and_close_unsubscribes() -> None:
    store, annotation_id = make_store()
    reloads = []
    editor = PropertiesEditor(store, on_changed=lambda: reloads.append(editor.annotation_id))
    store.select(annotation_id)

    store.remove(annotation_id)
    assert editor.annotation_id is None

    editor.close()
    count = len(reloads)
    store.select(store.add({"bbox": BOX}))
    assert len(reloads) == count


def test_custom_field_specs_and_form_helpers() -> None:
    specs = [FieldSpec(key="label", name="Label"), FieldSpec(key="line_size", name="Line Size")]
    store, annotation_id = make_store()
    store.update(annotation_id, {"fields": {"line_size": "2in"}})

    form = form_from_record(store.get(annotation_id), specs)

    assert form == {"label": "PV-101", "line_size": "2in"}
    assert patch_from_form({"label": " a ", "category": "Pipe", "x": None}) == {"label": "a", "category": "Pipe"}
    assert patch_from_form({"x": " ", "y": "1"}, {"x": "old"}) == {"fields": {"x": "", "y": "1"}}


def test_save_does_not_add_blank_attributes() -> None:
    store, annotation_id = make_store()
    editor = PropertiesEditor(store)
    store.select(annotation_id)

    editor.set_field("type", "")
    editor.set_field("design_specification_1", "PN16")
    assert editor.on_save()

    record = store.get(annotation_id)
    assert record.fields == {"type": "", "tag_no": "101", "design_specification_1": "PN16"}

    store.select(annotation_id)
    assert editor.on_save()
    assert store.get(annotation_id).fields == record.fields
