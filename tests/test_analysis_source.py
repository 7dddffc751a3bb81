from __future__ import annotations

import json
from pathlib import Path

import pytest

from pid_annotator.analysis_source import OneShotLoadGate, load_analysis_file, parse_analysis_payload
from pid_annotator.annotation_core import AnnotationStore


BOX = {"x_center": 0.5, "y_center": 0.5, "width": 0.2, "height": 0.1}


def test_missing_optional_fields_use_defaults() -> None:
    partials = parse_analysis_payload([{"bbox": BOX}])

    assert partials == [
        {"bbox": BOX, "label": "Unknown", "category": None, "confidence": None, "fields": {}},
    ]


def test_class_name_fills_label_and_known_category() -> None:
    partials = parse_analysis_payload(
        {"results": [{"bbox": BOX, "class": "valve", "confidence": "0.91", "id": 17}]}
    )

    assert partials[0]["label"] == "valve"
    assert partials[0]["category"] == "Valve"
    assert partials[0]["confidence"] == pytest.approx(0.91)
    assert partials[0]["id"] == "17"

    unknown = parse_analysis_payload([{"bbox": BOX, "class": "flange", "label": "F-1"}])
    assert unknown[0]["label"] == "F-1"
    assert unknown[0]["category"] is None


def test_metadata_is_flattened_into_string_fields() -> None:
    partials = parse_analysis_payload(
        [{"bbox": BOX, "metadata": {"tag_no": "PV-1", "size": {"dn": 50}, "lines": ["a", "b"], "note": None}}]
    )

    assert partials[0]["fields"] == {"tag_no": "PV-1", "size.dn": "50", "lines": '["a", "b"]'}


def test_pixel_boxes_are_normalized_against_image_size() -> None:
    payload = {
        "image_size": {"width": 4767, "height": 3367},
        "annotations": [{"bbox": {"x": 0, "y": 0, "width": 4767, "height": 3367}}],
    }

    partials = parse_analysis_payload(payload)

    assert partials[0]["bbox"] == {"x_center": 0.5, "y_center": 0.5, "width": 1.0, "height": 1.0}


def test_invalid_items_are_skipped() -> None:
    partials = parse_analysis_payload(
        [
            "junk",
            {"label": "no bbox"},
            {"bbox": {"x": 1, "y": 1, "width": 2, "height": 2}},
            {"bbox": {"x_center": 0.5, "y_center": 0.5, "width": 0, "height": 0.1}},
            {"bbox": BOX, "label": "kept"},
        ]
    )

    assert [item["label"] for item in partials] == ["kept"]


def test_payload_must_hold_a_list() -> None:
    with pytest.raises(ValueError):
        parse_analysis_payload({"boxes": {}})


def test_load_analysis_file_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_analysis_file(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("[", encoding="utf-8")
    with pytest.raises(ValueError):
        load_analysis_file(broken)

    good = tmp_path / "analysis.json"
    good.write_text(json.dumps([{"bbox": BOX}]), encoding="utf-8")
    assert load_analysis_file(good, placeholder_label="?")[0]["label"] == "?"


def test_gate_applies_result_once() -> None:
    store = AnnotationStore()
    store.add({"bbox": BOX, "label": "manual"})
    applied = []
    gate = OneShotLoadGate(store, on_applied=applied.append)

    ticket = gate.begin()
    assert gate.in_flight
    assert gate.deliver(ticket, [{"bbox": BOX, "label": "a"}, {"bbox": BOX, "label": "b"}])
    assert gate.deliver(ticket, [{"bbox": BOX, "label": "again"}]) is False

    assert [record.label for record in store.records()] == ["a", "b"]
    assert applied == [store.ids()]
    assert gate.in_flight is False


def test_gate_discards_stale_and_post_unmount_results() -> None:
    store = AnnotationStore()
    gate = OneShotLoadGate(store)

    stale = gate.begin()
    current = gate.begin()
    assert gate.deliver(stale, [{"bbox": BOX}]) is False

    gate.unmount()
    assert gate.deliver(current, [{"bbox": BOX}]) is False
    assert len(store) == 0
    assert gate.in_flight is False


def test_gate_failure_ends_the_load() -> None:
    gate = OneShotLoadGate(AnnotationStore())
    ticket = gate.begin()

    gate.fail(ticket)

    assert gate.in_flight is False
    assert gate.deliver(ticket, [{"bbox": BOX}]) is False
