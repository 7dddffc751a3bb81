from __future__ import annotations

from pathlib import Path

import pytest

from pid_annotator.config import CONFIG_ENV_VAR, AnnotatorConfig, load_annotator_config


def test_defaults_validate() -> None:
    cfg = AnnotatorConfig.model_validate({})

    assert cfg.viewport.max_retries == 8
    assert cfg.viewport.retry_interval_ms == 250
    assert cfg.viewport.backoff == 1.0
    assert cfg.interaction.placeholder_box.width == 100
    assert cfg.interaction.placeholder_box.height == 60
    assert cfg.annotations.placeholder_label == "New Annotation"
    assert cfg.annotations.default_category == "Instrument"
    assert cfg.annotations.category_colors["Valve"] == "#e53935"
    assert [spec.key for spec in cfg.annotations.fields][:4] == ["label", "category", "type", "tag_no"]
    assert cfg.analysis.placeholder_label == "Unknown"
    assert (cfg.analysis.image_width, cfg.analysis.image_height) == (4767, 3367)


def test_no_path_and_no_env_returns_defaults(monkeypatch) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

    assert load_annotator_config() == AnnotatorConfig()


def test_load_yaml_overrides(tmp_path: Path) -> None:
    path = tmp_path / "annotator.yaml"
    path.write_text(
        "\n".join(
            [
                "viewport:",
                "  max_retries: 3",
                "  backoff: 1.5",
                "interaction:",
                "  resize_margin_px: 4",
                "annotations:",
                "  default_category: null",
                "  fields:",
                "    - {key: label, name: Label}",
                "    - {key: line_size, name: Line Size}",
                "analysis:",
                "  source_path: ~/results.json",
            ]
        ),
        encoding="utf-8",
    )

    cfg = load_annotator_config(path)

    assert cfg.viewport.max_retries == 3
    assert cfg.viewport.backoff == 1.5
    assert cfg.interaction.resize_margin_px == 4
    assert cfg.annotations.default_category is None
    assert [spec.key for spec in cfg.annotations.fields] == ["label", "line_size"]
    assert cfg.analysis.source_path == Path("~/results.json").expanduser()


def test_config_path_from_env(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "env.yaml"
    path.write_text("viewport:\n  retry_interval_ms: 100\n", encoding="utf-8")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

    assert load_annotator_config().viewport.retry_interval_ms == 100


def test_empty_yaml_uses_defaults(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")

    assert load_annotator_config(path) == AnnotatorConfig()


def test_missing_config_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_annotator_config(tmp_path / "nope.yaml")


@pytest.mark.parametrize(
    "text",
    [
        "- just\n- a list\n",
        "viewport:\n  backoff: 0.5\n",
        "viewport:\n  max_retries: -1\n",
        "annotations:\n  fields:\n    - {key: a, name: A}\n    - {key: a, name: B}\n",
        "annotations:\n  placeholder_label: '  '\n",
    ],
)
def test_invalid_config_raises_value_error(tmp_path: Path, text: str) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text(text, encoding="utf-8")

    with pytest.raises(ValueError):
        load_annotator_config(path)
