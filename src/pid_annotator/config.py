from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from .schemas import CATEGORY_COLORS, Category

CONFIG_ENV_VAR = "PID_ANNOTATOR_CONFIG"


class ViewportConfig(BaseModel):
    max_retries: int = Field(default=8, ge=0)
    retry_interval_ms: int = Field(default=250, ge=1)
    backoff: float = 1.0

    @model_validator(mode="after")
    def _validate_backoff(self) -> "ViewportConfig":
        if self.backoff < 1.0:
            raise ValueError("viewport.backoff must be >= 1.0.")
        return self


class PixelBoxConfig(BaseModel):
    x: float = 50.0
    y: float = 50.0
    width: float = Field(default=100.0, gt=0)
    height: float = Field(default=60.0, gt=0)


class InteractionConfig(BaseModel):
    resize_margin_px: float = Field(default=8.0, ge=0)
    min_resize_side_px: float = Field(default=4.0, ge=0)
    min_draw_side_px: float = Field(default=0.0, ge=0)
    nudge_step_px: int = Field(default=1, ge=1)
    nudge_step_large_px: int = Field(default=10, ge=1)
    placeholder_box: PixelBoxConfig = Field(default_factory=PixelBoxConfig)


class FieldSpec(BaseModel):
    key: str = Field(min_length=1)
    name: str


def default_field_specs() -> List[FieldSpec]:
    return [
        FieldSpec(key="label", name="Label"),
        FieldSpec(key="category", name="Category"),
        FieldSpec(key="type", name="Type"),
        FieldSpec(key="tag_no", name="Tag No"),
        FieldSpec(key="design_specification_1", name="Design Specification 1"),
        FieldSpec(key="design_specification_2", name="Design Specification 2"),
        FieldSpec(key="design_specification_3", name="Design Specification 3"),
        FieldSpec(key="additional_specification_1", name="Additional Specification 1"),
        FieldSpec(key="additional_specification_2", name="Additional Specification 2"),
        FieldSpec(key="additional_specification_3", name="Additional Specification 3"),
    ]


class AnnotationsConfig(BaseModel):
    placeholder_label: str = "New Annotation"
    default_category: Optional[str] = Category.instrument.value
    category_colors: Dict[str, str] = Field(default_factory=lambda: dict(CATEGORY_COLORS))
    fields: List[FieldSpec] = Field(default_factory=default_field_specs)

    @model_validator(mode="after")
    def _validate_fields(self) -> "AnnotationsConfig":
        keys = [spec.key for spec in self.fields]
        if len(keys) != len(set(keys)):
            raise ValueError("annotations.fields keys must be unique.")
        if not self.placeholder_label.strip():
            raise ValueError("annotations.placeholder_label must not be empty.")
        return self


class AnalysisConfig(BaseModel):
    source_path: Optional[Path] = None
    placeholder_label: str = "Unknown"
    image_width: int = Field(default=4767, gt=0)
    image_height: int = Field(default=3367, gt=0)


class AnnotatorConfig(BaseModel):
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    interaction: InteractionConfig = Field(default_factory=InteractionConfig)
    annotations: AnnotationsConfig = Field(default_factory=AnnotationsConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)


def _read_yaml_file(path: Path) -> dict:
    import yaml

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a YAML object at top level: {path}")
    return raw


def resolve_config_path(config_path: Optional[Path | str] = None) -> Optional[Path]:
    candidate = str(config_path or os.getenv(CONFIG_ENV_VAR) or "").strip()
    if not candidate:
        return None
    return Path(candidate).expanduser().resolve()


def load_annotator_config(config_path: Optional[Path | str] = None) -> AnnotatorConfig:
    path = resolve_config_path(config_path)
    if path is None:
        return AnnotatorConfig()
    if not path.is_file():
        raise FileNotFoundError(f"Annotator config not found: {path}")
    payload = _read_yaml_file(path)
    try:
        cfg = AnnotatorConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid annotator config at {path}:\n{exc}") from exc

    if cfg.analysis.source_path is not None:
        cfg.analysis.source_path = cfg.analysis.source_path.expanduser()
    return cfg


__all__ = [
    "AnalysisConfig",
    "AnnotationsConfig",
    "AnnotatorConfig",
    "CONFIG_ENV_VAR",
    "FieldSpec",
    "InteractionConfig",
    "PixelBoxConfig",
    "ViewportConfig",
    "default_field_specs",
    "load_annotator_config",
    "resolve_config_path",
]
