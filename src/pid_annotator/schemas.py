from __future__ import annotations
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class Category(str, Enum):
    instrument = "Instrument"
    valve = "Valve"
    equipment = "Equipment"
    pipe = "Pipe"


CATEGORY_COLORS: Dict[str, str] = {
    Category.instrument.value: "#1976d2",
    Category.valve.value: "#e53935",
    Category.equipment.value: "#43a047",
    Category.pipe.value: "#fbc02d",
}
NEUTRAL_COLOR = "#607d8b"


class NormalizedBBox(BaseModel):
    x_center: float = Field(ge=0.0, le=1.0)
    y_center: float = Field(ge=0.0, le=1.0)
    width: float = Field(gt=0.0, le=1.0)
    height: float = Field(gt=0.0, le=1.0)
    model_config = ConfigDict(extra="forbid")


class Annotation(BaseModel):
    id: str = Field(min_length=1)
    label: str
    category: Optional[str] = None
    bbox: NormalizedBBox
    fields: Dict[str, str] = Field(default_factory=dict)
    confidence: Optional[float] = None
    model_config = ConfigDict(extra="forbid")


class AnnotationDocument(BaseModel):
    annotations: List[Annotation] = Field(default_factory=list)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _validate_unique_ids(self) -> "AnnotationDocument":
        ids = [annotation.id for annotation in self.annotations]
        if len(ids) != len(set(ids)):
            raise ValueError("annotation ids must be unique.")
        return self
