"""Canonical output fields and result normalisation."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

FieldValue = str | list[str]
AnalysisResult = dict[str, FieldValue]


class FieldShape(str, Enum):
    """Whether a field holds a single string or an ordered list of strings."""

    SCALAR = "scalar"
    LIST = "list"


class OutputFieldSpec(BaseModel):
    """Describes one extractable metadata field."""

    name: str = Field(description="Key used in model output and exports.")
    label: str = Field(description="Human-readable column heading.")
    description: str = Field(description="Default instruction sent to the model.")
    shape: FieldShape = Field(default=FieldShape.SCALAR)

    @property
    def is_list(self) -> bool:
        return self.shape == FieldShape.LIST

    def empty_value(self) -> FieldValue:
        return [] if self.is_list else ""


DEFAULT_OUTPUT_FIELDS: tuple[OutputFieldSpec, ...] = (
    OutputFieldSpec(
        name="title",
        label="Title",
        description="A concise, descriptive title for the image",
    ),
    OutputFieldSpec(
        name="tags",
        label="Tags",
        description="Relevant tags/keywords for the image, 5-10 items",
        shape=FieldShape.LIST,
    ),
    OutputFieldSpec(
        name="shortDescription",
        label="Short Description",
        description="A brief 1-2 sentence description of the image",
    ),
    OutputFieldSpec(
        name="longDescription",
        label="Long Description",
        description="A detailed 3-5 sentence description of the image",
    ),
    OutputFieldSpec(
        name="generatedPrompt",
        label="Generated Prompt",
        description=(
            "A reverse-engineered AI image generation prompt that could recreate this image"
        ),
    ),
    OutputFieldSpec(
        name="colors",
        label="Colors",
        description="Dominant colors in the image as descriptive names",
        shape=FieldShape.LIST,
    ),
    OutputFieldSpec(
        name="mood",
        label="Mood",
        description="The overall mood or atmosphere of the image",
    ),
    OutputFieldSpec(
        name="style",
        label="Style",
        description="The artistic style or genre of the image",
    ),
    OutputFieldSpec(
        name="subject",
        label="Subject",
        description="The main subject or focus of the image",
    ),
    OutputFieldSpec(
        name="dimensions",
        label="Dimensions",
        description="Description of image composition and framing",
    ),
)


def default_output_fields() -> list[OutputFieldSpec]:
    return [spec.model_copy() for spec in DEFAULT_OUTPUT_FIELDS]


def field_names(fields: Iterable[OutputFieldSpec]) -> list[str]:
    return [spec.name for spec in fields]


def _coerce_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, Sequence):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return [str(value)]


def _coerce_scalar(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Sequence):
        return ", ".join(str(item) for item in value if item is not None)
    return str(value)


def normalize_result(
    raw: Mapping[str, Any],
    fields: Sequence[OutputFieldSpec],
    active: Iterable[str],
) -> AnalysisResult:
    """Return a result with every canonical field present.

    Active fields carry the model's value coerced to the field's shape (``None``
    becomes the empty value). Inactive fields are always empty.
    """
    enabled = set(active)
    result: AnalysisResult = {}
    for spec in fields:
        value = raw.get(spec.name) if spec.name in enabled else None
        if value is None:
            result[spec.name] = spec.empty_value()
        elif spec.is_list:
            result[spec.name] = _coerce_list(value)
        else:
            result[spec.name] = _coerce_scalar(value)
    return result


def flatten_value(value: FieldValue | None, *, separator: str = "; ") -> str:
    """Render a field value as a single string."""
    if value is None:
        return ""
    if isinstance(value, list):
        return separator.join(value)
    return str(value)
