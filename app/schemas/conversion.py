"""Pydantic schemas for conversion requests and metadata responses."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.utils.formats import IMAGE_OUTPUT_FORMATS, normalize_format


class ImageConversionOptions(BaseModel):
    """Validated options for ``POST /v1/images/convert``."""

    model_config = ConfigDict(populate_by_name=True)

    format: str = Field(..., description="Output format code (jpg, png, webp, avif, tiff).")
    quality: int | None = Field(default=None, ge=1, le=100, description="Encoder quality 1-100.")
    width: int | None = Field(default=None, gt=0, description="Maximum output width in pixels.")
    height: int | None = Field(default=None, gt=0, description="Maximum output height in pixels.")
    background_color: str | None = Field(
        default=None,
        alias="backgroundColor",
        pattern=r"^#[0-9A-Fa-f]{6}$",
        description="Background used when flattening transparency, as #RRGGBB.",
    )

    @field_validator("format")
    @classmethod
    def _supported_format(cls, value: str) -> str:
        normalized = normalize_format(value)
        if normalized not in IMAGE_OUTPUT_FORMATS:
            raise ValueError("Invalid output format")
        return normalized


class DocumentConversionPair(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_format: str = Field(..., alias="from")
    to_format: str = Field(..., alias="to")


class FormatsResponse(BaseModel):
    """Everything a client needs to build its format pickers."""

    image_input_formats: List[str]
    image_output_formats: List[str]
    quality_formats: List[str] = Field(
        ..., description="Output formats whose encoder honours the quality option."
    )
    document_conversions: List[DocumentConversionPair]
    max_upload_bytes: int
