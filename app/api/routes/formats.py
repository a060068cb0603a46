from __future__ import annotations

from fastapi import APIRouter

from app.core.config import settings
from app.schemas.conversion import DocumentConversionPair, FormatsResponse
from app.services.document_converter import supported_pairs
from app.utils.formats import IMAGE_INPUT_FORMATS, IMAGE_OUTPUT_FORMATS, QUALITY_FORMATS

router = APIRouter(tags=["Formats"])


@router.get("/formats", response_model=FormatsResponse, response_model_by_alias=True)
def list_formats() -> FormatsResponse:
    """List accepted image formats and supported document conversion pairs."""

    return FormatsResponse(
        image_input_formats=list(IMAGE_INPUT_FORMATS),
        image_output_formats=list(IMAGE_OUTPUT_FORMATS),
        quality_formats=sorted(QUALITY_FORMATS),
        document_conversions=[
            DocumentConversionPair(from_format=source, to_format=target)
            for source, target in supported_pairs()
        ],
        max_upload_bytes=settings.app.max_upload_bytes,
    )
