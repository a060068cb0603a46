from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response

from app.adapters.rate_limit.base import RateLimitResult
from app.core.config import settings
from app.core.file_validation import read_upload_file_limited
from app.core.rate_limit import enforce_rate_limit, rate_limit_headers
from app.services.document_converter import convert_document, resolve_converter
from app.services.runner import run_blocking

router = APIRouter(tags=["Documents"])


@router.post("/documents/convert", response_class=Response)
async def convert_document_endpoint(
    file: UploadFile | None = File(None, description="Source document"),
    from_format: str | None = Form(None, alias="from", description="Source format, e.g. pdf"),
    to_format: str | None = Form(None, alias="to", description="Target format, e.g. docx"),
    rate_limit: RateLimitResult | None = Depends(enforce_rate_limit),
) -> Response:
    """Convert an office document between two supported formats.

    Unsupported pairs are rejected before the upload is parsed.
    """
    data = await read_upload_file_limited(file)
    resolve_converter(from_format, to_format)

    result = await run_blocking(
        convert_document, data, from_format, to_format, operation="document.convert"
    )

    headers = {"Content-Disposition": f'attachment; filename="{result.filename}"'}
    if rate_limit is not None and settings.rate_limit.include_headers:
        headers.update(rate_limit_headers(rate_limit))
    return Response(content=result.data, media_type=result.mime_type, headers=headers)
