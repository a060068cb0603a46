from __future__ import annotations

import functools

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from pydantic import ValidationError

from app.adapters.rate_limit.base import RateLimitResult
from app.core.config import settings
from app.core.errors import ValidationAppError
from app.core.file_validation import read_upload_file_limited
from app.core.rate_limit import enforce_rate_limit, rate_limit_headers
from app.schemas.conversion import ImageConversionOptions
from app.services.image_converter import ImageOptions, convert_image
from app.services.image_reducer import reduce_image
from app.services.runner import run_blocking
from app.services.size_search import CancellationToken, SizeSearchPolicy, parse_target_size
from app.utils.file_validators import validate_file_signature
from app.utils.formats import IMAGE_INPUT_FORMATS, file_extension, output_extension

router = APIRouter(tags=["Images"])


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


def _parse_options(**fields: str | None) -> ImageConversionOptions:
    """Build options from raw form strings, reporting problems as 400s."""
    try:
        return ImageConversionOptions(**{k: _blank_to_none(v) for k, v in fields.items()})
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "request"
        message = "Invalid output format" if field == "format" else f"Invalid value for {field}"
        raise ValidationAppError(
            code="invalid_conversion_options",
            message=message,
            details={"hint": first.get("msg", "")},
        ) from None


async def _read_image_upload(file: UploadFile | None) -> bytes:
    """Read an uploaded image, checking its declared type and magic bytes."""
    data = await read_upload_file_limited(file)

    content_type = (file.content_type or "").lower()
    if not content_type.startswith("image/"):
        raise ValidationAppError(code="invalid_file_type", message="File must be an image")

    ext = file_extension(file.filename)
    if ext not in IMAGE_INPUT_FORMATS:
        raise ValidationAppError(
            code="unsupported_image_format",
            message="Unsupported image format",
            details={"format": ext, "supported": list(IMAGE_INPUT_FORMATS)},
        )

    if not validate_file_signature(data, ext):
        raise ValidationAppError(
            code="invalid_file_signature",
            message=f"File content does not match the .{ext} extension",
            details={"format": ext},
        )
    return data


def _stem(filename: str | None) -> str:
    name = (filename or "image").rsplit("/", 1)[-1]
    return name.rsplit(".", 1)[0] if "." in name else name


def _attachment(filename: str) -> str:
    return f'attachment; filename="{filename}"'


def _success_headers(rate_limit: RateLimitResult | None) -> dict[str, str]:
    if rate_limit is None or not settings.rate_limit.include_headers:
        return {}
    return rate_limit_headers(rate_limit)


@router.post("/images/convert", response_class=Response)
async def convert_image_endpoint(
    file: UploadFile | None = File(None, description="Source image (JPG, PNG, WEBP, TIFF)"),
    format: str | None = Form(None, description="Output format: jpg, png, webp, avif or tiff"),
    quality: str | None = Form(None, description="Encoder quality 1-100"),
    width: str | None = Form(None, description="Maximum output width in pixels"),
    height: str | None = Form(None, description="Maximum output height in pixels"),
    background_color: str | None = Form(
        None, alias="backgroundColor", description="Flatten colour, #RRGGBB"
    ),
    rate_limit: RateLimitResult | None = Depends(enforce_rate_limit),
) -> Response:
    """Convert an image to another format.

    Returns the encoded bytes as an attachment named ``converted.<ext>``.
    """
    data = await _read_image_upload(file)

    if _blank_to_none(format) is None:
        raise ValidationAppError(code="missing_format", message="Output format is required")

    parsed = _parse_options(
        format=format,
        quality=quality,
        width=width,
        height=height,
        backgroundColor=background_color,
    )
    options = ImageOptions(**parsed.model_dump())

    result = await run_blocking(convert_image, data, options, operation="image.convert")

    headers = _success_headers(rate_limit)
    headers["Content-Disposition"] = _attachment(f"converted.{output_extension(result.format)}")
    return Response(content=result.data, media_type=result.mime_type, headers=headers)


@router.post("/images/reduce", response_class=Response)
async def reduce_image_endpoint(
    file: UploadFile | None = File(None, description="Source image to shrink"),
    target_size: str | None = Form(None, description="Desired size, e.g. 200"),
    target_unit: str | None = Form("MB", description="KB or MB (default MB)"),
    rate_limit: RateLimitResult | None = Depends(enforce_rate_limit),
) -> Response:
    """Re-encode an image so it lands close to a target file size.

    The search is best effort: ``X-Size-Within-Tolerance`` tells whether the
    result is inside the tolerance band around the target.
    """
    data = await _read_image_upload(file)
    target_bytes = parse_target_size(target_size, target_unit)

    token = CancellationToken()
    reduce = functools.partial(
        reduce_image,
        policy=SizeSearchPolicy.from_settings(settings.size_search),
        cancel_token=token,
    )
    reduced = await run_blocking(
        reduce, data, file.filename, target_bytes, operation="image.reduce", cancel_token=token
    )
    result = reduced.result

    headers = _success_headers(rate_limit)
    headers.update(
        {
            "Content-Disposition": _attachment(
                f"reduced-{_stem(file.filename)}.{output_extension(reduced.format)}"
            ),
            "X-Size-Search-Attempts": str(result.attempts),
            "X-Size-Within-Tolerance": str(result.within_tolerance).lower(),
            "X-Target-Bytes": str(target_bytes),
        }
    )
    if result.quality is not None:
        headers["X-Size-Search-Quality"] = str(result.quality)
    return Response(content=reduced.data, media_type=reduced.mime_type, headers=headers)
