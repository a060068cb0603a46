"""Server-side image size reduction.

Runs the quality search against an in-process encoder so a caller gets the
reduced file from a single request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.services.image_converter import ImageOptions, encode_prepared, open_image
from app.services.size_search import (
    CancellationToken,
    SizeSearchPolicy,
    SizeSearchResult,
    search_target_size,
    select_output_format,
    validate_target,
)
from app.utils.formats import image_mime_type, supports_quality

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReducedImage:
    result: SizeSearchResult
    format: str
    mime_type: str

    @property
    def data(self) -> bytes:
        return self.result.data


def reduce_image(
    data: bytes,
    filename: str | None,
    target_bytes: int,
    *,
    policy: SizeSearchPolicy | None = None,
    cancel_token: CancellationToken | None = None,
) -> ReducedImage:
    """Re-encode ``data`` so its size approaches ``target_bytes``.

    Raises:
        ValidationAppError: If the target is not below the original size.
        ConversionAppError: If decoding or any encode attempt fails.
        SearchCancelledAppError: If ``cancel_token`` fires mid-search.
    """
    validate_target(target_bytes, len(data))

    fmt = select_output_format(filename)
    img = open_image(data)

    def encode(quality: int | None) -> bytes:
        return encode_prepared(img, ImageOptions(format=fmt, quality=quality)).data

    result = search_target_size(
        encode,
        target_bytes=target_bytes,
        original_bytes=len(data),
        policy=policy,
        supports_quality=supports_quality(fmt),
        cancel_token=cancel_token,
    )

    logger.info(
        "image.reduced",
        extra={
            "format": fmt,
            "input_bytes": len(data),
            "output_bytes": result.size,
            "target_bytes": target_bytes,
            "attempts": result.attempts,
            "outcome": result.outcome.value,
        },
    )
    return ReducedImage(result=result, format=fmt, mime_type=image_mime_type(fmt))
