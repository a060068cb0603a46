"""Upload reading with size enforcement."""
from __future__ import annotations

import logging

from fastapi import UploadFile

from app.core.config import settings
from app.core.errors import ValidationAppError

logger = logging.getLogger(__name__)


def _too_large(max_bytes: int, actual: int | None = None) -> ValidationAppError:
    details = {"max_bytes": max_bytes}
    if actual is not None:
        details["actual_bytes"] = actual
    return ValidationAppError(
        code="file_too_large",
        message=f"File size must be less than {settings.app.max_upload_size_mb}MB",
        details=details,
    )


async def read_upload_file_limited(file: UploadFile | None) -> bytes:
    """Read an uploaded file in chunks enforcing the max size limit.

    Uses file.size if available (multipart headers), falls back to chunked
    reading with enforcement.

    Args:
        file: FastAPI upload file instance.

    Returns:
        File content as bytes if within the allowed size limit.

    Raises:
        ValidationAppError: If no file was sent, it is empty, or it exceeds
            the configured size limit.
    """
    if file is None:
        raise ValidationAppError(code="missing_file", message="No file provided")

    max_bytes = settings.app.max_upload_bytes

    # Check size from multipart headers if available
    file_size = getattr(file, "size", None)

    if file_size is not None and file_size > max_bytes:
        logger.warning(
            "file_validation.rejected_by_header",
            extra={"file_size": file_size, "max_bytes": max_bytes},
        )
        raise _too_large(max_bytes, file_size)

    # Chunked reading with secondary enforcement
    size = 0
    chunks: list[bytes] = []

    while True:
        chunk = await file.read(64 * 1024)
        if not chunk:
            break

        size += len(chunk)
        if size > max_bytes:
            logger.warning(
                "file_validation.rejected_by_chunked_read",
                extra={"size": size, "max_bytes": max_bytes},
            )
            raise _too_large(max_bytes)
        chunks.append(chunk)

    if size == 0:
        raise ValidationAppError(code="empty_file", message="Uploaded file is empty")

    return b"".join(chunks)
