"""File validation utilities for content security.

Validates file signatures (magic numbers) to prevent MIME type spoofing,
and checks ZIP container safety for Office Open XML documents.
"""

from __future__ import annotations

import logging
import zipfile
from io import BytesIO

logger = logging.getLogger(__name__)

# Magic number signatures for binary formats we accept. Text formats
# (txt, csv, xml) have no signature and are decoded instead.
SIGNATURES: dict[str, list[bytes]] = {
    "pdf": [b"%PDF-"],
    "docx": [b"PK\x03\x04"],
    "xlsx": [b"PK\x03\x04"],
    # Legacy Office (OLE2 compound file) or a DOCX container renamed to .doc
    "doc": [b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", b"PK\x03\x04"],
    "xls": [b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"],
    "png": [b"\x89PNG\r\n\x1a\n"],
    "jpg": [b"\xff\xd8\xff"],
    "jpeg": [b"\xff\xd8\xff"],
    "tiff": [b"II*\x00", b"MM\x00*"],
    "tif": [b"II*\x00", b"MM\x00*"],
}

ZIP_BASED_FORMATS = frozenset({"docx", "xlsx"})


def validate_file_signature(data: bytes, expected_type: str) -> bool:
    """Validate file magic numbers to prevent MIME type spoofing.

    Args:
        data: File content as bytes.
        expected_type: Expected format code (e.g. 'pdf', 'png').

    Returns:
        True if signature matches the expected type (or the type has no
        known signature), False otherwise.
    """
    if expected_type == "webp":
        if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
            return True
    else:
        signatures = SIGNATURES.get(expected_type)
        if signatures is None:
            return True
        if any(data.startswith(sig) for sig in signatures):
            return True

    logger.warning(
        "file_signature.invalid",
        extra={
            "expected_type": expected_type,
            "actual_prefix": data[:10] if data else "EMPTY",
        },
    )
    return False


def validate_zip_safety(
    data: bytes,
    max_ratio: float = 100.0,
    max_uncompressed_mb: int = 200,
) -> None:
    """Validate ZIP-based files against zip bomb attacks.

    DOCX and XLSX files are ZIP archives. This function checks:
    1. Compression ratio (uncompressed/compressed) isn't suspiciously high
    2. Total uncompressed size isn't excessive

    Args:
        data: File content as bytes.
        max_ratio: Maximum allowed compression ratio (default: 100x).
        max_uncompressed_mb: Max uncompressed size in MB.

    Raises:
        ValueError: If file appears to be a zip bomb or is not a ZIP.
    """
    try:
        with zipfile.ZipFile(BytesIO(data)) as zf:
            compressed_size = sum(info.compress_size for info in zf.filelist)
            uncompressed_size = sum(info.file_size for info in zf.filelist)
    except zipfile.BadZipFile as exc:
        logger.warning("zip_safety.bad_zip", extra={"error": str(exc)})
        raise ValueError("Invalid ZIP file structure") from exc

    if compressed_size == 0:
        logger.warning("zip_safety.invalid_zip", extra={"reason": "zero_compressed_size"})
        raise ValueError("Invalid ZIP file: compressed size is zero")

    ratio = uncompressed_size / compressed_size
    max_bytes = max_uncompressed_mb * 1024 * 1024

    if ratio > max_ratio:
        logger.warning(
            "zip_safety.suspicious_ratio",
            extra={"ratio": ratio, "max_ratio": max_ratio},
        )
        raise ValueError(
            f"Suspicious compression ratio: {ratio:.1f}x. Maximum allowed: {max_ratio}x"
        )

    if uncompressed_size > max_bytes:
        logger.warning(
            "zip_safety.excessive_size",
            extra={
                "uncompressed_mb": uncompressed_size / (1024 * 1024),
                "max_mb": max_uncompressed_mb,
            },
        )
        raise ValueError(
            f"Uncompressed size ({uncompressed_size / (1024 * 1024):.1f}MB) "
            f"exceeds limit ({max_uncompressed_mb}MB)"
        )

    logger.debug("zip_safety.validated", extra={"ratio": ratio})
