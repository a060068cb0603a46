"""Format codes, MIME types and extension helpers."""

from __future__ import annotations

IMAGE_INPUT_FORMATS: tuple[str, ...] = ("jpg", "jpeg", "png", "webp", "tiff", "tif")
IMAGE_OUTPUT_FORMATS: tuple[str, ...] = ("jpg", "jpeg", "png", "webp", "avif", "tiff")

# Formats whose encoder exposes a quality knob
QUALITY_FORMATS: frozenset[str] = frozenset({"jpg", "jpeg", "png", "webp", "avif"})

IMAGE_MIME_TYPES: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "avif": "image/avif",
    "tiff": "image/tiff",
    "tif": "image/tiff",
}

DOCUMENT_MIME_TYPES: dict[str, str] = {
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "xml": "application/xml",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "csv": "text/csv",
}

# Pillow format names
PIL_FORMATS: dict[str, str] = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
    "tiff": "TIFF",
}


def normalize_format(value: str | None) -> str:
    return (value or "").strip().lower().lstrip(".")


def file_extension(filename: str | None) -> str:
    """Lower-cased extension without the dot ("" when absent)."""
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def output_extension(fmt: str) -> str:
    fmt = normalize_format(fmt)
    return "jpg" if fmt == "jpeg" else fmt


def image_mime_type(fmt: str) -> str:
    return IMAGE_MIME_TYPES.get(normalize_format(fmt), "image/jpeg")


def document_mime_type(fmt: str) -> str:
    return DOCUMENT_MIME_TYPES.get(normalize_format(fmt), "application/octet-stream")


def supports_quality(fmt: str) -> bool:
    return normalize_format(fmt) in QUALITY_FORMATS
