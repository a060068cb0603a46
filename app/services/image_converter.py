"""Raster image conversion backed by Pillow.

All work happens in memory: bytes -> PIL image -> bytes. Callers that encode
the same source several times (the target-size search) open it once with
``open_image`` and call ``encode_prepared`` per attempt.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageColor, ImageOps

from app.core.errors import ConversionAppError
from app.utils.formats import PIL_FORMATS, image_mime_type, normalize_format

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = {
    "jpg": 90,
    "jpeg": 90,
    "webp": 90,
    "avif": 80,
}

DEFAULT_BACKGROUND = "#ffffff"

_ALPHA_MODES = ("RGBA", "LA", "PA")


@dataclass(frozen=True)
class ImageOptions:
    """Encoder options for a single conversion (already validated)."""

    format: str
    quality: int | None = None
    width: int | None = None
    height: int | None = None
    background_color: str | None = None


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    format: str
    mime_type: str
    width: int
    height: int

    @property
    def size(self) -> int:
        return len(self.data)


def _conversion_failed(exc: Exception, fmt: str) -> ConversionAppError:
    logger.error(
        "image.conversion_failed",
        extra={"format": fmt, "error_type": type(exc).__name__, "error_msg": str(exc)},
    )
    return ConversionAppError(
        code="conversion_failed",
        message="Failed to convert image. Please try again.",
        details={"format": fmt},
    )


def open_image(data: bytes) -> Image.Image:
    """Decode ``data`` and apply EXIF orientation.

    Raises:
        ConversionAppError: If Pillow cannot decode the bytes.
    """
    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            return ImageOps.exif_transpose(src)
    except Exception as exc:
        raise _conversion_failed(exc, "decode") from exc


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in _ALPHA_MODES or (img.mode == "P" and "transparency" in img.info)


def _flatten(img: Image.Image, color: str) -> Image.Image:
    """Composite transparent pixels onto a solid background."""
    rgba = img.convert("RGBA")
    background = Image.new("RGBA", rgba.size, ImageColor.getrgb(color) + (255,))
    background.alpha_composite(rgba)
    return background.convert("RGB")


def _to_rgb_family(img: Image.Image) -> Image.Image:
    if _has_alpha(img):
        return img if img.mode == "RGBA" else img.convert("RGBA")
    return img if img.mode == "RGB" else img.convert("RGB")


def _resize(img: Image.Image, width: int | None, height: int | None) -> Image.Image:
    """Fit inside width x height keeping aspect ratio, never enlarging."""
    if not width and not height:
        return img
    resized = img.copy()
    resized.thumbnail((width or img.width, height or img.height), Image.Resampling.LANCZOS)
    return resized


def _png_palette(img: Image.Image, quality: int) -> Image.Image:
    # Quality maps to palette size, mirroring how lossy PNG encoders trade
    # colours for bytes.
    colors = max(2, min(256, round(256 * quality / 100)))
    return _to_rgb_family(img).quantize(colors=colors, method=Image.Quantize.FASTOCTREE)


def _save(img: Image.Image, options: ImageOptions) -> bytes:
    fmt = normalize_format(options.format)
    buffer = io.BytesIO()
    quality = options.quality

    if fmt in ("jpg", "jpeg"):
        img = _flatten(img, options.background_color or DEFAULT_BACKGROUND) if _has_alpha(img) else img
        if img.mode not in ("RGB", "L", "CMYK"):
            img = img.convert("RGB")
        img.save(buffer, format="JPEG", quality=quality or DEFAULT_QUALITY[fmt], optimize=True)
    elif fmt == "png":
        if options.background_color and _has_alpha(img):
            img = _flatten(img, options.background_color)
        if quality is not None:
            img = _png_palette(img, quality)
        elif img.mode not in ("1", "L", "LA", "P", "RGB", "RGBA"):
            img = _to_rgb_family(img)
        img.save(buffer, format="PNG", optimize=True)
    elif fmt in ("webp", "avif"):
        if options.background_color and _has_alpha(img):
            img = _flatten(img, options.background_color)
        img.save(
            buffer,
            format=PIL_FORMATS[fmt],
            quality=quality or DEFAULT_QUALITY[fmt],
        )
    elif fmt == "tiff":
        if options.background_color and _has_alpha(img):
            img = _flatten(img, options.background_color)
        img.save(buffer, format="TIFF", compression="tiff_lzw")
    else:
        raise ValueError(f"Unsupported output format: {fmt}")

    return buffer.getvalue()


def encode_prepared(img: Image.Image, options: ImageOptions) -> EncodedImage:
    """Encode an already decoded image with ``options``.

    Raises:
        ConversionAppError: If the encoder fails.
    """
    fmt = normalize_format(options.format)
    try:
        resized = _resize(img, options.width, options.height)
        if fmt in ("webp", "avif"):
            resized = _to_rgb_family(resized)
        data = _save(resized, options)
    except ConversionAppError:
        raise
    except Exception as exc:
        raise _conversion_failed(exc, fmt) from exc

    return EncodedImage(
        data=data,
        format=fmt,
        mime_type=image_mime_type(fmt),
        width=resized.width,
        height=resized.height,
    )


def convert_image(data: bytes, options: ImageOptions) -> EncodedImage:
    """Decode ``data`` and re-encode it according to ``options``."""
    img = open_image(data)
    result = encode_prepared(img, options)
    logger.info(
        "image.converted",
        extra={
            "format": result.format,
            "quality": options.quality,
            "input_bytes": len(data),
            "output_bytes": result.size,
            "width": result.width,
            "height": result.height,
        },
    )
    return result
