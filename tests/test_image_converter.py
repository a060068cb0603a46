"""Tests for the Pillow-backed image conversion service."""

import io

import pytest
from PIL import Image, features

from app.core.errors import ConversionAppError
from app.services.image_converter import ImageOptions, convert_image, encode_prepared, open_image

from conftest import make_image_bytes


def _decode(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


class TestConvertImage:
    def test_png_to_jpeg(self, png_bytes: bytes):
        result = convert_image(png_bytes, ImageOptions(format="jpg"))

        assert result.data.startswith(b"\xff\xd8\xff")
        assert result.mime_type == "image/jpeg"
        assert result.format == "jpg"
        assert (result.width, result.height) == (64, 48)

    def test_jpeg_alias(self, png_bytes: bytes):
        result = convert_image(png_bytes, ImageOptions(format="JPEG"))

        assert result.format == "jpeg"
        assert result.mime_type == "image/jpeg"

    def test_png_to_webp(self, png_bytes: bytes):
        result = convert_image(png_bytes, ImageOptions(format="webp", quality=70))

        assert result.data[:4] == b"RIFF"
        assert result.data[8:12] == b"WEBP"
        assert result.mime_type == "image/webp"

    def test_png_to_tiff(self, png_bytes: bytes):
        result = convert_image(png_bytes, ImageOptions(format="tiff"))

        assert result.data[:4] in (b"II*\x00", b"MM\x00*")
        assert _decode(result.data).size == (64, 48)

    @pytest.mark.skipif(not features.check("avif"), reason="Pillow built without AVIF")
    def test_png_to_avif(self, png_bytes: bytes):
        result = convert_image(png_bytes, ImageOptions(format="avif", quality=60))

        assert result.mime_type == "image/avif"
        assert b"ftyp" in result.data[:16]

    def test_transparency_is_flattened_onto_background_for_jpeg(self):
        transparent = make_image_bytes("PNG", mode="RGBA", color=(0, 0, 0, 0))

        result = convert_image(transparent, ImageOptions(format="jpg", background_color="#00ff00"))

        r, g, b = _decode(result.data).convert("RGB").getpixel((10, 10))
        assert g > 240 and r < 20 and b < 20

    def test_transparency_defaults_to_white_for_jpeg(self):
        transparent = make_image_bytes("PNG", mode="RGBA", color=(0, 0, 0, 0))

        result = convert_image(transparent, ImageOptions(format="jpg"))

        assert min(_decode(result.data).convert("RGB").getpixel((10, 10))) > 240

    def test_png_keeps_alpha_without_background(self):
        transparent = make_image_bytes("PNG", mode="RGBA", color=(0, 0, 0, 0))

        result = convert_image(transparent, ImageOptions(format="png"))

        assert _decode(result.data).mode == "RGBA"

    def test_png_quality_quantizes_to_palette(self, noise_png_bytes: bytes):
        lossless = convert_image(noise_png_bytes, ImageOptions(format="png"))
        quantized = convert_image(noise_png_bytes, ImageOptions(format="png", quality=10))

        assert _decode(quantized.data).mode == "P"
        assert quantized.size < lossless.size

    def test_jpeg_quality_changes_size(self, noise_png_bytes: bytes):
        low = convert_image(noise_png_bytes, ImageOptions(format="jpg", quality=10))
        high = convert_image(noise_png_bytes, ImageOptions(format="jpg", quality=95))

        assert low.size < high.size


class TestResize:
    def test_width_only_keeps_aspect_ratio(self, png_bytes: bytes):
        result = convert_image(png_bytes, ImageOptions(format="png", width=32))

        assert (result.width, result.height) == (32, 24)

    def test_fits_inside_box(self, png_bytes: bytes):
        result = convert_image(png_bytes, ImageOptions(format="png", width=32, height=10))

        assert result.width <= 32
        assert result.height <= 10

    def test_never_enlarges(self, png_bytes: bytes):
        result = convert_image(png_bytes, ImageOptions(format="png", width=640, height=480))

        assert (result.width, result.height) == (64, 48)


class TestFailures:
    def test_garbage_input_raises_conversion_error(self):
        with pytest.raises(ConversionAppError) as excinfo:
            convert_image(b"\x89PNG\r\n\x1a\n" + b"garbage" * 10, ImageOptions(format="jpg"))

        assert excinfo.value.code == "conversion_failed"
        assert excinfo.value.message == "Failed to convert image. Please try again."

    def test_unknown_output_format_raises_conversion_error(self, png_bytes: bytes):
        img = open_image(png_bytes)

        with pytest.raises(ConversionAppError):
            encode_prepared(img, ImageOptions(format="bmp"))
