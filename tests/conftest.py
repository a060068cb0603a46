"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It points the settings at the testing environment before anything imports
them.
"""

import io
import os
import random

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

# Small upload cap so oversize tests stay fast
os.environ.setdefault("APP_MAX_UPLOAD_SIZE_MB", "1")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_SWEEP_ENABLED", "false")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from PIL import Image

from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from app.core.app_factory import create_app


def make_image_bytes(
    fmt: str = "PNG",
    size: tuple[int, int] = (64, 48),
    mode: str = "RGB",
    color=(200, 30, 30),
) -> bytes:
    """Encode a solid-colour image with Pillow."""
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_noise_bytes(fmt: str = "PNG", size: tuple[int, int] = (256, 256), seed: int = 0) -> bytes:
    """Encode random RGB noise; its compressed size reacts strongly to quality."""
    rng = random.Random(seed)
    img = Image.frombytes("RGB", size, rng.randbytes(size[0] * size[1] * 3))
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def noise_png_bytes() -> bytes:
    return make_noise_bytes("PNG")


@pytest.fixture
def limiter() -> InMemoryFixedWindowRateLimiter:
    """Generous limiter so functional tests never trip the rate limit."""
    return InMemoryFixedWindowRateLimiter(max_requests=1000, window_ms=60000)


@pytest.fixture
def app(limiter: InMemoryFixedWindowRateLimiter) -> FastAPI:
    return create_app(rate_limiter=limiter)


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)
