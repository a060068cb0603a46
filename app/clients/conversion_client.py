"""Synchronous httpx client for the conversion API.

Besides one-shot conversions, the client can run the target-size search
locally against the remote ``/v1/images/convert`` endpoint. Every search
attempt is then a real HTTP request and consumes one unit of the caller's
rate limit budget, so a search may end with a ``RateLimitAppError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from app.core.errors import AppError, ConversionAppError, RateLimitAppError, ValidationAppError
from app.services.size_search import (
    CancellationToken,
    SizeSearchPolicy,
    SizeSearchResult,
    parse_target_size,
    search_target_size,
    select_output_format,
)
from app.utils.formats import image_mime_type, supports_quality

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConvertedFile:
    data: bytes
    content_type: str
    filename: str | None
    rate_limit_remaining: int | None = None
    rate_limit_reset: int | None = None

    @property
    def size(self) -> int:
        return len(self.data)


def _filename_from_disposition(value: str | None) -> str | None:
    if not value or "filename=" not in value:
        return None
    return value.split("filename=", 1)[1].strip().strip('"') or None


def _int_header(headers: httpx.Headers, name: str) -> int | None:
    value = headers.get(name)
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


class ConversionClient:
    """Client for the conversion endpoints.

    Usable as a context manager; a client built with an external
    ``http_client`` leaves closing it to the caller.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 60.0,
        transport: httpx.BaseTransport | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Service root, e.g. ``http://localhost:8000``.
            timeout_seconds: Per-request timeout.
            transport: Optional httpx transport (``httpx.MockTransport`` in tests).
            http_client: Optional pre-built client; takes precedence over
                ``transport`` and ``timeout_seconds``.
        """
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
        )

    def __enter__(self) -> "ConversionClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ---------- transport ----------

    def _post(
        self,
        path: str,
        *,
        data: bytes,
        filename: str,
        content_type: str,
        fields: Mapping[str, Any],
    ) -> ConvertedFile:
        form = {key: str(value) for key, value in fields.items() if value is not None}
        try:
            response = self._client.post(
                path,
                files={"file": (filename, data, content_type)},
                data=form,
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "client.request_failed",
                extra={"path": path, "error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            raise ConversionAppError(
                code="service_unavailable",
                message="Conversion service could not be reached.",
            ) from exc

        if response.status_code >= 400:
            raise self._error_from_response(response)

        return ConvertedFile(
            data=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
            filename=_filename_from_disposition(response.headers.get("content-disposition")),
            rate_limit_remaining=_int_header(response.headers, "x-ratelimit-remaining"),
            rate_limit_reset=_int_header(response.headers, "x-ratelimit-reset"),
        )

    @staticmethod
    def _error_from_response(response: httpx.Response) -> AppError:
        """Map the service's error envelope back onto the AppError hierarchy."""
        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        if not isinstance(error, dict):
            error = {}

        code = error.get("code") or f"http_{response.status_code}"
        message = error.get("message") or f"Conversion service returned {response.status_code}"
        details = error.get("details") if isinstance(error.get("details"), dict) else {}

        if response.status_code == 429:
            retry_after = _int_header(response.headers, "retry-after")
            if retry_after is not None:
                details.setdefault("retry_after", retry_after)
            return RateLimitAppError(code=code, message=message, details=details)
        if 400 <= response.status_code < 500:
            return ValidationAppError(code=code, message=message, details=details or None)
        return ConversionAppError(code=code, message=message, details=details or None)

    # ---------- operations ----------

    def convert_image(
        self,
        data: bytes,
        filename: str,
        output_format: str,
        *,
        quality: int | None = None,
        width: int | None = None,
        height: int | None = None,
        background_color: str | None = None,
        content_type: str | None = None,
    ) -> ConvertedFile:
        """Convert an image remotely.

        Raises:
            ValidationAppError: The service rejected the input (4xx).
            RateLimitAppError: The caller's budget is exhausted (429).
            ConversionAppError: The service failed or could not be reached.
        """
        return self._post(
            "/v1/images/convert",
            data=data,
            filename=filename,
            content_type=content_type or image_mime_type(filename.rsplit(".", 1)[-1]),
            fields={
                "format": output_format,
                "quality": quality,
                "width": width,
                "height": height,
                "backgroundColor": background_color,
            },
        )

    def convert_document(
        self,
        data: bytes,
        filename: str,
        from_format: str,
        to_format: str,
    ) -> ConvertedFile:
        return self._post(
            "/v1/documents/convert",
            data=data,
            filename=filename,
            content_type="application/octet-stream",
            fields={"from": from_format, "to": to_format},
        )

    def reduce_to_target_size(
        self,
        data: bytes,
        filename: str,
        target_size: float | str,
        unit: str = "MB",
        *,
        policy: SizeSearchPolicy | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> SizeSearchResult:
        """Shrink an image towards ``target_size`` using remote encodes.

        The output format follows the source (PNG and WEBP are kept, anything
        else becomes JPEG). The result is best effort; check
        ``within_tolerance`` on the returned value.

        Raises:
            ValidationAppError: Invalid target, or target not below the file size.
            RateLimitAppError: The budget ran out mid-search; progress is lost.
            SearchCancelledAppError: ``cancel_token`` was cancelled.
        """
        target_bytes = parse_target_size(target_size, unit)
        output_format = select_output_format(filename)

        def encode(quality: int | None) -> bytes:
            return self.convert_image(data, filename, output_format, quality=quality).data

        return search_target_size(
            encode,
            target_bytes=target_bytes,
            original_bytes=len(data),
            policy=policy,
            supports_quality=supports_quality(output_format),
            cancel_token=cancel_token,
        )
