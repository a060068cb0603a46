"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- A shared ``RateLimited`` (429) response on every rate limited operation
- Binary response content for the download endpoints

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_ERROR_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "error": {
            "type": "object",
            "properties": {
                "code": {"type": "string"},
                "message": {"type": "string"},
                "request_id": {"type": "string"},
                "details": {"type": "object"},
            },
            "required": ["code", "message"],
        }
    },
}

_TAGS = [
    {"name": "Images", "description": "Image format conversion and size reduction."},
    {"name": "Documents", "description": "Office document conversion."},
    {"name": "Formats", "description": "Supported formats and conversion pairs."},
    {"name": "Health", "description": "Liveness and readiness checks."},
]

# Operations that consume rate limit budget and stream a file back
_CONVERSION_PATHS = ("/v1/images/convert", "/v1/images/reduce", "/v1/documents/convert")


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and error docs.

    - Adds tags metadata if not present
    - Registers ``components.responses.RateLimited`` and references it from
      conversion operations, together with 400/500 error bodies
    - Documents conversion responses as ``application/octet-stream``
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("schemas", {}).setdefault("ErrorResponse", _ERROR_SCHEMA)
        components.setdefault("responses", {}).setdefault(
            "RateLimited",
            {
                "description": "Too many requests in the current window.",
                "headers": {
                    "Retry-After": {"schema": {"type": "integer"}},
                    "X-RateLimit-Limit": {"schema": {"type": "integer"}},
                    "X-RateLimit-Remaining": {"schema": {"type": "integer"}},
                    "X-RateLimit-Reset": {
                        "schema": {"type": "integer"},
                        "description": "Window reset time in epoch milliseconds.",
                    },
                },
                "content": {
                    "application/json": {"schema": {"$ref": "#/components/schemas/ErrorResponse"}}
                },
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in _TAGS:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        error_body = {
            "application/json": {"schema": {"$ref": "#/components/schemas/ErrorResponse"}}
        }
        paths = schema.get("paths", {})
        for path in _CONVERSION_PATHS:
            operation = paths.get(path, {}).get("post")
            if not isinstance(operation, dict):
                continue
            responses = operation.setdefault("responses", {})
            ok = responses.setdefault("200", {"description": "Converted file"})
            ok["content"] = {
                "application/octet-stream": {"schema": {"type": "string", "format": "binary"}}
            }
            responses.setdefault("400", {"description": "Invalid input", "content": error_body})
            responses["429"] = {"$ref": "#/components/responses/RateLimited"}
            responses.setdefault(
                "500", {"description": "Conversion failed", "content": error_body}
            )

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
