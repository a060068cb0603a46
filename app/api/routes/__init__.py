from __future__ import annotations

from app.api.routes.documents import router as documents_router
from app.api.routes.formats import router as formats_router
from app.api.routes.health import router as health_router
from app.api.routes.images import router as images_router

__all__ = ["documents_router", "formats_router", "health_router", "images_router"]
