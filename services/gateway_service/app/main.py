"""FastAPI application entrypoint for the Paylive gateway service.

The storefront calls these routes directly: Boxtal parcel points, business
registry checks, the admin prospecting email and seller questionnaires.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from libs.common.config import get_settings
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    settings = get_settings()
    app = FastAPI(
        title="Paylive Gateway Service",
        version="0.1.0",
        description="API gateway for the Paylive storefront.",
    )

    # Add rate limiter state to app
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=settings.CORS_ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # Add observability (structured logging + request tracing)
    add_observability_middleware(app)

    # Add global exception handlers for consistent error responses
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Simple readiness endpoint."""
        return {"status": "ok"}

    from services.gateway_service.app.routers.admin import router as admin_router
    from services.gateway_service.app.routers.boxtal import router as boxtal_router
    from services.gateway_service.app.routers.forms import router as forms_router
    from services.gateway_service.app.routers.registry import (
        insee_router,
        router as registry_router,
    )

    app.include_router(boxtal_router, prefix="/api/boxtal")
    app.include_router(insee_router, prefix="/api/insee")
    app.include_router(registry_router, prefix="/api/insee-bce")
    app.include_router(admin_router, prefix="/api/admin")
    app.include_router(forms_router, prefix="/api/forms")

    return app


app = create_app()
