"""Rate limiting for the Paylive gateway (slowapi).

Counters live in ``RATE_LIMIT_STORAGE_URI``: in memory locally, Redis once
several gateway workers share the load.
"""

from typing import Callable

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import get_settings

settings = get_settings()


def rate_limit_key(request: Request) -> str:
    """Key authenticated calls on the session user, anonymous ones on the caller IP."""
    user = getattr(request.state, "user", None)
    if user is not None:
        return f"user:{user.user_id}"

    # Vercel and Render put the browser address first
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[settings.DEFAULT_RATE_LIMIT],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    limit = exc.detail or settings.DEFAULT_RATE_LIMIT
    return JSONResponse(
        status_code=429,
        content={
            "error": f"Trop de requêtes ({limit}). Réessayez plus tard.",
            "code": "RATE_LIMIT_EXCEEDED",
        },
        headers={"Retry-After": "60"},
    )


def email_limit(func: Callable) -> Callable:
    """Limit a route that sends email; the route must take ``request: Request``."""
    return limiter.limit(settings.EMAIL_RATE_LIMIT)(func)
