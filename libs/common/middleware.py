"""Request tracing for the gateway.

Every request gets an id (taken from ``X-Request-ID`` when the storefront
sends one) that is echoed on the response, attached to log records and
forwarded to upstream APIs by the gateway clients.
"""
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from libs.common.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _is_traced(request: Request) -> bool:
    # Only /api/ calls are logged; health checks and CORS preflights are skipped.
    return request.url.path.startswith("/api/") and request.method != "OPTIONS"


class RequestTracingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_context(
            request_id=request.headers.get(REQUEST_ID_HEADER),
            path=request.url.path,
            method=request.method,
        )
        traced = _is_traced(request)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                f"{request.method} {request.url.path} crashed",
                extra={"extra_fields": {"duration_ms": _elapsed_ms(started)}},
            )
            raise
        else:
            if traced:
                fields = {
                    "status_code": response.status_code,
                    "duration_ms": _elapsed_ms(started),
                    "origin": request.headers.get("origin"),
                }
                if response.status_code >= 500:
                    logger.error(f"{request.method} {request.url.path} failed", extra={"extra_fields": fields})
                elif response.status_code >= 400:
                    logger.warning(f"{request.method} {request.url.path} refused", extra={"extra_fields": fields})
                else:
                    logger.info(f"{request.method} {request.url.path}", extra={"extra_fields": fields})
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_request_context()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def add_observability_middleware(app: FastAPI) -> None:
    """Configure logging and install request tracing on ``app``."""
    configure_logging()
    app.add_middleware(RequestTracingMiddleware)
