"""Request logging middleware for Deploybot.

Logs every HTTP request with its duration and a correlation ID. For webhook
deliveries the provider's delivery ID (``X-GitHub-Delivery``) is reused as
the correlation ID so a deployment's logs can be traced back to the
delivery shown in the provider's webhook settings.

Example:
    >>> from fastapi import FastAPI
    >>> from deploybot.web.middleware import RequestLoggingMiddleware
    >>>
    >>> app = FastAPI()
    >>> app.add_middleware(RequestLoggingMiddleware)
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

from deploybot.logging import get_logger, set_correlation_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response

logger = get_logger(__name__)

_CORRELATION_HEADERS = ("X-Correlation-ID", "X-GitHub-Delivery", "X-Request-ID")
_EVENT_HEADERS = ("X-GitHub-Event", "X-Gitlab-Event")


def _correlation_id(request: Request) -> str:
    for header in _CORRELATION_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return str(uuid.uuid4())


def _provider_event(request: Request) -> str | None:
    for header in _EVENT_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return None


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs HTTP requests with timing and correlation IDs.

    The correlation ID is set in the logging context for the duration of the
    request and echoed back in the ``X-Correlation-ID`` response header.
    Background deployment tasks started by the request inherit it.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = _correlation_id(request)
        log = logger.bind(method=request.method, path=request.url.path)

        set_correlation_id(correlation_id)
        started = time.perf_counter()
        log.info("request_started", provider_event=_provider_event(request))
        try:
            response = await call_next(request)
        except Exception as exc:
            log.error(
                "request_failed",
                duration_ms=_elapsed_ms(started),
                error=str(exc),
                exc_info=True,
            )
            raise
        finally:
            set_correlation_id(None)

        log.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=_elapsed_ms(started),
            correlation_id=correlation_id,
        )
        response.headers["X-Correlation-ID"] = correlation_id
        return response
