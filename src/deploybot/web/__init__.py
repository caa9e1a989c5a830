"""Web interface for Deploybot.

This module provides the FastAPI application receiving Git provider
webhooks, together with health endpoints for orchestrators and load balancers.
"""

from __future__ import annotations

from deploybot.web.app import create_app
from deploybot.web.middleware import RequestLoggingMiddleware
from deploybot.web.payloads import (
    WebhookPayloadError,
    parse_pull_request_payload,
    parse_push_payload,
)

__all__ = [
    "create_app",
    "RequestLoggingMiddleware",
    "WebhookPayloadError",
    "parse_push_payload",
    "parse_pull_request_payload",
]
