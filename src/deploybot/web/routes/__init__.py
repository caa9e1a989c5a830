"""FastAPI route definitions for Deploybot.

This module contains the health endpoints and the Git provider webhook
endpoints.
"""

from __future__ import annotations

from deploybot.web.routes.health import (
    HealthResponse,
    ReadinessResponse,
    create_health_router,
)
from deploybot.web.routes.webhooks import (
    WebhookResponse,
    create_webhooks_router,
    github_signature,
)

__all__ = [
    # Health
    "HealthResponse",
    "ReadinessResponse",
    "create_health_router",
    # Webhooks
    "WebhookResponse",
    "create_webhooks_router",
    "github_signature",
]
