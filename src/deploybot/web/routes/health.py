"""Liveness and readiness endpoints.

``GET /health/`` answers as long as the process is up and reports how many
deployments the dispatcher is running. ``GET /health/ready`` also runs a
trivial query and reports the database as disconnected when it fails.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deploybot.logging import get_logger

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Liveness response.

    Attributes:
        status: "ok" while the process serves requests
        active_deployments: Pipeline runs scheduled or in progress
    """

    status: str
    active_deployments: int = 0


class ReadinessResponse(BaseModel):
    """Readiness response.

    Attributes:
        status: "ok" or "unhealthy"
        database: "connected" or "disconnected"
    """

    status: str
    database: str


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """Session factory installed on ``app.state`` by the lifespan."""
    return request.app.state.session_factory  # type: ignore[no-any-return]


def create_health_router() -> APIRouter:
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("/", response_model=HealthResponse)
    async def health(request: Request) -> dict[str, Any]:
        dispatcher = getattr(request.app.state, "dispatcher", None)
        active = dispatcher.active_runs if dispatcher is not None else 0
        return {"status": "ok", "active_deployments": active}

    @router.get("/ready", response_model=ReadinessResponse)
    async def readiness(
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> dict[str, Any]:
        try:
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            logger.warning(
                "readiness_check_failed",
                database="disconnected",
                error=str(exc),
            )
            return {"status": "unhealthy", "database": "disconnected"}

        logger.debug("readiness_check_passed", database="connected")
        return {"status": "ok", "database": "connected"}

    return router
