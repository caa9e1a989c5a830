"""Database layer for Deploybot.

This module handles database connections and session management and
exposes the ORM models.

Public API:
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    Base: SQLAlchemy declarative base for all models.
"""

from deploybot.database.connection import get_engine, get_session_factory
from deploybot.database.models import (
    Base,
    BranchConfig,
    Deployment,
    DeploymentStatus,
    GitProvider,
    Repository,
    TimestampMixin,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "Base",
    "TimestampMixin",
    "Repository",
    "GitProvider",
    "BranchConfig",
    "Deployment",
    "DeploymentStatus",
]
