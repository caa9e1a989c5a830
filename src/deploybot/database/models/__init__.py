"""SQLAlchemy ORM models for Deploybot."""

from deploybot.database.models.base import Base, TimestampMixin, utc_now
from deploybot.database.models.deployment import Deployment, DeploymentStatus
from deploybot.database.models.repository import (
    BranchConfig,
    BranchConfigList,
    GitProvider,
    Repository,
    validate_branch_configs,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "utc_now",
    "Repository",
    "GitProvider",
    "BranchConfig",
    "BranchConfigList",
    "validate_branch_configs",
    "Deployment",
    "DeploymentStatus",
]
