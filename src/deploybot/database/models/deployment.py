"""Deployment model for Deploybot.

Defines the Deployment table and the DeploymentStatus enum. A deployment is
one pipeline run for one (repository, branch, commit) triple; its status only
moves forward through the lifecycle enforced by
``deploybot.orchestrator.state_machine``.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from deploybot.database.models.base import Base, TimestampMixin
from deploybot.database.models.repository import Repository


class DeploymentStatus(str, enum.Enum):
    """Lifecycle of a deployment.

    States:
        PENDING: Record created from a webhook, pipeline not started.
        BUILDING: Checkout and build in progress.
        DEPLOYING: Build finished, deploy command running.
        SUCCESS: Terminal, pipeline completed.
        FAILED: Terminal, a stage failed.
    """

    PENDING = "PENDING"
    BUILDING = "BUILDING"
    DEPLOYING = "DEPLOYING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentStatus.SUCCESS, DeploymentStatus.FAILED)


class Deployment(TimestampMixin, Base):
    """One execution of the deployment pipeline.

    Attributes:
        id: UUID primary key (from TimestampMixin).
        repository_id: Repository being deployed (cascade on delete).
        branch: Branch name.
        commit_sha: Commit that triggered the deployment.
        commit_message: Commit message.
        author: Commit author name.
        status: Current lifecycle status.
        build_log: Combined output of the build command.
        deploy_log: Combined output of the deploy command.
        error: Full error text of a failed run.
        completed_at: Timestamp when a terminal status was written.
    """

    __tablename__ = "deployments"

    repository_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    branch: Mapped[str] = mapped_column(Text, nullable=False)
    commit_sha: Mapped[str] = mapped_column(Text, nullable=False)
    commit_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    author: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[DeploymentStatus] = mapped_column(
        default=DeploymentStatus.PENDING,
        nullable=False,
    )
    build_log: Mapped[str | None] = mapped_column(Text, nullable=True)
    deploy_log: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    repository: Mapped[Repository] = relationship(
        Repository,
        lazy="selectin",
    )
