"""Deployment record persistence seen from the pipeline.

The pipeline only needs three operations on deployment records. They are
expressed as a Protocol so that runs can be driven against an in-memory
store in tests and against the database in production.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from deploybot.database.models.deployment import Deployment, DeploymentStatus
from deploybot.database.queries.deployment import (
    create_deployment,
    get_deployment,
    update_deployment,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


@dataclass(frozen=True)
class DeploymentRecord:
    """Detached view of a deployment record.

    Attributes:
        id: Deployment identifier.
        repository_id: Identifier of the deployed repository.
        branch: Branch name.
        commit_sha: Triggering commit.
        status: Current lifecycle status.
        build_log: Output of the build command.
        deploy_log: Output of the deploy command.
        error: Failure description, if any.
        completed_at: Time the run reached a terminal status.
    """

    id: str
    repository_id: str
    branch: str
    commit_sha: str
    status: DeploymentStatus
    build_log: str = ""
    deploy_log: str = ""
    error: str | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_model(cls, deployment: Deployment) -> DeploymentRecord:
        return cls(
            id=str(deployment.id),
            repository_id=str(deployment.repository_id),
            branch=deployment.branch,
            commit_sha=deployment.commit_sha,
            status=deployment.status,
            build_log=deployment.build_log or "",
            deploy_log=deployment.deploy_log or "",
            error=deployment.error,
            completed_at=deployment.completed_at,
        )


class DeploymentRecordStore(Protocol):
    """Storage operations the pipeline relies on."""

    async def create(self, fields: Mapping[str, Any]) -> str: ...

    async def get(self, deployment_id: str) -> DeploymentRecord | None: ...

    async def update(self, deployment_id: str, fields: Mapping[str, Any]) -> None: ...


def _parse_id(deployment_id: str) -> UUID | None:
    try:
        return UUID(str(deployment_id))
    except ValueError:
        return None


class SqlDeploymentStore:
    """DeploymentRecordStore backed by the deployments table.

    Every call runs in its own session so concurrent pipeline runs never
    share a transaction.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    async def create(self, fields: Mapping[str, Any]) -> str:
        """Insert a PENDING record and return its id."""
        values = dict(fields)
        repository_id = values.pop("repository_id")
        if not isinstance(repository_id, UUID):
            repository_id = UUID(str(repository_id))

        async with self.session_factory() as session:
            deployment = await create_deployment(session, repository_id, **values)
        return str(deployment.id)

    async def get(self, deployment_id: str) -> DeploymentRecord | None:
        uuid = _parse_id(deployment_id)
        if uuid is None:
            return None

        async with self.session_factory() as session:
            deployment = await get_deployment(session, uuid)
            if deployment is None:
                return None
            return DeploymentRecord.from_model(deployment)

    async def update(self, deployment_id: str, fields: Mapping[str, Any]) -> None:
        """Apply a partial update.

        Raises:
            ValueError: If the record does not exist or a field is not updatable.
        """
        uuid = _parse_id(deployment_id)
        if uuid is None:
            raise ValueError(f"Deployment {deployment_id} not found")

        async with self.session_factory() as session:
            await update_deployment(session, uuid, **fields)
