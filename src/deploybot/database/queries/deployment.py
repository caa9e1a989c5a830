"""Deployment CRUD query functions for Deploybot.

Provides async functions for creating, reading, updating and listing
Deployment records. Status changes made by the pipeline go through
``deploybot.orchestrator.state_machine`` which calls ``update_deployment``.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deploybot.database.models.deployment import Deployment, DeploymentStatus

logger = structlog.get_logger(__name__)

# Columns the pipeline may change after creation
UPDATABLE_FIELDS = frozenset(
    {"status", "build_log", "deploy_log", "error", "completed_at"}
)


async def create_deployment(
    session: AsyncSession,
    repository_id: UUID,
    branch: str,
    commit_sha: str,
    commit_message: str = "",
    author: str = "",
) -> Deployment:
    """Create a PENDING deployment record.

    Args:
        session: Active async database session.
        repository_id: Repository being deployed.
        branch: Branch name.
        commit_sha: Triggering commit.
        commit_message: Commit message.
        author: Commit author name.

    Returns:
        The newly created Deployment instance.
    """
    deployment = Deployment(
        repository_id=repository_id,
        branch=branch,
        commit_sha=commit_sha,
        commit_message=commit_message,
        author=author,
        status=DeploymentStatus.PENDING,
    )

    async with session.begin():
        session.add(deployment)
        await session.flush()
        await session.refresh(deployment)

    logger.info(
        "deployment_created",
        deployment_id=str(deployment.id),
        repository_id=str(repository_id),
        branch=branch,
        commit_sha=commit_sha,
    )

    return deployment


async def get_deployment(
    session: AsyncSession,
    deployment_id: UUID,
) -> Deployment | None:
    """Retrieve a deployment by ID."""
    stmt = select(Deployment).where(Deployment.id == deployment_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def update_deployment(
    session: AsyncSession,
    deployment_id: UUID,
    **fields: Any,
) -> Deployment:
    """Apply a partial update to a deployment.

    Args:
        session: Active async database session.
        deployment_id: Deployment to update.
        **fields: Column values; only UPDATABLE_FIELDS are accepted.

    Returns:
        The updated Deployment.

    Raises:
        ValueError: If the deployment does not exist or a field is not updatable.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update deployment fields: {sorted(unknown)}")

    async with session.begin():
        stmt = select(Deployment).where(Deployment.id == deployment_id)
        deployment = (await session.execute(stmt)).scalar_one_or_none()
        if deployment is None:
            raise ValueError(f"Deployment {deployment_id} not found")

        for key, value in fields.items():
            setattr(deployment, key, value)
        await session.flush()

    logger.debug(
        "deployment_updated",
        deployment_id=str(deployment_id),
        fields=sorted(fields),
    )

    return deployment


async def list_deployments(
    session: AsyncSession,
    repository_id: UUID | None = None,
    branch: str | None = None,
    status_filter: DeploymentStatus | None = None,
    limit: int = 20,
) -> list[Deployment]:
    """List deployments, most recent first.

    Args:
        session: Active async database session.
        repository_id: Optional repository filter.
        branch: Optional branch filter.
        status_filter: Optional status filter.
        limit: Maximum number of records.

    Returns:
        List of Deployment instances.
    """
    stmt = select(Deployment)

    if repository_id is not None:
        stmt = stmt.where(Deployment.repository_id == repository_id)
    if branch is not None:
        stmt = stmt.where(Deployment.branch == branch)
    if status_filter is not None:
        stmt = stmt.where(Deployment.status == status_filter)

    stmt = stmt.order_by(Deployment.created_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
