"""Repository CRUD query functions for Deploybot.

Provides async functions for registering repositories, managing their
branch configurations and resolving the repository targeted by a webhook.
"""

from __future__ import annotations

from urllib.parse import urlsplit
from uuid import UUID

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from deploybot.database.models.deployment import Deployment
from deploybot.database.models.repository import (
    BranchConfig,
    GitProvider,
    Repository,
    validate_branch_configs,
)

logger = structlog.get_logger(__name__)

_ALLOWED_URL_SCHEMES = {"http", "https", "ssh", "git", "file"}


class RepositoryNotFoundError(LookupError):
    """Raised when no repository matches the requested name or id."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'Repository "{name}" not found')


class DuplicateRepositoryError(ValueError):
    """Raised when an active repository with the same name already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'Repository "{name}" already exists')


def validate_git_url(git_url: str) -> str:
    """Check that ``git_url`` is an absolute URL git can clone from.

    Raises:
        ValueError: If the URL has no recognised scheme or host.
    """
    parts = urlsplit(git_url)
    if parts.scheme not in _ALLOWED_URL_SCHEMES:
        raise ValueError(f"Invalid repository URL: {git_url}")
    if parts.scheme != "file" and not parts.netloc:
        raise ValueError(f"Invalid repository URL: {git_url}")
    return git_url


async def _active_by_name(session: AsyncSession, name: str) -> Repository | None:
    stmt = select(Repository).where(
        Repository.name == name,
        Repository.is_active.is_(True),
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_repository(
    session: AsyncSession,
    name: str,
    git_url: str,
    provider: GitProvider,
    webhook_secret: str | None = None,
    branches: list[BranchConfig] | None = None,
) -> Repository:
    """Register a new monitored repository.

    Args:
        session: Active async database session.
        name: Display name, unique among active repositories.
        git_url: Clone URL.
        provider: Git hosting provider.
        webhook_secret: Optional per-repository webhook secret.
        branches: Optional initial branch configurations.

    Returns:
        The newly created Repository instance.

    Raises:
        ValueError: If the URL is invalid or two branch configurations share a name.
        DuplicateRepositoryError: If an active repository already uses the name.
    """
    validate_git_url(git_url)
    configs = validate_branch_configs(branches or [])

    async with session.begin():
        if await _active_by_name(session, name) is not None:
            raise DuplicateRepositoryError(name)

        repository = Repository(
            name=name,
            git_url=git_url,
            provider=provider,
            webhook_secret=webhook_secret,
            branches=configs,
            is_active=True,
        )
        session.add(repository)
        await session.flush()
        await session.refresh(repository)

    logger.info(
        "repository_created",
        repository_id=str(repository.id),
        name=name,
        provider=provider.value,
    )

    return repository


async def get_repository(
    session: AsyncSession,
    repository_id: UUID,
) -> Repository | None:
    """Retrieve a repository by ID."""
    stmt = select(Repository).where(Repository.id == repository_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_repository_by_name(
    session: AsyncSession,
    name: str,
) -> Repository | None:
    """Retrieve the active repository with the given display name."""
    return await _active_by_name(session, name)


async def list_repositories(
    session: AsyncSession,
    include_inactive: bool = False,
) -> list[Repository]:
    """List repositories ordered by name.

    Args:
        session: Active async database session.
        include_inactive: Include soft-deleted repositories.

    Returns:
        List of Repository instances.
    """
    stmt = select(Repository)
    if not include_inactive:
        stmt = stmt.where(Repository.is_active.is_(True))
    stmt = stmt.order_by(Repository.name.asc(), Repository.created_at.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_repository_for_event(
    session: AsyncSession,
    provider: GitProvider,
    repository_name: str,
) -> Repository | None:
    """Resolve the active repository a webhook event refers to.

    A repository matches when its display name equals the payload's
    repository name or its clone URL contains it. An exact name match wins
    over a URL match.

    Args:
        session: Active async database session.
        provider: Provider the webhook came from.
        repository_name: Repository name from the webhook payload.

    Returns:
        The matching Repository, or None.
    """
    stmt = (
        select(Repository)
        .where(
            Repository.provider == provider,
            Repository.is_active.is_(True),
            or_(
                Repository.name == repository_name,
                Repository.git_url.contains(repository_name),
            ),
        )
        .order_by(Repository.created_at.asc())
    )
    result = await session.execute(stmt)
    candidates = list(result.scalars().all())
    if not candidates:
        return None

    for candidate in candidates:
        if candidate.name == repository_name:
            return candidate
    return candidates[0]


async def upsert_branch_config(
    session: AsyncSession,
    name: str,
    config: BranchConfig,
) -> Repository:
    """Insert or replace a branch configuration by branch name.

    A replaced entry keeps its position in the list; a new entry is appended.

    Args:
        session: Active async database session.
        name: Display name of the active repository.
        config: Branch configuration to store.

    Returns:
        The updated Repository.

    Raises:
        RepositoryNotFoundError: If no active repository has that name.
    """
    async with session.begin():
        repository = await _active_by_name(session, name)
        if repository is None:
            raise RepositoryNotFoundError(name)

        branches = list(repository.branches)
        for index, existing in enumerate(branches):
            if existing.branch == config.branch:
                branches[index] = config
                replaced = True
                break
        else:
            branches.append(config)
            replaced = False

        repository.branches = branches
        await session.flush()
        await session.refresh(repository)

    logger.info(
        "branch_config_saved",
        repository_id=str(repository.id),
        repository=name,
        branch=config.branch,
        replaced=replaced,
    )

    return repository


async def remove_branch_config(
    session: AsyncSession,
    name: str,
    branch: str,
) -> bool:
    """Stop monitoring a branch.

    Returns:
        True if a configuration was removed, False if the branch was not
        configured.

    Raises:
        RepositoryNotFoundError: If no active repository has that name.
    """
    async with session.begin():
        repository = await _active_by_name(session, name)
        if repository is None:
            raise RepositoryNotFoundError(name)

        branches = [config for config in repository.branches if config.branch != branch]
        removed = len(branches) != len(repository.branches)
        if removed:
            repository.branches = branches

    logger.info(
        "branch_config_removed",
        repository=name,
        branch=branch,
        removed=removed,
    )

    return removed


async def deactivate_repository(
    session: AsyncSession,
    name: str,
) -> Repository:
    """Soft-delete a repository: webhooks stop matching it, history is kept.

    Raises:
        RepositoryNotFoundError: If no active repository has that name.
    """
    async with session.begin():
        repository = await _active_by_name(session, name)
        if repository is None:
            raise RepositoryNotFoundError(name)
        repository.is_active = False

    logger.info(
        "repository_deactivated",
        repository_id=str(repository.id),
        name=name,
    )

    return repository


async def delete_repository(
    session: AsyncSession,
    name: str,
) -> int:
    """Hard-delete a repository together with all of its deployments.

    Args:
        session: Active async database session.
        name: Display name of the active repository.

    Returns:
        Number of deployment records deleted with it.

    Raises:
        RepositoryNotFoundError: If no active repository has that name.
    """
    async with session.begin():
        repository = await _active_by_name(session, name)
        if repository is None:
            raise RepositoryNotFoundError(name)

        result = await session.execute(
            delete(Deployment).where(Deployment.repository_id == repository.id)
        )
        await session.delete(repository)

    deleted = result.rowcount or 0
    logger.info(
        "repository_deleted",
        repository_id=str(repository.id),
        name=name,
        deployments_deleted=deleted,
    )

    return deleted
