"""Database query functions for Deploybot.

This module provides async query functions for all database entities:
- Repository registration and branch configuration
- Deployment record creation, updates and history
"""

from deploybot.database.queries.deployment import (
    create_deployment,
    get_deployment,
    list_deployments,
    update_deployment,
)
from deploybot.database.queries.repository import (
    DuplicateRepositoryError,
    RepositoryNotFoundError,
    create_repository,
    deactivate_repository,
    delete_repository,
    find_repository_for_event,
    get_repository,
    get_repository_by_name,
    list_repositories,
    remove_branch_config,
    upsert_branch_config,
    validate_git_url,
)

__all__ = [
    # Repository queries
    "create_repository",
    "get_repository",
    "get_repository_by_name",
    "list_repositories",
    "find_repository_for_event",
    "upsert_branch_config",
    "remove_branch_config",
    "deactivate_repository",
    "delete_repository",
    "validate_git_url",
    "DuplicateRepositoryError",
    "RepositoryNotFoundError",
    # Deployment queries
    "create_deployment",
    "get_deployment",
    "update_deployment",
    "list_deployments",
]
