"""Repository model for Deploybot.

Defines the Repository table, the GitProvider enum and the BranchConfig
schema describing how each monitored branch is deployed.

Branch configurations are stored as a JSON document on the repository row.
The BranchConfigList column type validates the document against the
BranchConfig schema on every write and every read, so callers always work
with typed, duplicate-free lists.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel
from sqlalchemy import JSON, Boolean, Index, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator, TypeEngine

from deploybot.database.models.base import Base, TimestampMixin


class GitProvider(str, enum.Enum):
    """Supported Git hosting providers."""

    GITHUB = "GITHUB"
    GITLAB = "GITLAB"


class BranchConfig(BaseModel):
    """Monitoring rule for one branch of one repository.

    Accepts both snake_case and the camelCase keys used by the webhook layer
    (``discordChannelId``, ``buildCommand``...).

    Attributes:
        branch: Branch name, unique within a repository.
        discord_channel_id: Channel that receives deployment notices.
        pr_channel_id: Optional channel for pull request notices.
        build_command: Optional shell command run before deploying.
        deploy_command: Optional shell command that performs the deploy.
        environment: Optional environment label (defaults to the branch name).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    branch: str = Field(..., min_length=1)
    discord_channel_id: str = Field(..., min_length=1)
    pr_channel_id: str | None = None
    build_command: str | None = None
    deploy_command: str | None = None
    environment: str | None = None

    @property
    def environment_label(self) -> str:
        """Environment label exported to build and deploy commands."""
        return self.environment or self.branch


_branch_list_adapter = TypeAdapter(list[BranchConfig])


def validate_branch_configs(value: Any) -> list[BranchConfig]:
    """Validate a raw branch document into a list of BranchConfig.

    Args:
        value: List of dicts or BranchConfig instances.

    Returns:
        Validated list, in the original order.

    Raises:
        pydantic.ValidationError: If an entry does not match the schema.
        ValueError: If two entries share a branch name.
    """
    configs = _branch_list_adapter.validate_python(value)
    seen: set[str] = set()
    for config in configs:
        if config.branch in seen:
            raise ValueError(f"Duplicate branch configuration: {config.branch}")
        seen.add(config.branch)
    return configs


class BranchConfigList(TypeDecorator[list[BranchConfig]]):
    """JSON column holding an ordered, validated list of BranchConfig."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(
        self, value: list[BranchConfig] | None, dialect: Dialect
    ) -> list[dict[str, Any]]:
        configs = validate_branch_configs(value or [])
        return [config.model_dump(exclude_none=True) for config in configs]

    def process_result_value(
        self, value: list[dict[str, Any]] | None, dialect: Dialect
    ) -> list[BranchConfig]:
        return validate_branch_configs(value or [])


class Repository(TimestampMixin, Base):
    """A Git repository monitored for deployments.

    Attributes:
        id: UUID primary key (from TimestampMixin).
        name: Display name, unique among active repositories.
        git_url: Clone URL (without credentials).
        provider: Git hosting provider.
        is_active: False once the repository has been removed from monitoring.
        webhook_secret: Optional per-repository webhook secret.
        branches: Ordered branch configurations.
    """

    __tablename__ = "repositories"
    __table_args__ = (
        Index(
            "uq_repositories_active_name",
            "name",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    name: Mapped[str] = mapped_column(Text, nullable=False)
    git_url: Mapped[str] = mapped_column(Text, nullable=False)
    provider: Mapped[GitProvider] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    webhook_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    branches: Mapped[list[BranchConfig]] = mapped_column(
        BranchConfigList,
        default=list,
        nullable=False,
    )

    def find_branch(self, branch: str) -> BranchConfig | None:
        """Return the configuration for ``branch`` if it is monitored."""
        for config in self.branches:
            if config.branch == branch:
                return config
        return None
