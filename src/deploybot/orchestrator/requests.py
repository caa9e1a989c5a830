"""Input model of a pipeline run.

A PipelineRequest carries everything a run needs besides configuration:
the PENDING deployment it belongs to, the repository, the branch
configuration and the triggering commit. PushEvent and PullRequestEvent
are the provider-neutral forms of incoming webhooks. Field names accept both
snake_case and the camelCase used by the bot's JSON payloads.
"""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from deploybot.database.models.repository import BranchConfig, GitProvider


class _RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class RepositoryRef(_RequestModel):
    """Repository being deployed."""

    id: str
    name: str
    git_url: str
    provider: GitProvider


class CommitAuthor(_RequestModel):
    """Author of the triggering commit."""

    name: str = ""
    email: str = ""


class CommitInfo(_RequestModel):
    """Commit that triggered the run."""

    id: str
    message: str = ""
    author: CommitAuthor = Field(default_factory=CommitAuthor)

    @property
    def short_id(self) -> str:
        return self.id[:7]


class PipelineRequest(_RequestModel):
    """One deployment to execute.

    Attributes:
        deployment_id: Identifier of the PENDING record created for this run.
        repository: Repository being deployed.
        branch_config: Configuration of the pushed branch.
        commit: Triggering commit.
    """

    deployment_id: str
    repository: RepositoryRef
    branch_config: BranchConfig
    commit: CommitInfo

    @property
    def branch(self) -> str:
        return self.branch_config.branch

    @property
    def lock_key(self) -> tuple[str, str]:
        return (self.repository.id, self.branch_config.branch)


class PushEvent(_RequestModel):
    """Normalized "branch changed" event received from a Git provider.

    Attributes:
        provider: Provider that sent the webhook.
        repository_name: Repository name as reported by the provider.
        branch: Pushed branch, without the ``refs/heads/`` prefix.
        commit: Head commit of the push.
    """

    provider: GitProvider
    repository_name: str
    branch: str
    commit: CommitInfo


class PullRequestAction(str, enum.Enum):
    """Pull/merge request activity that is announced to Discord."""

    OPENED = "opened"
    CLOSED = "closed"
    REOPENED = "reopened"
    SYNCHRONIZE = "synchronize"
    MERGED = "merged"


class PullRequestEvent(_RequestModel):
    """Normalized pull request (GitHub) or merge request (GitLab) activity.

    Attributes:
        provider: Provider that sent the webhook.
        repository_name: Repository name as reported by the provider.
        action: What happened to the request.
        number: Request number (GitLab ``iid``).
        title: Request title.
        body: Request description, possibly empty.
        url: Web page of the request.
        base_branch: Branch the request targets; selects the branch configuration.
        head_branch: Branch the changes come from.
        author: Login of the request author.
        author_avatar: Avatar URL of the author, if provided.
        merged: Whether the request has been merged.
        updated_at: Last update time as sent by the provider.
        merged_at: Merge time as sent by the provider.
    """

    provider: GitProvider
    repository_name: str
    action: PullRequestAction
    number: int
    title: str
    body: str = ""
    url: str = ""
    base_branch: str
    head_branch: str
    author: str = ""
    author_avatar: str | None = None
    merged: bool = False
    updated_at: str | None = None
    merged_at: str | None = None
