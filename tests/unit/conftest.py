"""Shared fixtures for unit tests.

Provides an in-memory deployment record store and a recording notifier so
pipeline and state machine behaviour can be tested without a database or
network access.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

import pytest

from deploybot.database.models.deployment import DeploymentStatus
from deploybot.database.models.repository import BranchConfig, GitProvider
from deploybot.orchestrator.requests import (
    CommitAuthor,
    CommitInfo,
    PipelineRequest,
    RepositoryRef,
)
from deploybot.orchestrator.store import DeploymentRecord


class InMemoryStore:
    """DeploymentRecordStore keeping records in a dict.

    Every update is also appended to ``updates`` so tests can assert on the
    sequence of writes.
    """

    def __init__(self) -> None:
        self.records: dict[str, DeploymentRecord] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.fail_on_status: DeploymentStatus | None = None

    async def create(self, fields: Mapping[str, Any]) -> str:
        deployment_id = str(uuid.uuid4())
        self.records[deployment_id] = DeploymentRecord(
            id=deployment_id,
            repository_id=str(fields["repository_id"]),
            branch=fields["branch"],
            commit_sha=fields["commit_sha"],
            status=DeploymentStatus.PENDING,
        )
        return deployment_id

    async def get(self, deployment_id: str) -> DeploymentRecord | None:
        return self.records.get(deployment_id)

    async def update(self, deployment_id: str, fields: Mapping[str, Any]) -> None:
        if self.fail_on_status is not None and fields.get("status") == self.fail_on_status:
            raise RuntimeError("database unavailable")
        record = self.records.get(deployment_id)
        if record is None:
            raise ValueError(f"Deployment {deployment_id} not found")
        self.updates.append((deployment_id, dict(fields)))
        self.records[deployment_id] = replace(record, **fields)

    def statuses(self, deployment_id: str) -> list[DeploymentStatus]:
        """Statuses written for ``deployment_id``, in order."""
        return [
            fields["status"]
            for record_id, fields in self.updates
            if record_id == deployment_id and "status" in fields
        ]


class RecordingNotifier:
    """NotificationSink that remembers every call."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.raise_error: Exception | None = None

    async def notify(
        self,
        channel_id: str,
        repository: RepositoryRef,
        branch_config: BranchConfig,
        commit: CommitInfo,
        status: DeploymentStatus,
        deployment_id: str,
        error: str | None = None,
    ) -> None:
        self.calls.append(
            {
                "channel_id": channel_id,
                "repository": repository,
                "branch_config": branch_config,
                "commit": commit,
                "status": status,
                "deployment_id": deployment_id,
                "error": error,
            }
        )
        if self.raise_error is not None:
            raise self.raise_error


@pytest.fixture
def store() -> InMemoryStore:
    """Empty in-memory deployment store."""
    return InMemoryStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Notifier recording its calls."""
    return RecordingNotifier()


@pytest.fixture
def make_request():
    """Factory building PipelineRequest objects with sensible defaults."""
    return build_request


def build_request(
    deployment_id: str,
    build_command: str | None = None,
    deploy_command: str | None = None,
    branch: str = "main",
    environment: str | None = "production",
    git_url: str = "https://github.com/acme/api.git",
    provider: GitProvider = GitProvider.GITHUB,
    repository_id: str = "11111111-1111-1111-1111-111111111111",
) -> PipelineRequest:
    """Build a PipelineRequest with sensible defaults."""
    return PipelineRequest(
        deployment_id=deployment_id,
        repository=RepositoryRef(
            id=repository_id,
            name="api",
            git_url=git_url,
            provider=provider,
        ),
        branch_config=BranchConfig(
            branch=branch,
            discord_channel_id="123456789",
            build_command=build_command,
            deploy_command=deploy_command,
            environment=environment,
        ),
        commit=CommitInfo(
            id="a" * 40,
            message="Fix the login page",
            author=CommitAuthor(name="Dana", email="dana@example.com"),
        ),
    )
