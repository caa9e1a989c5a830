"""Integration tests for the webhook endpoints.

The app is exercised through httpx's ASGI transport with a real SQLite
database and dispatcher; the pipeline itself is mocked.

Tests cover:
- Accepted GitHub and GitLab pushes
- Signature and token verification
- Ignored events, branches and repositories
- Malformed payloads
- Pull and merge request announcements
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

from deploybot.config import DeploybotConfig, WebConfig
from deploybot.database.models.deployment import DeploymentStatus
from deploybot.database.models.repository import BranchConfig, GitProvider
from deploybot.database.queries.deployment import list_deployments
from deploybot.database.queries.repository import create_repository
from deploybot.orchestrator.announcer import PullRequestAnnouncer
from deploybot.orchestrator.dispatcher import DeploymentDispatcher
from deploybot.orchestrator.requests import PullRequestAction
from deploybot.orchestrator.store import SqlDeploymentStore
from deploybot.web.app import create_app
from deploybot.web.routes.webhooks import github_signature

SECRET = "s3cret"


def _github_payload(branch: str = "main", name: str = "api") -> dict:
    return {
        "ref": f"refs/heads/{branch}",
        "repository": {"name": name, "full_name": f"acme/{name}"},
        "head_commit": {
            "id": "d" * 40,
            "message": "Deploy me",
            "author": {"name": "Dana", "email": "dana@example.com"},
        },
    }


def _gitlab_payload(branch: str = "main") -> dict:
    return {
        "object_kind": "push",
        "ref": f"refs/heads/{branch}",
        "checkout_sha": "e" * 40,
        "project": {"name": "web"},
        "commits": [{"id": "e" * 40, "message": "Deploy web", "author": {"name": "Lee"}}],
    }


@pytest_asyncio.fixture
async def repositories(session_factory):
    """A GitHub repository with its own secret and PR channel, and a GitLab one without."""
    branch = BranchConfig(branch="main", discord_channel_id="123", deploy_command="true")
    announced = branch.model_copy(update={"pr_channel_id": "456"})
    async with session_factory() as session:
        await create_repository(
            session,
            "api",
            "https://github.com/acme/api.git",
            GitProvider.GITHUB,
            webhook_secret=SECRET,
            branches=[announced],
        )
    async with session_factory() as session:
        await create_repository(
            session,
            "web",
            "https://gitlab.com/acme/web.git",
            GitProvider.GITLAB,
            branches=[branch],
        )


@pytest.fixture
def pipeline() -> MagicMock:
    """Pipeline whose runs succeed immediately."""
    mock = MagicMock()
    mock.run = AsyncMock(return_value=DeploymentStatus.SUCCESS)
    return mock


@pytest.fixture
def notifier() -> MagicMock:
    """Discord sink recording pull request announcements."""
    mock = MagicMock()
    mock.notify_pull_request = AsyncMock()
    return mock


@pytest_asyncio.fixture
async def client(
    session_factory, repositories, pipeline, notifier
) -> AsyncIterator[AsyncClient]:
    """HTTP client for an app wired to the test database."""
    app = create_app(DeploybotConfig())
    dispatcher = DeploymentDispatcher(
        session_factory, SqlDeploymentStore(session_factory), pipeline
    )
    app.state.session_factory = session_factory
    app.state.dispatcher = dispatcher
    app.state.announcer = PullRequestAnnouncer(session_factory, notifier)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    await dispatcher.shutdown(grace_seconds=5)


async def _post_github(client: AsyncClient, payload: dict, secret: str | None = SECRET):
    body = json.dumps(payload).encode()
    headers = {"X-GitHub-Event": "push", "Content-Type": "application/json"}
    if secret is not None:
        headers["X-Hub-Signature-256"] = github_signature(body, secret)
    return await client.post("/webhook/github", content=body, headers=headers)


class TestGithubWebhook:
    """Test GitHub push deliveries."""

    @pytest.mark.asyncio
    async def test_signed_push_accepted(self, client, session_factory):
        """Test that a correctly signed push creates a deployment."""
        response = await _post_github(client, _github_payload())

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "accepted"
        async with session_factory() as session:
            deployments = await list_deployments(session)
        assert [str(d.id) for d in deployments] == [data["deployment_id"]]
        assert deployments[0].commit_sha == "d" * 40

    @pytest.mark.asyncio
    async def test_bad_signature_rejected(self, client, session_factory):
        """Test that a wrong signature returns 401 and creates nothing."""
        response = await _post_github(client, _github_payload(), secret="wrong")

        assert response.status_code == 401
        async with session_factory() as session:
            assert await list_deployments(session) == []

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, client):
        """Test that an unsigned push to a protected repository returns 401."""
        response = await _post_github(client, _github_payload(), secret=None)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unconfigured_branch_ignored(self, client, pipeline):
        """Test that pushes to other branches are acknowledged and ignored."""
        response = await _post_github(client, _github_payload(branch="feature/x"))

        assert response.status_code == 200
        assert response.json() == {
            "status": "ignored",
            "deployment_id": None,
            "channel_id": None,
            "reason": "branch not configured",
        }
        pipeline.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_repository_ignored(self, client):
        """Test that pushes for unregistered repositories are ignored."""
        response = await _post_github(client, _github_payload(name="unknown"), secret=None)

        assert response.json()["status"] == "ignored"
        assert response.json()["reason"] == "repository not monitored"

    @pytest.mark.asyncio
    async def test_tag_push_ignored(self, client):
        """Test that tag pushes are ignored."""
        payload = _github_payload()
        payload["ref"] = "refs/tags/v1.0.0"

        response = await _post_github(client, payload)

        assert response.json()["status"] == "ignored"

    @pytest.mark.asyncio
    async def test_payload_without_repository_rejected(self, client):
        """Test that a push without repository returns 400."""
        response = await _post_github(client, {"ref": "refs/heads/main"})
        assert response.status_code == 400


class TestGitlabWebhook:
    """Test GitLab push deliveries."""

    @pytest.mark.asyncio
    async def test_push_accepted_without_secret(self, client, pipeline):
        """Test that repositories without a secret accept unsigned pushes."""
        response = await client.post(
            "/webhook/gitlab",
            headers={"X-Gitlab-Event": "Push Hook"},
            json=_gitlab_payload(),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "accepted"

    @pytest.mark.asyncio
    async def test_global_secret_enforced(self, session_factory, repositories, pipeline):
        """Test that the global secret applies to repositories without their own."""
        app = create_app(DeploybotConfig(web=WebConfig(webhook_secret=SecretStr("global"))))
        dispatcher = DeploymentDispatcher(
            session_factory, SqlDeploymentStore(session_factory), pipeline
        )
        app.state.session_factory = session_factory
        app.state.dispatcher = dispatcher
        app.state.announcer = MagicMock()

        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            rejected = await client.post(
                "/webhook/gitlab",
                headers={"X-Gitlab-Event": "Push Hook", "X-Gitlab-Token": "nope"},
                json=_gitlab_payload(),
            )
            accepted = await client.post(
                "/webhook/gitlab",
                headers={"X-Gitlab-Event": "Push Hook", "X-Gitlab-Token": "global"},
                json=_gitlab_payload(),
            )
        await dispatcher.shutdown(grace_seconds=5)

        assert rejected.status_code == 401
        assert accepted.json()["status"] == "accepted"


def _github_pull_request(action: str = "opened", merged: bool = False, base: str = "main") -> dict:
    return {
        "action": action,
        "repository": {"name": "api"},
        "pull_request": {
            "number": 42,
            "title": "Add login page",
            "body": "Implements the login form.",
            "html_url": "https://github.com/acme/api/pull/42",
            "merged": merged,
            "base": {"ref": base},
            "head": {"ref": "feature/login"},
            "user": {"login": "dana", "avatar_url": "https://avatars.example/dana.png"},
            "updated_at": "2024-05-01T12:00:00Z",
            "merged_at": "2024-05-01T12:00:00Z" if merged else None,
        },
    }


async def _post_pull_request(client: AsyncClient, payload: dict, secret: str | None = SECRET):
    body = json.dumps(payload).encode()
    headers = {"X-GitHub-Event": "pull_request", "Content-Type": "application/json"}
    if secret is not None:
        headers["X-Hub-Signature-256"] = github_signature(body, secret)
    return await client.post("/webhook/github", content=body, headers=headers)


class TestPullRequestWebhooks:
    """Test pull and merge request announcements."""

    @pytest.mark.asyncio
    async def test_github_pull_request_sent_to_pr_channel(self, client, notifier, pipeline):
        """Test that an opened pull request is announced in the branch's PR channel."""
        response = await _post_pull_request(client, _github_pull_request())

        assert response.status_code == 200
        assert response.json()["status"] == "notified"
        assert response.json()["channel_id"] == "456"
        channel_id, repository_name, event = notifier.notify_pull_request.await_args.args
        assert (channel_id, repository_name) == ("456", "api")
        assert event.action is PullRequestAction.OPENED
        assert event.number == 42
        assert (event.head_branch, event.base_branch) == ("feature/login", "main")
        assert event.author == "dana"
        pipeline.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_closed_and_merged_is_merge(self, client, notifier):
        """Test that GitHub's closed action with merged=true is announced as a merge."""
        await _post_pull_request(client, _github_pull_request(action="closed", merged=True))

        event = notifier.notify_pull_request.await_args.args[2]
        assert event.action is PullRequestAction.MERGED
        assert event.merged is True

    @pytest.mark.asyncio
    async def test_unmonitored_target_branch_ignored(self, client, notifier):
        """Test that requests into other branches are not announced."""
        response = await _post_pull_request(client, _github_pull_request(base="develop"))

        assert response.json()["reason"] == "branch not configured"
        notifier.notify_pull_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_signature_required(self, client, notifier):
        """Test that the repository secret also protects pull request events."""
        response = await _post_pull_request(client, _github_pull_request(), secret="wrong")

        assert response.status_code == 401
        notifier.notify_pull_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_gitlab_merge_request_falls_back_to_deploy_channel(self, client, notifier):
        """Test that branches without a PR channel use their deployment channel."""
        response = await client.post(
            "/webhook/gitlab",
            headers={"X-Gitlab-Event": "Merge Request Hook"},
            json={
                "object_kind": "merge_request",
                "project": {"name": "web"},
                "user": {"username": "lee"},
                "object_attributes": {
                    "iid": 3,
                    "title": "Tune cache headers",
                    "action": "merge",
                    "state": "merged",
                    "source_branch": "perf/cache",
                    "target_branch": "main",
                    "url": "https://gitlab.com/acme/web/-/merge_requests/3",
                },
            },
        )

        assert response.json() == {
            "status": "notified",
            "deployment_id": None,
            "channel_id": "123",
            "reason": None,
        }
        event = notifier.notify_pull_request.await_args.args[2]
        assert event.action is PullRequestAction.MERGED
        assert event.number == 3
        assert event.author == "lee"

    @pytest.mark.asyncio
    async def test_merge_request_without_attributes_rejected(self, client):
        """Test that a merge request hook without object_attributes returns 400."""
        response = await client.post(
            "/webhook/gitlab",
            headers={"X-Gitlab-Event": "Merge Request Hook"},
            json={"object_kind": "merge_request", "project": {"name": "web"}},
        )
        assert response.status_code == 400
