"""Git provider webhook endpoints.

Routes:
    POST /webhook/github - GitHub deliveries (X-GitHub-Event: push, pull_request)
    POST /webhook/gitlab - GitLab deliveries (X-Gitlab-Event: Push Hook, Merge Request Hook)

A matching push creates a PENDING deployment and returns its id right
away; the pipeline runs in the background. Pull and merge request activity
on a monitored target branch is announced in Discord. Events that match no
active repository or configured branch, and all other event types, are
acknowledged and ignored.

Authenticity is checked when a secret is configured for the repository
(or globally): GitHub requests must carry a valid ``X-Hub-Signature-256``
HMAC-SHA256 signature, GitLab requests must carry the secret in
``X-Gitlab-Token``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deploybot.config import DeploybotConfig
from deploybot.database.models.repository import GitProvider, Repository
from deploybot.database.queries.repository import find_repository_for_event
from deploybot.logging import get_logger
from deploybot.orchestrator.announcer import PullRequestAnnouncer
from deploybot.orchestrator.dispatcher import DeploymentDispatcher
from deploybot.web.payloads import (
    WebhookPayloadError,
    parse_pull_request_payload,
    parse_push_payload,
)
from deploybot.web.routes.health import get_session_factory

logger = get_logger(__name__)

GITHUB_PUSH_EVENT = "push"
GITLAB_PUSH_EVENT = "Push Hook"
GITHUB_PULL_REQUEST_EVENT = "pull_request"
GITLAB_MERGE_REQUEST_EVENT = "Merge Request Hook"


class WebhookResponse(BaseModel):
    """Webhook acknowledgement.

    Attributes:
        status: "accepted" when a deployment was created, "notified" when a
            pull request was announced, otherwise "ignored"
        deployment_id: Id of the created deployment
        channel_id: Channel a pull request was announced in
        reason: Why the event was ignored
    """

    status: str
    deployment_id: str | None = None
    channel_id: str | None = None
    reason: str | None = None


def get_dispatcher(request: Request) -> DeploymentDispatcher:
    """Dependency that retrieves the deployment dispatcher from app state."""
    return request.app.state.dispatcher  # type: ignore[no-any-return]


def get_announcer(request: Request) -> PullRequestAnnouncer:
    """Dependency that retrieves the pull request announcer from app state."""
    return request.app.state.announcer  # type: ignore[no-any-return]


def get_config(request: Request) -> DeploybotConfig:
    """Dependency that retrieves the application config from app state."""
    return request.app.state.config  # type: ignore[no-any-return]


def github_signature(body: bytes, secret: str) -> str:
    """Compute the ``X-Hub-Signature-256`` header value for ``body``."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_github_signature(body: bytes, header: str | None, secret: str) -> bool:
    if not header:
        return False
    return hmac.compare_digest(github_signature(body, secret), header)


def verify_gitlab_token(header: str | None, secret: str) -> bool:
    if not header:
        return False
    return hmac.compare_digest(header.encode(), secret.encode())


def _decode(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body is not valid JSON",
        ) from e
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body must be a JSON object",
        )
    return payload

async def _lookup_and_verify(
    provider: GitProvider,
    repository_name: str,
    request: Request,
    body: bytes,
    session_factory: async_sessionmaker[AsyncSession],
    config: DeploybotConfig,
) -> Repository | None:
    """Find the monitored repository and check the request's signature against its secret.

    Returns None when the repository is not monitored.

    Raises:
        HTTPException: 401 when a secret applies and the request does not prove it.
    """
    async with session_factory() as session:
        repository = await find_repository_for_event(session, provider, repository_name)
    if repository is None:
        logger.info(
            "webhook_repository_unknown",
            provider=provider.value,
            repository=repository_name,
        )
        return None

    secret = repository.webhook_secret
    if secret is None and config.web.webhook_secret is not None:
        secret = config.web.webhook_secret.get_secret_value()
    if not secret:
        return repository

    if provider is GitProvider.GITHUB:
        verified = verify_github_signature(
            body, request.headers.get("X-Hub-Signature-256"), secret
        )
    else:
        verified = verify_gitlab_token(request.headers.get("X-Gitlab-Token"), secret)
    if not verified:
        logger.warning(
            "webhook_signature_invalid",
            provider=provider.value,
            repository=repository.name,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )
    return repository


def _bad_payload(provider: GitProvider, error: WebhookPayloadError) -> HTTPException:
    logger.warning("webhook_payload_invalid", provider=provider.value, error=str(error))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


async def _handle_push(
    provider: GitProvider,
    request: Request,
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: DeploymentDispatcher,
    config: DeploybotConfig,
) -> WebhookResponse:
    body = await request.body()
    payload = _decode(body)

    try:
        event = parse_push_payload(provider, payload)
    except WebhookPayloadError as e:
        raise _bad_payload(provider, e) from e

    if event is None:
        return WebhookResponse(status="ignored", reason="not a branch push with commits")

    repository = await _lookup_and_verify(
        provider, event.repository_name, request, body, session_factory, config
    )
    if repository is None:
        return WebhookResponse(status="ignored", reason="repository not monitored")

    deployment_id = await dispatcher.handle_push(event)
    if deployment_id is None:
        return WebhookResponse(status="ignored", reason="branch not configured")

    logger.info(
        "webhook_deployment_created",
        provider=provider.value,
        repository=repository.name,
        branch=event.branch,
        deployment_id=deployment_id,
    )
    return WebhookResponse(status="accepted", deployment_id=deployment_id)


async def _handle_pull_request(
    provider: GitProvider,
    request: Request,
    session_factory: async_sessionmaker[AsyncSession],
    announcer: PullRequestAnnouncer,
    config: DeploybotConfig,
) -> WebhookResponse:
    body = await request.body()
    payload = _decode(body)

    try:
        event = parse_pull_request_payload(provider, payload)
    except WebhookPayloadError as e:
        raise _bad_payload(provider, e) from e

    if event is None:
        return WebhookResponse(status="ignored", reason="pull request action not announced")

    repository = await _lookup_and_verify(
        provider, event.repository_name, request, body, session_factory, config
    )
    if repository is None:
        return WebhookResponse(status="ignored", reason="repository not monitored")

    channel_id = await announcer.handle(event)
    if channel_id is None:
        return WebhookResponse(status="ignored", reason="branch not configured")
    return WebhookResponse(status="notified", channel_id=channel_id)


def _ignored(provider: GitProvider, event_type: str) -> WebhookResponse:
    logger.debug("webhook_event_ignored", provider=provider.value, event_type=event_type)
    return WebhookResponse(status="ignored", reason=f"event {event_type!r} not handled")


def create_webhooks_router() -> APIRouter:
    """Create router with the provider webhook endpoints.

    Returns:
        Configured APIRouter with webhook endpoints.
    """
    router = APIRouter(prefix="/webhook", tags=["webhooks"])

    @router.post("/github", response_model=WebhookResponse)
    async def github_webhook(
        request: Request,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        dispatcher: DeploymentDispatcher = Depends(get_dispatcher),  # noqa: B008
        announcer: PullRequestAnnouncer = Depends(get_announcer),  # noqa: B008
        config: DeploybotConfig = Depends(get_config),  # noqa: B008
    ) -> WebhookResponse:
        """Handle a GitHub webhook delivery."""
        provider = GitProvider.GITHUB
        event_type = request.headers.get("X-GitHub-Event", "")
        if event_type == GITHUB_PUSH_EVENT:
            return await _handle_push(provider, request, session_factory, dispatcher, config)
        if event_type == GITHUB_PULL_REQUEST_EVENT:
            return await _handle_pull_request(
                provider, request, session_factory, announcer, config
            )
        return _ignored(provider, event_type)

    @router.post("/gitlab", response_model=WebhookResponse)
    async def gitlab_webhook(
        request: Request,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        dispatcher: DeploymentDispatcher = Depends(get_dispatcher),  # noqa: B008
        announcer: PullRequestAnnouncer = Depends(get_announcer),  # noqa: B008
        config: DeploybotConfig = Depends(get_config),  # noqa: B008
    ) -> WebhookResponse:
        """Handle a GitLab webhook delivery."""
        provider = GitProvider.GITLAB
        event_type = request.headers.get("X-Gitlab-Event", "")
        if event_type == GITLAB_PUSH_EVENT:
            return await _handle_push(provider, request, session_factory, dispatcher, config)
        if event_type == GITLAB_MERGE_REQUEST_EVENT:
            return await _handle_pull_request(
                provider, request, session_factory, announcer, config
            )
        return _ignored(provider, event_type)

    return router
