"""Discord notifications.

Posts one embed per deployment outcome to the branch's channel, and one
per pull/merge request event to the branch's pull request channel, through
the Discord REST API. Delivery is best effort: every failure is logged and
swallowed so a notification problem never changes a deployment's result.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from deploybot.config import DiscordConfig
from deploybot.database.models.deployment import DeploymentStatus
from deploybot.database.models.repository import BranchConfig
from deploybot.logging import get_logger, mask_credentials

if TYPE_CHECKING:
    from deploybot.orchestrator.requests import CommitInfo, PullRequestEvent, RepositoryRef

SUCCESS_COLOR = 0x00FF00
FAILURE_COLOR = 0xFF0000
COMMIT_MESSAGE_MAX_CHARS = 100
PULL_REQUEST_BODY_MAX_CHARS = 500

# (title, color) per PullRequestAction value
_PULL_REQUEST_STYLES: dict[str, tuple[str, int]] = {
    "opened": ("Pull request opened", 0x00AAFF),
    "reopened": ("Pull request reopened", 0x00AAFF),
    "synchronize": ("Pull request updated", 0x0099FF),
    "merged": ("Pull request merged", SUCCESS_COLOR),
    "closed": ("Pull request closed", 0xFF9900),
}

# Discord JSON error code for "Missing Permissions"
_MISSING_PERMISSIONS = 50013


class NotificationSink(Protocol):
    """Receives the outcome of a pipeline run. Must never raise."""

    async def notify(
        self,
        channel_id: str,
        repository: RepositoryRef,
        branch_config: BranchConfig,
        commit: CommitInfo,
        status: DeploymentStatus,
        deployment_id: str,
        error: str | None = None,
    ) -> None: ...


class PullRequestSink(Protocol):
    """Receives pull/merge request activity. Must never raise."""

    async def notify_pull_request(
        self,
        channel_id: str,
        repository_name: str,
        event: PullRequestEvent,
    ) -> None: ...


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def build_embed(
    repository: RepositoryRef,
    branch_config: BranchConfig,
    commit: CommitInfo,
    status: DeploymentStatus,
    deployment_id: str,
    error: str | None = None,
    error_max_chars: int = 1000,
) -> dict[str, Any]:
    """Build the Discord embed describing a deployment outcome."""
    succeeded = status is DeploymentStatus.SUCCESS
    fields = [
        {"name": "Repository", "value": repository.name, "inline": True},
        {"name": "Branch", "value": branch_config.branch, "inline": True},
        {"name": "Environment", "value": branch_config.environment_label, "inline": True},
        {"name": "Commit", "value": f"`{commit.short_id}`", "inline": True},
        {"name": "Author", "value": commit.author.name or "unknown", "inline": True},
        {
            "name": "Message",
            "value": _truncate(commit.message, COMMIT_MESSAGE_MAX_CHARS) or "-",
            "inline": False,
        },
    ]
    if error:
        fields.append(
            {
                "name": "Error",
                "value": f"```{mask_credentials(error)[:error_max_chars]}```",
                "inline": False,
            }
        )

    return {
        "title": "Deployment succeeded" if succeeded else "Deployment failed",
        "description": f"**{repository.name}** -> `{branch_config.branch}`",
        "color": SUCCESS_COLOR if succeeded else FAILURE_COLOR,
        "fields": fields,
        "footer": {"text": f"Deployment {deployment_id}"},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def _epoch(timestamp: str | None) -> int | None:
    if not timestamp:
        return None
    try:
        return int(datetime.fromisoformat(timestamp).timestamp())
    except ValueError:
        return None


def build_pull_request_embed(
    repository_name: str,
    event: PullRequestEvent,
    body_max_chars: int = PULL_REQUEST_BODY_MAX_CHARS,
) -> dict[str, Any]:
    """Build the Discord embed announcing pull/merge request activity."""
    title, color = _PULL_REQUEST_STYLES[event.action.value]
    if event.merged:
        state = "Merged"
    elif event.action.value == "closed":
        state = "Closed"
    else:
        state = "Open"

    fields = [
        {"name": "Repository", "value": repository_name, "inline": True},
        {"name": "Number", "value": f"#{event.number}", "inline": True},
        {
            "name": "Branches",
            "value": f"`{event.head_branch}` -> `{event.base_branch}`",
            "inline": True,
        },
        {"name": "Author", "value": event.author or "unknown", "inline": True},
        {"name": "State", "value": state, "inline": True},
    ]
    if event.body:
        fields.append(
            {"name": "Description", "value": _truncate(event.body, body_max_chars), "inline": False}
        )
    merged_at = _epoch(event.merged_at)
    if merged_at is not None:
        fields.append({"name": "Merged", "value": f"<t:{merged_at}:R>", "inline": True})

    updated_at = _epoch(event.updated_at)
    embed: dict[str, Any] = {
        "title": title,
        "description": f"**{event.title}**",
        "color": color,
        "fields": fields,
        "timestamp": (
            datetime.fromtimestamp(updated_at, timezone.utc)
            if updated_at is not None
            else datetime.now(timezone.utc)
        ).isoformat(),
    }
    if event.url:
        embed["url"] = event.url
    if event.author_avatar:
        embed["thumbnail"] = {"url": event.author_avatar}
    return embed


class DiscordNotifier:
    """NotificationSink posting embeds with a Discord bot token."""

    def __init__(self, config: DiscordConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__)
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.api_base_url,
                timeout=self.config.timeout_seconds,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

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
        """Post the deployment outcome to ``channel_id``."""
        embed = build_embed(
            repository,
            branch_config,
            commit,
            status,
            deployment_id,
            error=error,
            error_max_chars=self.config.error_max_chars,
        )
        await self._post(
            channel_id, embed, deployment_id=deployment_id, status=status.value
        )

    async def notify_pull_request(
        self,
        channel_id: str,
        repository_name: str,
        event: PullRequestEvent,
    ) -> None:
        """Post pull/merge request activity to ``channel_id``."""
        embed = build_pull_request_embed(repository_name, event)
        await self._post(
            channel_id,
            embed,
            repository=repository_name,
            pull_request=event.number,
            action=event.action.value,
        )

    async def _post(self, channel_id: str, embed: dict[str, Any], **context: Any) -> None:
        log = self.logger.bind(channel_id=channel_id, **context)
        if self.config.bot_token is None:
            log.warning("discord_notification_skipped", reason="no bot token configured")
            return

        try:
            client = await self._get_client()
            response = await client.post(
                f"/channels/{channel_id}/messages",
                json={"embeds": [embed]},
                headers={
                    "Authorization": f"Bot {self.config.bot_token.get_secret_value()}",
                },
            )
        except httpx.HTTPError as e:
            log.error(
                "discord_notification_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        if response.is_success:
            log.info("discord_notification_sent")
            return

        if response.status_code == 403 and self._error_code(response) == _MISSING_PERMISSIONS:
            log.error("discord_missing_permissions", required="Send Messages, Embed Links")
            return

        log.warning(
            "discord_notification_failed",
            status_code=response.status_code,
            response_text=response.text[:200],
        )

    @staticmethod
    def _error_code(response: httpx.Response) -> int | None:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            return body.get("code")
        return None
