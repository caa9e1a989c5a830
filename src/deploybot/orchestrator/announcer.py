"""Routing of pull/merge request activity to Discord.

A request is announced when its target branch is monitored. The branch's
``pr_channel_id`` receives the message; branches without one fall back to
their deployment channel. Nothing is persisted and no deployment starts.
"""

from __future__ import annotations

import structlog

from deploybot.database.queries.repository import find_repository_for_event
from deploybot.integrations.discord import PullRequestSink
from deploybot.orchestrator.requests import PullRequestEvent
from deploybot.orchestrator.store import SessionFactory

logger = structlog.get_logger(__name__)


class PullRequestAnnouncer:
    """Sends pull/merge request events to the channel of their target branch."""

    def __init__(self, session_factory: SessionFactory, notifier: PullRequestSink) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self._logger = logger.bind(component="PullRequestAnnouncer")

    async def handle(self, event: PullRequestEvent) -> str | None:
        """Announce ``event``.

        Returns:
            The channel the event was sent to, or None when the repository or
            the target branch is not monitored.
        """
        async with self.session_factory() as session:
            repository = await find_repository_for_event(
                session, event.provider, event.repository_name
            )

        if repository is None:
            self._logger.info(
                "pull_request_ignored",
                reason="no matching repository",
                provider=event.provider.value,
                repository=event.repository_name,
            )
            return None

        branch_config = repository.find_branch(event.base_branch)
        if branch_config is None:
            self._logger.info(
                "pull_request_ignored",
                reason="branch not configured",
                repository=repository.name,
                branch=event.base_branch,
            )
            return None

        channel_id = branch_config.pr_channel_id or branch_config.discord_channel_id
        await self.notifier.notify_pull_request(channel_id, repository.name, event)

        self._logger.info(
            "pull_request_announced",
            repository=repository.name,
            branch=event.base_branch,
            number=event.number,
            action=event.action.value,
            channel_id=channel_id,
        )
        return channel_id
