"""Integration modules for external systems."""

from __future__ import annotations

from deploybot.integrations.discord import (
    DiscordNotifier,
    NotificationSink,
    PullRequestSink,
    build_embed,
    build_pull_request_embed,
)

__all__ = [
    "DiscordNotifier",
    "NotificationSink",
    "PullRequestSink",
    "build_embed",
    "build_pull_request_embed",
]
