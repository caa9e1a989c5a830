"""Normalization of provider webhook payloads.

GitHub and GitLab describe a push differently; both are reduced to a
PushEvent carrying the repository name, the bare branch name and the head
commit of the push. Pull requests and merge requests are reduced to a
PullRequestEvent in the same way.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from deploybot.database.models.repository import GitProvider
from deploybot.orchestrator.requests import (
    CommitInfo,
    PullRequestAction,
    PullRequestEvent,
    PushEvent,
)

BRANCH_REF_PREFIX = "refs/heads/"


class WebhookPayloadError(ValueError):
    """Raised when a push payload lacks the fields needed to route it."""


def _repository_name(payload: dict[str, Any]) -> str:
    for key in ("repository", "project"):
        section = payload.get(key)
        if isinstance(section, dict) and section.get("name"):
            return str(section["name"])
    raise WebhookPayloadError("Payload does not name a repository")


def _select_commit(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Pick the head commit of a push.

    ``head_commit`` when present, otherwise the listed commit matching
    ``after`` or ``checkout_sha``, otherwise the last listed commit.
    """
    head = payload.get("head_commit")
    if isinstance(head, dict) and head.get("id"):
        return head

    commits = [c for c in payload.get("commits") or [] if isinstance(c, dict) and c.get("id")]
    if not commits:
        return None

    for key in ("after", "checkout_sha"):
        sha = payload.get(key)
        if sha:
            for commit in commits:
                if commit["id"] == sha:
                    return commit
    return commits[-1]


def parse_push_payload(provider: GitProvider, payload: dict[str, Any]) -> PushEvent | None:
    """Build a PushEvent from a provider push payload.

    Args:
        provider: Provider that sent the payload.
        payload: Decoded JSON body.

    Returns:
        The event, or None when the push is not a branch update with a
        commit (tag pushes, branch deletions).

    Raises:
        WebhookPayloadError: If the payload is not a recognisable push.
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Payload must be a JSON object")

    ref = payload.get("ref")
    if not isinstance(ref, str) or not ref:
        raise WebhookPayloadError("Payload has no ref")
    repository_name = _repository_name(payload)

    if not ref.startswith(BRANCH_REF_PREFIX):
        return None
    branch = ref[len(BRANCH_REF_PREFIX):]

    commit = _select_commit(payload)
    if commit is None:
        return None

    author = commit.get("author") or {}
    try:
        commit_info = CommitInfo(
            id=commit["id"],
            message=commit.get("message") or "",
            author={
                "name": author.get("name") or "",
                "email": author.get("email") or "",
            },
        )
    except ValidationError as e:
        raise WebhookPayloadError(f"Invalid commit in payload: {e}") from e

    return PushEvent(
        provider=provider,
        repository_name=repository_name,
        branch=branch,
        commit=commit_info,
    )


# GitLab object_attributes.action -> announced action
_GITLAB_MR_ACTIONS = {
    "open": PullRequestAction.OPENED,
    "reopen": PullRequestAction.REOPENED,
    "update": PullRequestAction.SYNCHRONIZE,
    "close": PullRequestAction.CLOSED,
    "merge": PullRequestAction.MERGED,
}


def _section(payload: dict[str, Any], key: str) -> dict[str, Any]:
    section = payload.get(key)
    if not isinstance(section, dict):
        raise WebhookPayloadError(f"Payload has no {key}")
    return section


def _github_pull_request(payload: dict[str, Any]) -> dict[str, Any] | None:
    try:
        action = PullRequestAction(payload.get("action"))
    except ValueError:
        return None
    pull_request = _section(payload, "pull_request")
    merged = bool(pull_request.get("merged"))
    if action is PullRequestAction.CLOSED and merged:
        action = PullRequestAction.MERGED
    user = pull_request.get("user") or {}
    return {
        "action": action,
        "number": pull_request.get("number"),
        "title": pull_request.get("title"),
        "body": pull_request.get("body") or "",
        "url": pull_request.get("html_url") or "",
        "base_branch": (pull_request.get("base") or {}).get("ref"),
        "head_branch": (pull_request.get("head") or {}).get("ref"),
        "author": user.get("login") or "",
        "author_avatar": user.get("avatar_url"),
        "merged": merged,
        "updated_at": pull_request.get("updated_at"),
        "merged_at": pull_request.get("merged_at"),
    }


def _gitlab_merge_request(payload: dict[str, Any]) -> dict[str, Any] | None:
    attributes = _section(payload, "object_attributes")
    state = attributes.get("state")
    raw_action = attributes.get("action")
    if raw_action is not None:
        action = _GITLAB_MR_ACTIONS.get(raw_action)
        if action is None:
            return None
    elif state == "merged":
        action = PullRequestAction.MERGED
    elif state == "closed":
        action = PullRequestAction.CLOSED
    else:
        action = PullRequestAction.OPENED
    user = payload.get("user") or {}
    return {
        "action": action,
        "number": attributes.get("iid"),
        "title": attributes.get("title"),
        "body": attributes.get("description") or "",
        "url": attributes.get("url") or "",
        "base_branch": attributes.get("target_branch"),
        "head_branch": attributes.get("source_branch"),
        "author": user.get("username") or "",
        "author_avatar": user.get("avatar_url"),
        "merged": state == "merged" or action is PullRequestAction.MERGED,
        "updated_at": attributes.get("updated_at"),
        "merged_at": attributes.get("merged_at"),
    }


def parse_pull_request_payload(
    provider: GitProvider, payload: dict[str, Any]
) -> PullRequestEvent | None:
    """Build a PullRequestEvent from a GitHub pull_request or GitLab merge request payload.

    Returns:
        The event, or None for actions that are not announced (labels,
        review requests, approvals).

    Raises:
        WebhookPayloadError: If the payload lacks the request or repository.
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Payload must be a JSON object")

    if provider is GitProvider.GITHUB:
        fields = _github_pull_request(payload)
    else:
        fields = _gitlab_merge_request(payload)
    if fields is None:
        return None

    try:
        return PullRequestEvent(
            provider=provider,
            repository_name=_repository_name(payload),
            **fields,
        )
    except ValidationError as e:
        raise WebhookPayloadError(f"Invalid pull request in payload: {e}") from e
