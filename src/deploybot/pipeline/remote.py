"""Remote branch verification.

Lists the branch heads of a remote with ``git ls-remote --heads`` and checks
that the branch to deploy exists before anything touches the local
checkout. This module is also the single place where git failures against a
remote are classified into the pipeline error taxonomy.

Example usage:
    >>> verifier = RemoteBranchVerifier(timeout_seconds=60)
    >>> branches = verifier.verify(url, "main", GitProvider.GITHUB)
    >>> "main" in branches
    True
"""

from __future__ import annotations

import re

import git
from git import GitCommandError

from deploybot.database.models.repository import GitProvider
from deploybot.logging import get_logger, mask_credentials
from deploybot.pipeline.errors import (
    AuthenticationFailedError,
    BranchNotFoundError,
    PipelineError,
    RemoteUnreachableError,
    RepoNotFoundError,
)

# Never block on an interactive credential prompt
GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}

_HEAD_REF = re.compile(r"^[0-9a-fA-F]+\s+refs/heads/(.+)$")

_AUTH_SIGNALS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "invalid username or password",
    "access denied",
    "permission denied",
    "the requested url returned error: 401",
    "the requested url returned error: 403",
)

_NOT_FOUND_SIGNALS = (
    "repository not found",
    "project not found",
    "not found",
    "the requested url returned error: 404",
    "does not appear to be a git repository",
    "does not exist",
)

_TOKEN_HINTS = {
    GitProvider.GITHUB: (
        "Check that DEPLOYBOT_GIT__GITHUB_TOKEN is set and grants read access "
        "to the repository."
    ),
    GitProvider.GITLAB: (
        "Check that DEPLOYBOT_GIT__GITLAB_TOKEN is set and has the "
        "read_repository scope."
    ),
}


def git_error_message(error: GitCommandError) -> str:
    """Extract git's own message from a GitCommandError, credentials masked."""
    stderr = (error.stderr or "").strip()
    if stderr.startswith("stderr:"):
        stderr = stderr[len("stderr:"):].strip().strip("'").strip()
    message = stderr or (error.stdout or "").strip() or f"git command failed ({error.status})"
    return mask_credentials(message)


def is_timeout(error: GitCommandError) -> bool:
    """True if GitPython killed the command after ``kill_after_timeout``."""
    return "did not complete in" in (error.stderr or "")


def classify_remote_error(
    error: GitCommandError,
    remote_url: str,
    provider: GitProvider | None,
) -> PipelineError:
    """Map a failed remote git command onto the pipeline error taxonomy.

    Args:
        error: The GitCommandError raised by GitPython.
        remote_url: Remote the command talked to (masked before use).
        provider: Hosting provider, used to pick the credential hint.

    Returns:
        AuthenticationFailedError, RepoNotFoundError or RemoteUnreachableError.
    """
    message = git_error_message(error)
    if is_timeout(error):
        return RemoteUnreachableError(f"Timed out contacting remote: {message}")

    lowered = message.lower()
    if any(signal in lowered for signal in _AUTH_SIGNALS):
        hint = _TOKEN_HINTS.get(
            provider,  # type: ignore[arg-type]
            "Check the credentials configured for this remote.",
        )
        return AuthenticationFailedError(message, hint)

    if any(signal in lowered for signal in _NOT_FOUND_SIGNALS):
        hint = (
            f"Check that the repository URL {mask_credentials(remote_url)} is "
            "correct and that the repository still exists."
        )
        return RepoNotFoundError(message, hint)

    return RemoteUnreachableError(f"Could not list remote branches: {message}")


def parse_heads(output: str) -> frozenset[str]:
    """Parse ``git ls-remote --heads`` output into bare branch names."""
    branches = set()
    for line in output.splitlines():
        match = _HEAD_REF.match(line.strip())
        if match:
            branches.add(match.group(1))
    return frozenset(branches)


class RemoteBranchVerifier:
    """Read-only introspection of a remote's branch heads.

    Attributes:
        timeout_seconds: Maximum duration of a single ls-remote call
        logger: Structured logger instance
    """

    def __init__(self, timeout_seconds: int = 120) -> None:
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger(__name__)

    def list_branches(
        self, remote_url: str, provider: GitProvider | None = None
    ) -> frozenset[str]:
        """List the branch names present on the remote.

        Args:
            remote_url: Remote URL, possibly with embedded credentials
            provider: Hosting provider, used for error hints

        Returns:
            Set of branch names

        Raises:
            RemoteUnreachableError: Remote unreachable or returned no branches
            AuthenticationFailedError: Credentials rejected
            RepoNotFoundError: Repository missing on the remote
        """
        try:
            output = git.Git().ls_remote(
                "--heads",
                remote_url,
                env=GIT_ENV,
                kill_after_timeout=self.timeout_seconds,
            )
        except GitCommandError as e:
            error = classify_remote_error(e, remote_url, provider)
            self.logger.error(
                "remote_listing_failed",
                remote_url=mask_credentials(remote_url),
                error=str(error),
                error_type=type(error).__name__,
            )
            raise error from None

        branches = parse_heads(output)
        if not branches:
            self.logger.error(
                "remote_listing_empty",
                remote_url=mask_credentials(remote_url),
            )
            raise RemoteUnreachableError(
                "The remote repository returned no branches. Verify that it is "
                "reachable and that the configured credentials can read it."
            )

        self.logger.info(
            "remote_branches_listed",
            remote_url=mask_credentials(remote_url),
            branch_count=len(branches),
            branches=sorted(branches),
        )
        return branches

    def verify(
        self,
        remote_url: str,
        branch: str,
        provider: GitProvider | None = None,
    ) -> frozenset[str]:
        """Ensure ``branch`` exists on the remote.

        Args:
            remote_url: Remote URL, possibly with embedded credentials
            branch: Branch that is about to be deployed
            provider: Hosting provider, used for error hints

        Returns:
            Set of branch names on the remote (contains ``branch``)

        Raises:
            BranchNotFoundError: Branch absent; carries the available branches
            RemoteUnreachableError, AuthenticationFailedError, RepoNotFoundError:
                See list_branches
        """
        branches = self.list_branches(remote_url, provider)
        if branch not in branches:
            self.logger.warning(
                "remote_branch_missing",
                branch=branch,
                available_branches=sorted(branches),
            )
            raise BranchNotFoundError(branch, branches)
        return branches
