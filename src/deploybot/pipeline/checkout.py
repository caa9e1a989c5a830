"""Checkout reconciliation for the deployment directory.

Brings the deployment directory to the head of the remote branch, either by
a fresh shallow clone or by updating the existing working tree with a
fetch and a fast-forward-only pull. Running it twice against an unchanged
remote is a no-op that yields the same head commit.

Example usage:
    >>> reconciler = CheckoutReconciler(git_timeout_seconds=120, clone_timeout_seconds=600)
    >>> sha = reconciler.reconcile(path, url, "main", SnapshotState.ABSENT)
"""

from __future__ import annotations

import shutil
from pathlib import Path

import git
from git import GitCommandError

from deploybot.logging import get_logger, mask_credentials
from deploybot.pipeline.errors import (
    CloneFailedError,
    FetchFailedError,
    ReconcileFailedError,
)
from deploybot.pipeline.remote import GIT_ENV, git_error_message, is_timeout
from deploybot.pipeline.snapshot import SnapshotState


class CheckoutReconciler:
    """Clones or updates the per-branch deployment directory.

    Attributes:
        git_timeout_seconds: Timeout for fetch, checkout and pull
        clone_timeout_seconds: Timeout for a fresh clone
        logger: Structured logger instance
    """

    def __init__(
        self,
        git_timeout_seconds: int = 120,
        clone_timeout_seconds: int = 600,
    ) -> None:
        self.git_timeout_seconds = git_timeout_seconds
        self.clone_timeout_seconds = clone_timeout_seconds
        self.logger = get_logger(__name__)

    def reconcile(
        self,
        path: Path,
        remote_url: str,
        branch: str,
        state: SnapshotState,
    ) -> str:
        """Bring ``path`` to the head of ``branch`` on the remote.

        Args:
            path: Deployment directory
            remote_url: Authenticated remote URL
            branch: Branch to check out
            state: Result of RepositorySnapshotResolver.prepare (VALID or ABSENT)

        Returns:
            SHA of the checked-out head commit

        Raises:
            CloneFailedError: Fresh clone failed
            FetchFailedError: Fetch into the existing checkout failed
            ReconcileFailedError: Checkout or fast-forward pull failed
        """
        if state is SnapshotState.VALID:
            return self.update(path, remote_url, branch)
        return self.clone(path, remote_url, branch)

    def clone(self, path: Path, remote_url: str, branch: str) -> str:
        """Shallow-clone ``branch`` into ``path``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        self.logger.info(
            "clone_started",
            path=str(path),
            remote_url=mask_credentials(remote_url),
            branch=branch,
        )

        try:
            git.Git().clone(
                "--branch",
                branch,
                "--depth",
                "1",
                "--",
                remote_url,
                str(path),
                env=GIT_ENV,
                kill_after_timeout=self.clone_timeout_seconds,
            )
        except GitCommandError as e:
            if is_timeout(e):
                message = f"Clone timed out after {self.clone_timeout_seconds}s"
            else:
                message = f"Clone failed: {git_error_message(e)}"
            self.logger.error(
                "clone_failed",
                path=str(path),
                branch=branch,
                error=message,
            )
            self._remove_partial_clone(path)
            raise CloneFailedError(message) from None

        repo = git.Repo(path)
        try:
            sha = repo.head.commit.hexsha
        finally:
            repo.close()

        self.logger.info("clone_completed", path=str(path), branch=branch, commit_sha=sha)
        return sha

    def update(self, path: Path, remote_url: str, branch: str) -> str:
        """Fetch and fast-forward an existing checkout to the remote branch."""
        repo = git.Repo(path)
        try:
            self._ensure_origin(repo, remote_url, branch)
            self._fetch(repo, branch)
            self._checkout(repo, branch)
            self._pull(repo, branch)
            sha = repo.head.commit.hexsha
        finally:
            repo.close()

        self.logger.info("checkout_updated", path=str(path), branch=branch, commit_sha=sha)
        return sha

    def _ensure_origin(self, repo: git.Repo, remote_url: str, branch: str) -> None:
        try:
            origin = repo.remote("origin")
        except ValueError:
            origin = None

        try:
            if origin is None:
                repo.create_remote("origin", remote_url)
                self.logger.info("origin_added", remote_url=mask_credentials(remote_url))
            elif origin.url != remote_url:
                repo.delete_remote(origin)
                repo.create_remote("origin", remote_url)
                self.logger.info("origin_replaced", remote_url=mask_credentials(remote_url))
        except GitCommandError as e:
            raise ReconcileFailedError(
                branch, f"could not configure origin: {git_error_message(e)}"
            ) from None

    def _fetch(self, repo: git.Repo, branch: str) -> None:
        try:
            repo.git.fetch(
                "origin",
                "--prune",
                env=GIT_ENV,
                kill_after_timeout=self.git_timeout_seconds,
            )
        except GitCommandError as e:
            if is_timeout(e):
                message = f"Fetch from origin timed out after {self.git_timeout_seconds}s"
            else:
                message = f"Fetch from origin failed: {git_error_message(e)}"
            self.logger.error("fetch_failed", branch=branch, error=message)
            raise FetchFailedError(message) from None

    def _checkout(self, repo: git.Repo, branch: str) -> None:
        local_exists = any(head.name == branch for head in repo.heads)
        try:
            if local_exists:
                repo.git.checkout(branch, kill_after_timeout=self.git_timeout_seconds)
                self._set_upstream(repo, branch)
            else:
                repo.git.checkout(
                    "-b",
                    branch,
                    "--track",
                    f"origin/{branch}",
                    kill_after_timeout=self.git_timeout_seconds,
                )
        except GitCommandError as e:
            message = self._describe(e, "checkout")
            self.logger.error("checkout_failed", branch=branch, error=message)
            raise ReconcileFailedError(branch, message) from None

    def _set_upstream(self, repo: git.Repo, branch: str) -> None:
        try:
            repo.git.branch(
                f"--set-upstream-to=origin/{branch}",
                branch,
                kill_after_timeout=self.git_timeout_seconds,
            )
        except GitCommandError as e:
            self.logger.warning(
                "set_upstream_failed",
                branch=branch,
                error=git_error_message(e),
            )

    def _pull(self, repo: git.Repo, branch: str) -> None:
        try:
            repo.git.pull(
                "--ff-only",
                "origin",
                branch,
                env=GIT_ENV,
                kill_after_timeout=self.git_timeout_seconds,
            )
        except GitCommandError as e:
            message = self._describe(e, "pull")
            self.logger.error("pull_failed", branch=branch, error=message)
            raise ReconcileFailedError(branch, message) from None

    def _describe(self, error: GitCommandError, operation: str) -> str:
        if is_timeout(error):
            return f"{operation} timed out after {self.git_timeout_seconds}s"
        return git_error_message(error)

    def _remove_partial_clone(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            self.logger.warning(
                "partial_clone_cleanup_failed",
                path=str(path),
                error=str(e),
            )
