"""Classification of the local checkout directory before reconciliation.

A deployment directory is either a usable git working tree (VALID), missing
entirely (ABSENT), or something else that has to be cleared away before a
fresh clone (INVALID): a half-finished clone, a corrupted ``.git``, a plain
directory or a stray file.
"""

from __future__ import annotations

import shutil
from enum import Enum
from pathlib import Path

import git
from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from deploybot.logging import get_logger


class SnapshotState(str, Enum):
    """State of the deployment directory."""

    VALID = "valid"
    ABSENT = "absent"
    INVALID = "invalid"


class RepositorySnapshotResolver:
    """Inspects and, if needed, clears the deployment directory.

    Attributes:
        git_timeout_seconds: Timeout applied to the ``git status`` check
        logger: Structured logger instance
    """

    def __init__(self, git_timeout_seconds: int = 120) -> None:
        self.git_timeout_seconds = git_timeout_seconds
        self.logger = get_logger(__name__)

    def inspect(self, path: Path) -> SnapshotState:
        """Classify ``path`` without modifying it.

        VALID requires the path to open as a repository rooted at ``path``
        itself (parents are not searched) and ``git status`` to succeed.
        """
        if not path.exists():
            return SnapshotState.ABSENT

        try:
            repo = git.Repo(path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            return SnapshotState.INVALID

        try:
            working_tree = repo.working_tree_dir
            if working_tree is None or Path(working_tree).resolve() != path.resolve():
                return SnapshotState.INVALID
            repo.git.status(kill_after_timeout=self.git_timeout_seconds)
        except GitCommandError as e:
            self.logger.warning(
                "snapshot_status_failed",
                path=str(path),
                error=str(e.stderr or e).strip(),
            )
            return SnapshotState.INVALID
        finally:
            repo.close()

        return SnapshotState.VALID

    def prepare(self, path: Path) -> SnapshotState:
        """Inspect ``path`` and wipe it when INVALID.

        Wipe failures are logged and otherwise ignored; the subsequent clone
        reports the real problem if the directory is still in the way.

        Returns:
            VALID or ABSENT, the state the reconciler should act on.
        """
        state = self.inspect(path)
        self.logger.info("snapshot_inspected", path=str(path), state=state.value)

        if state is not SnapshotState.INVALID:
            return state

        self.wipe(path)
        return SnapshotState.ABSENT

    def wipe(self, path: Path) -> None:
        """Best-effort recursive removal of ``path``."""
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink(missing_ok=True)
            self.logger.info("snapshot_wiped", path=str(path))
        except OSError as e:
            self.logger.warning(
                "snapshot_wipe_failed",
                path=str(path),
                error=str(e),
                error_type=type(e).__name__,
            )
