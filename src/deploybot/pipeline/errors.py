"""Error taxonomy for the deployment pipeline.

Every stage of a pipeline run raises a subclass of PipelineError. The
orchestrator catches them once, records ``str(error)`` on the deployment and
forwards the same text to the failure notification, so messages here are
written for the operator reading them in a chat channel. None of them may
contain credentials.
"""

from __future__ import annotations

from collections.abc import Iterable


class PipelineError(Exception):
    """Base class for errors that fail a single pipeline run."""


class RemoteUnreachableError(PipelineError):
    """The remote could not be listed, or returned no usable branch data."""


class BranchNotFoundError(PipelineError):
    """The target branch does not exist on the remote.

    Attributes:
        branch: Branch that was requested.
        available: Sorted list of branch names found on the remote.
    """

    def __init__(self, branch: str, available: Iterable[str]) -> None:
        self.branch = branch
        self.available = sorted(available)
        listing = ", ".join(self.available) if self.available else "(none)"
        super().__init__(
            f'Branch "{branch}" does not exist on the remote repository. '
            f"Available branches: {listing}"
        )


class AuthenticationFailedError(PipelineError):
    """The remote rejected the credentials (or no credentials were sent).

    Attributes:
        hint: Remediation naming the credential to check.
    """

    def __init__(self, message: str, hint: str) -> None:
        self.hint = hint
        super().__init__(f"Authentication failed: {message}. {hint}")


class RepoNotFoundError(PipelineError):
    """The remote reports the repository as missing or inaccessible.

    Attributes:
        hint: Remediation pointing at the repository URL.
    """

    def __init__(self, message: str, hint: str) -> None:
        self.hint = hint
        super().__init__(f"Repository not found: {message}. {hint}")


class FetchFailedError(PipelineError):
    """Fetching from origin into an existing checkout failed."""


class ReconcileFailedError(PipelineError):
    """Checkout or fast-forward pull of the target branch failed.

    Attributes:
        branch: Branch being reconciled.
    """

    def __init__(self, branch: str, message: str) -> None:
        self.branch = branch
        super().__init__(f'Could not update branch "{branch}": {message}')


class CloneFailedError(PipelineError):
    """A fresh clone of the repository failed."""


class CommandFailedError(PipelineError):
    """A build or deploy command exited non-zero or timed out.

    Attributes:
        stage: "build" or "deploy".
        exit_code: Process exit status (None when killed on timeout).
        output: Combined stdout/stderr captured before the failure.
        timed_out: True if the command was killed after its timeout.
    """

    def __init__(
        self,
        stage: str,
        exit_code: int | None,
        output: str,
        timed_out: bool = False,
        timeout_seconds: int | None = None,
    ) -> None:
        self.stage = stage
        self.exit_code = exit_code
        self.output = output
        self.timed_out = timed_out
        if timed_out:
            headline = f"{stage.capitalize()} command timed out after {timeout_seconds}s"
        else:
            headline = f"{stage.capitalize()} command failed with exit code {exit_code}"
        detail = output.strip()
        super().__init__(f"{headline}:\n{detail}" if detail else headline)


class DeploymentNotFoundError(PipelineError):
    """The deployment record to run does not exist in the store.

    Attributes:
        deployment_id: Identifier that was looked up.
    """

    def __init__(self, deployment_id: str) -> None:
        self.deployment_id = deployment_id
        super().__init__(f"Deployment {deployment_id} not found")
