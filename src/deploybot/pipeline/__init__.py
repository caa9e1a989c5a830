"""Git and shell operations used by a deployment run.

This package implements remote branch verification, classification of the
local checkout, checkout reconciliation, build/deploy command execution and
the error taxonomy those stages raise.
"""

from __future__ import annotations

from deploybot.pipeline.auth import authenticated_url, mask_credentials
from deploybot.pipeline.checkout import CheckoutReconciler
from deploybot.pipeline.commands import CommandRunner
from deploybot.pipeline.errors import (
    AuthenticationFailedError,
    BranchNotFoundError,
    CloneFailedError,
    CommandFailedError,
    DeploymentNotFoundError,
    FetchFailedError,
    PipelineError,
    ReconcileFailedError,
    RemoteUnreachableError,
    RepoNotFoundError,
)
from deploybot.pipeline.remote import (
    RemoteBranchVerifier,
    classify_remote_error,
    parse_heads,
)
from deploybot.pipeline.snapshot import RepositorySnapshotResolver, SnapshotState

__all__ = [
    # Git operations
    "RemoteBranchVerifier",
    "classify_remote_error",
    "parse_heads",
    "RepositorySnapshotResolver",
    "SnapshotState",
    "CheckoutReconciler",
    # Commands
    "CommandRunner",
    # Credentials
    "authenticated_url",
    "mask_credentials",
    # Errors
    "PipelineError",
    "RemoteUnreachableError",
    "BranchNotFoundError",
    "AuthenticationFailedError",
    "RepoNotFoundError",
    "FetchFailedError",
    "ReconcileFailedError",
    "CloneFailedError",
    "CommandFailedError",
    "DeploymentNotFoundError",
]
