"""Deployment orchestration for Deploybot.

This package implements the deployment status state machine, the pipeline
that drives a run from PENDING to a terminal status, the record store the
pipeline writes through, the dispatcher that starts runs from push events
and the announcer that forwards pull request activity.
"""

from __future__ import annotations

from deploybot.orchestrator.announcer import PullRequestAnnouncer
from deploybot.orchestrator.dispatcher import DeploymentDispatcher
from deploybot.orchestrator.locks import KeyedLockRegistry
from deploybot.orchestrator.pipeline import DeploymentPipeline
from deploybot.orchestrator.requests import (
    CommitAuthor,
    CommitInfo,
    PipelineRequest,
    PullRequestAction,
    PullRequestEvent,
    PushEvent,
    RepositoryRef,
)
from deploybot.orchestrator.state_machine import (
    VALID_TRANSITIONS,
    DeploymentStateMachine,
    InvalidTransitionError,
    validate_transition,
)
from deploybot.orchestrator.store import (
    DeploymentRecord,
    DeploymentRecordStore,
    SqlDeploymentStore,
)

__all__ = [
    # Pipeline
    "DeploymentPipeline",
    "DeploymentDispatcher",
    "KeyedLockRegistry",
    "PullRequestAnnouncer",
    # Requests
    "PipelineRequest",
    "PushEvent",
    "PullRequestAction",
    "PullRequestEvent",
    "RepositoryRef",
    "CommitInfo",
    "CommitAuthor",
    # State machine
    "VALID_TRANSITIONS",
    "DeploymentStateMachine",
    "InvalidTransitionError",
    "validate_transition",
    # Store
    "DeploymentRecord",
    "DeploymentRecordStore",
    "SqlDeploymentStore",
]
