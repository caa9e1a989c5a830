"""Deployment pipeline orchestration.

Drives one deployment from its PENDING record to a terminal status:

1. load the record (a missing record ends the run silently),
2. move to BUILDING,
3. derive the authenticated remote URL,
4. verify the branch exists on the remote,
5. prepare and reconcile the checkout directory,
6. run the build command, move to DEPLOYING, run the deploy command,
7. move to SUCCESS, or to FAILED on the first error,
8. send exactly one notification.

Runs are never retried. Blocking git work runs in worker threads so the
event loop keeps serving webhooks while a deployment is in progress.

Example:
    >>> pipeline = DeploymentPipeline(store, notifier, config.pipeline, config.git)
    >>> status = await pipeline.run(request)
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog

from deploybot.config import GitConfig, PipelineConfig
from deploybot.database.models.deployment import DeploymentStatus
from deploybot.integrations.discord import NotificationSink
from deploybot.logging import bind_deployment_context, mask_credentials
from deploybot.orchestrator.requests import PipelineRequest
from deploybot.orchestrator.state_machine import DeploymentStateMachine
from deploybot.orchestrator.store import DeploymentRecordStore
from deploybot.pipeline.auth import authenticated_url
from deploybot.pipeline.checkout import CheckoutReconciler
from deploybot.pipeline.commands import CommandRunner
from deploybot.pipeline.errors import (
    CommandFailedError,
    DeploymentNotFoundError,
    PipelineError,
)
from deploybot.pipeline.remote import RemoteBranchVerifier
from deploybot.pipeline.snapshot import RepositorySnapshotResolver

logger = structlog.get_logger(__name__)

SHUTDOWN_ERROR = "Deployment interrupted: the service shut down before the run finished"


class DeploymentPipeline:
    """Executes pipeline runs against injected collaborators.

    Attributes:
        store: Deployment record store.
        notifier: Sink receiving the outcome of every run.
        config: Pipeline settings (paths, timeouts, environment variable).
        git_config: Provider tokens for authenticated URLs.
        state_machine: Validates every status write.
    """

    def __init__(
        self,
        store: DeploymentRecordStore,
        notifier: NotificationSink,
        config: PipelineConfig,
        git_config: GitConfig,
        verifier: RemoteBranchVerifier | None = None,
        resolver: RepositorySnapshotResolver | None = None,
        reconciler: CheckoutReconciler | None = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.config = config
        self.git_config = git_config
        self.state_machine = DeploymentStateMachine(store)
        self.verifier = verifier or RemoteBranchVerifier(config.git_timeout_seconds)
        self.resolver = resolver or RepositorySnapshotResolver(config.git_timeout_seconds)
        self.reconciler = reconciler or CheckoutReconciler(
            git_timeout_seconds=config.git_timeout_seconds,
            clone_timeout_seconds=config.clone_timeout_seconds,
        )
        self.runner = runner or CommandRunner()
        self._logger = logger.bind(component="DeploymentPipeline")

    def deployment_path(self, request: PipelineRequest) -> Path:
        """Directory holding the checkout for the request's repository and branch."""
        return self.config.deploy_base_path / request.repository.id / request.branch

    def command_environment(self, request: PipelineRequest, head_sha: str) -> dict[str, str]:
        """Variables exported to the build and deploy commands."""
        return {
            self.config.environment_variable: request.branch_config.environment_label,
            "DEPLOYMENT_ID": request.deployment_id,
            "DEPLOY_BRANCH": request.branch,
            "DEPLOY_COMMIT": head_sha,
        }

    async def run(self, request: PipelineRequest) -> DeploymentStatus | None:
        """Execute one deployment.

        Args:
            request: Deployment to run.

        Returns:
            The terminal status reached (SUCCESS or FAILED), or None when the
            deployment record does not exist.
        """
        bind_deployment_context(request.deployment_id, request.repository.name, request.branch)

        try:
            record = await self.store.get(request.deployment_id)
            if record is None:
                error = DeploymentNotFoundError(request.deployment_id)
                self._logger.error("deployment_not_found", error=str(error))
                return None

            self._logger.info(
                "deployment_started",
                commit_sha=request.commit.id,
                status=record.status.value,
            )
            fields = await self._execute(request)
        except asyncio.CancelledError:
            self._logger.warning("deployment_cancelled")
            await self._finish(request, DeploymentStatus.FAILED, {"error": SHUTDOWN_ERROR})
            raise
        except PipelineError as e:
            self._logger.error(
                "deployment_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self._finish(request, DeploymentStatus.FAILED, self._failure_fields(e))
        except Exception as e:
            self._logger.exception(
                "deployment_failed_unexpectedly",
                error=mask_credentials(str(e)),
                error_type=type(e).__name__,
            )
            return await self._finish(request, DeploymentStatus.FAILED, self._failure_fields(e))

        return await self._finish(request, DeploymentStatus.SUCCESS, fields)

    async def abort(self, request: PipelineRequest, error: str) -> DeploymentStatus:
        """Fail a PENDING deployment whose run never started.

        Used when the run is cancelled while still queued behind another run
        for the same branch. The record is written as FAILED and the outcome
        is notified like any other failure.
        """
        bind_deployment_context(request.deployment_id, request.repository.name, request.branch)
        self._logger.warning("deployment_aborted", error=error)
        return await self._finish(request, DeploymentStatus.FAILED, {"error": error})

    async def _execute(self, request: PipelineRequest) -> dict[str, Any]:
        """Run stages 2 to 6; returns the fields of the SUCCESS write."""
        deployment_id = request.deployment_id
        branch_config = request.branch_config
        repository = request.repository

        await self.state_machine.transition(deployment_id, DeploymentStatus.BUILDING)

        remote_url = authenticated_url(
            repository.git_url,
            repository.provider,
            github_token=self.git_config.github_token,
            gitlab_token=self.git_config.gitlab_token,
        )

        # Nothing on disk changes before the branch is known to exist
        await asyncio.to_thread(
            self.verifier.verify, remote_url, request.branch, repository.provider
        )

        path = self.deployment_path(request)
        state = await asyncio.to_thread(self.resolver.prepare, path)
        head_sha = await asyncio.to_thread(
            self.reconciler.reconcile, path, remote_url, request.branch, state
        )
        self._logger.info("checkout_ready", path=str(path), head_sha=head_sha)

        env = self.command_environment(request, head_sha)

        build_log = await self.runner.run(
            branch_config.build_command,
            path,
            env,
            stage="build",
            timeout_seconds=self.config.build_timeout_seconds,
        )
        await self.state_machine.transition(
            deployment_id,
            DeploymentStatus.DEPLOYING,
            {"build_log": build_log},
        )

        deploy_log = await self.runner.run(
            branch_config.deploy_command,
            path,
            env,
            stage="deploy",
            timeout_seconds=self.config.deploy_timeout_seconds,
        )
        return {"deploy_log": deploy_log}

    @staticmethod
    def _failure_fields(error: Exception) -> dict[str, Any]:
        fields: dict[str, Any] = {"error": mask_credentials(str(error))}
        if isinstance(error, CommandFailedError):
            fields[f"{error.stage}_log"] = error.output
        return fields

    async def _finish(
        self,
        request: PipelineRequest,
        status: DeploymentStatus,
        fields: Mapping[str, Any],
    ) -> DeploymentStatus:
        """Write the terminal status, then notify regardless of the write's outcome."""
        try:
            await self.state_machine.transition(request.deployment_id, status, fields)
        except Exception as e:
            self._logger.error(
                "terminal_status_write_failed",
                target_status=status.value,
                error=mask_credentials(str(e)),
                error_type=type(e).__name__,
            )

        self._logger.info("deployment_finished", status=status.value)

        try:
            await self.notifier.notify(
                request.branch_config.discord_channel_id,
                request.repository,
                request.branch_config,
                request.commit,
                status,
                request.deployment_id,
                error=fields.get("error"),
            )
        except Exception as e:
            self._logger.error(
                "notification_failed",
                error=str(e),
                error_type=type(e).__name__,
            )

        return status
