"""Event matching and fire-and-forget dispatch of pipeline runs.

The dispatcher turns a push event into a PENDING deployment record and
hands the run to a background asyncio task, so the webhook response never
waits for a build. Runs for the same (repository, branch) are serialized
through a KeyedLockRegistry; runs for different keys proceed in parallel.
"""

from __future__ import annotations

import asyncio

import structlog

from deploybot.database.queries.repository import find_repository_for_event
from deploybot.orchestrator.locks import KeyedLockRegistry
from deploybot.orchestrator.pipeline import SHUTDOWN_ERROR, DeploymentPipeline
from deploybot.orchestrator.requests import PipelineRequest, PushEvent, RepositoryRef
from deploybot.orchestrator.store import DeploymentRecordStore, SessionFactory

logger = structlog.get_logger(__name__)


class DeploymentDispatcher:
    """Creates deployment records for push events and runs them in the background.

    Attributes:
        session_factory: Callable returning new AsyncSession instances.
        store: Deployment record store.
        pipeline: Pipeline executing each run.
        locks: Per-(repository, branch) lock registry.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        store: DeploymentRecordStore,
        pipeline: DeploymentPipeline,
        locks: KeyedLockRegistry | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.store = store
        self.pipeline = pipeline
        self.locks = locks or KeyedLockRegistry()
        self._tasks: set[asyncio.Task[None]] = set()
        self._accepting = True
        self._logger = logger.bind(component="DeploymentDispatcher")

    @property
    def active_runs(self) -> int:
        """Number of runs scheduled or in progress."""
        return len(self._tasks)

    async def handle_push(self, event: PushEvent) -> str | None:
        """Create a deployment for ``event`` and start it in the background.

        Args:
            event: Normalized push event.

        Returns:
            The new deployment id, or None when no active repository or branch
            configuration matches the event (nothing is created then).
        """
        async with self.session_factory() as session:
            repository = await find_repository_for_event(
                session, event.provider, event.repository_name
            )

        if repository is None:
            self._logger.info(
                "push_ignored",
                reason="no matching repository",
                provider=event.provider.value,
                repository=event.repository_name,
            )
            return None

        branch_config = repository.find_branch(event.branch)
        if branch_config is None:
            self._logger.info(
                "push_ignored",
                reason="branch not configured",
                repository=repository.name,
                branch=event.branch,
            )
            return None

        if not self._accepting:
            self._logger.warning(
                "push_rejected_during_shutdown",
                repository=repository.name,
                branch=event.branch,
            )
            return None

        deployment_id = await self.store.create(
            {
                "repository_id": repository.id,
                "branch": event.branch,
                "commit_sha": event.commit.id,
                "commit_message": event.commit.message,
                "author": event.commit.author.name,
            }
        )

        request = PipelineRequest(
            deployment_id=deployment_id,
            repository=RepositoryRef(
                id=str(repository.id),
                name=repository.name,
                git_url=repository.git_url,
                provider=repository.provider,
            ),
            branch_config=branch_config,
            commit=event.commit,
        )
        self.dispatch(request)
        return deployment_id

    def dispatch(self, request: PipelineRequest) -> asyncio.Task[None]:
        """Schedule ``request`` and return immediately."""
        task = asyncio.create_task(
            self._run(request),
            name=f"deployment-{request.deployment_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

        self._logger.info(
            "deployment_dispatched",
            deployment_id=request.deployment_id,
            repository=request.repository.name,
            branch=request.branch,
        )
        return task

    async def _run(self, request: PipelineRequest) -> None:
        started = False
        try:
            async with self.locks.hold(request.lock_key):
                started = True
                await self.pipeline.run(request)
        except asyncio.CancelledError:
            # Cancelled while queued behind another run for the same branch
            if not started:
                await self.pipeline.abort(request, SHUTDOWN_ERROR)
            raise
        except Exception as e:
            self._logger.exception(
                "deployment_task_error",
                deployment_id=request.deployment_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self._logger.warning("deployment_task_cancelled", task=task.get_name())

    async def shutdown(self, grace_seconds: float = 30) -> None:
        """Stop accepting events and wait for outstanding runs.

        Runs still active after ``grace_seconds`` are cancelled.
        """
        self._accepting = False
        pending = set(self._tasks)
        if not pending:
            self._logger.info("dispatcher_stopped", cancelled=0)
            return

        self._logger.info(
            "waiting_for_deployments",
            count=len(pending),
            grace_seconds=grace_seconds,
        )
        _, still_running = await asyncio.wait(pending, timeout=grace_seconds)

        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

        self._logger.info("dispatcher_stopped", cancelled=len(still_running))
