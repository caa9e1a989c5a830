"""Deployment status state machine.

A deployment moves forward only: PENDING, BUILDING, DEPLOYING, SUCCESS, with
FAILED reachable from every non-terminal status. SUCCESS and FAILED are
terminal. All status writes made by the pipeline go through
``DeploymentStateMachine.transition`` so no record can move backwards or
leave a terminal status.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from deploybot.database.models.base import utc_now
from deploybot.database.models.deployment import DeploymentStatus
from deploybot.orchestrator.store import DeploymentRecordStore
from deploybot.pipeline.errors import DeploymentNotFoundError

logger = structlog.get_logger(__name__)


class InvalidTransitionError(Exception):
    """Raised when an invalid status transition is attempted.

    Attributes:
        current: The current deployment status.
        target: The attempted target status.
        deployment_id: The deployment that failed to transition.
    """

    def __init__(
        self,
        current: DeploymentStatus,
        target: DeploymentStatus,
        deployment_id: str | None = None,
    ):
        self.current = current
        self.target = target
        self.deployment_id = deployment_id
        msg = f"Invalid transition from {current.value} to {target.value}"
        if deployment_id:
            msg += f" for deployment {deployment_id}"
        super().__init__(msg)


# Authoritative state machine definition
VALID_TRANSITIONS: dict[DeploymentStatus, set[DeploymentStatus]] = {
    DeploymentStatus.PENDING: {DeploymentStatus.BUILDING, DeploymentStatus.FAILED},
    DeploymentStatus.BUILDING: {DeploymentStatus.DEPLOYING, DeploymentStatus.FAILED},
    DeploymentStatus.DEPLOYING: {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED},
    DeploymentStatus.SUCCESS: set(),  # Terminal
    DeploymentStatus.FAILED: set(),  # Terminal
}


def validate_transition(current: DeploymentStatus, target: DeploymentStatus) -> bool:
    """Validate if a status transition is allowed.

    Args:
        current: Current deployment status.
        target: Target deployment status.

    Returns:
        True if the transition is valid according to VALID_TRANSITIONS.
    """
    return target in VALID_TRANSITIONS.get(current, set())


class DeploymentStateMachine:
    """Applies validated status transitions through a record store."""

    def __init__(self, store: DeploymentRecordStore):
        self.store = store
        self.logger = logger.bind(component="DeploymentStateMachine")

    async def transition(
        self,
        deployment_id: str,
        target_status: DeploymentStatus,
        fields: Mapping[str, Any] | None = None,
    ) -> DeploymentStatus:
        """Move a deployment to ``target_status``.

        Terminal targets also stamp ``completed_at``. Extra ``fields`` (logs,
        error) are written in the same update as the status.

        Args:
            deployment_id: Deployment to transition.
            target_status: Status to move to.
            fields: Additional columns to write alongside the status.

        Returns:
            The status the deployment had before the transition.

        Raises:
            DeploymentNotFoundError: If the record does not exist.
            InvalidTransitionError: If the transition is not allowed.
        """
        record = await self.store.get(deployment_id)
        if record is None:
            raise DeploymentNotFoundError(deployment_id)

        current_status = record.status
        if not validate_transition(current_status, target_status):
            raise InvalidTransitionError(current_status, target_status, deployment_id)

        values = dict(fields or {})
        values["status"] = target_status
        if target_status.is_terminal:
            values["completed_at"] = utc_now()

        await self.store.update(deployment_id, values)

        self.logger.info(
            "deployment_transition",
            deployment_id=deployment_id,
            from_status=current_status.value,
            to_status=target_status.value,
        )

        return current_status
