"""Unit tests for the deployment state machine.

Tests cover:
- Valid state transitions
- Invalid state transition handling
- completed_at stamping on terminal transitions
- Extra fields written with the status
- Missing records
"""

from __future__ import annotations

import pytest

from deploybot.database.models.deployment import DeploymentStatus
from deploybot.orchestrator.state_machine import (
    VALID_TRANSITIONS,
    DeploymentStateMachine,
    InvalidTransitionError,
    validate_transition,
)
from deploybot.pipeline.errors import DeploymentNotFoundError


async def _pending(store) -> str:
    return await store.create(
        {"repository_id": "repo-1", "branch": "main", "commit_sha": "abc1234"}
    )


class TestValidTransitions:
    """Test the VALID_TRANSITIONS mapping and validation."""

    def test_valid_transitions_definition(self):
        """Verify VALID_TRANSITIONS includes all DeploymentStatus values."""
        assert set(VALID_TRANSITIONS) == set(DeploymentStatus)

    @pytest.mark.parametrize(
        "current,target,expected",
        [
            # Valid transitions
            (DeploymentStatus.PENDING, DeploymentStatus.BUILDING, True),
            (DeploymentStatus.PENDING, DeploymentStatus.FAILED, True),
            (DeploymentStatus.BUILDING, DeploymentStatus.DEPLOYING, True),
            (DeploymentStatus.BUILDING, DeploymentStatus.FAILED, True),
            (DeploymentStatus.DEPLOYING, DeploymentStatus.SUCCESS, True),
            (DeploymentStatus.DEPLOYING, DeploymentStatus.FAILED, True),
            # Invalid transitions
            (DeploymentStatus.PENDING, DeploymentStatus.SUCCESS, False),
            (DeploymentStatus.PENDING, DeploymentStatus.DEPLOYING, False),
            (DeploymentStatus.BUILDING, DeploymentStatus.SUCCESS, False),
            (DeploymentStatus.DEPLOYING, DeploymentStatus.BUILDING, False),
            (DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, False),
            (DeploymentStatus.FAILED, DeploymentStatus.BUILDING, False),
            (DeploymentStatus.FAILED, DeploymentStatus.FAILED, False),
        ],
    )
    def test_validate_transition(self, current, target, expected):
        """Test validate_transition for various state combinations."""
        assert validate_transition(current, target) == expected

    def test_terminal_states_have_no_exits(self):
        """Test that SUCCESS and FAILED are terminal."""
        for status in DeploymentStatus:
            assert (VALID_TRANSITIONS[status] == set()) == status.is_terminal


class TestInvalidTransitionError:
    """Test the InvalidTransitionError exception."""

    def test_error_without_deployment_id(self):
        """Test error message without deployment ID."""
        error = InvalidTransitionError(DeploymentStatus.PENDING, DeploymentStatus.SUCCESS)
        assert "PENDING" in str(error)
        assert "SUCCESS" in str(error)
        assert error.deployment_id is None

    def test_error_with_deployment_id(self):
        """Test error message with deployment ID."""
        error = InvalidTransitionError(
            DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, "dep-42"
        )
        assert "dep-42" in str(error)
        assert error.current == DeploymentStatus.SUCCESS
        assert error.target == DeploymentStatus.FAILED


class TestDeploymentStateMachine:
    """Test transitions applied through a record store."""

    @pytest.mark.asyncio
    async def test_transition_returns_previous_status(self, store):
        """Test a valid transition updates the record and returns the old status."""
        deployment_id = await _pending(store)
        machine = DeploymentStateMachine(store)

        previous = await machine.transition(deployment_id, DeploymentStatus.BUILDING)

        assert previous == DeploymentStatus.PENDING
        assert store.records[deployment_id].status == DeploymentStatus.BUILDING
        assert store.records[deployment_id].completed_at is None

    @pytest.mark.asyncio
    async def test_terminal_transition_sets_completed_at(self, store):
        """Test that reaching a terminal status stamps completed_at."""
        deployment_id = await _pending(store)
        machine = DeploymentStateMachine(store)

        await machine.transition(deployment_id, DeploymentStatus.FAILED, {"error": "boom"})

        record = store.records[deployment_id]
        assert record.status == DeploymentStatus.FAILED
        assert record.error == "boom"
        assert record.completed_at is not None
        assert record.completed_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_fields_written_with_status(self, store):
        """Test that extra fields go into the same update as the status."""
        deployment_id = await _pending(store)
        machine = DeploymentStateMachine(store)
        await machine.transition(deployment_id, DeploymentStatus.BUILDING)

        await machine.transition(
            deployment_id, DeploymentStatus.DEPLOYING, {"build_log": "compiled"}
        )

        _, fields = store.updates[-1]
        assert fields == {"status": DeploymentStatus.DEPLOYING, "build_log": "compiled"}

    @pytest.mark.asyncio
    async def test_invalid_transition_raises_and_writes_nothing(self, store):
        """Test that an invalid transition leaves the record untouched."""
        deployment_id = await _pending(store)
        machine = DeploymentStateMachine(store)

        with pytest.raises(InvalidTransitionError):
            await machine.transition(deployment_id, DeploymentStatus.SUCCESS)

        assert store.updates == []
        assert store.records[deployment_id].status == DeploymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_terminal_status_is_final(self, store):
        """Test that a FAILED deployment cannot move again."""
        deployment_id = await _pending(store)
        machine = DeploymentStateMachine(store)
        await machine.transition(deployment_id, DeploymentStatus.FAILED)

        with pytest.raises(InvalidTransitionError):
            await machine.transition(deployment_id, DeploymentStatus.BUILDING)

    @pytest.mark.asyncio
    async def test_missing_record_raises(self, store):
        """Test that transitioning an unknown deployment raises."""
        machine = DeploymentStateMachine(store)

        with pytest.raises(DeploymentNotFoundError, match="missing-id"):
            await machine.transition("missing-id", DeploymentStatus.BUILDING)
