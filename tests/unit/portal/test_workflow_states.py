"""Tests for the approval workflow state machine."""

import pytest
from uuid import uuid4
from datetime import datetime

from portal.core.approval.states import (
    WorkflowStatus, WorkflowTransition, InstanceDecision,
    VALID_TRANSITIONS, OPEN_STATES,
    get_transition_rule, can_change_decision,
)
from portal.core.approval.machine import WorkflowStateMachine
from portal.core.errors import InvalidTransitionError


class TestWorkflowStates:
    """Test workflow state definitions."""

    def test_all_states_defined(self):
        """Test that all expected states exist."""
        expected = ["pending", "in_progress", "approved", "rejected", "cancelled"]
        assert sorted(s.value for s in WorkflowStatus) == sorted(expected)

    def test_open_states(self):
        assert OPEN_STATES == {WorkflowStatus.PENDING, WorkflowStatus.IN_PROGRESS}

    def test_closed_states_have_no_transitions(self):
        for state in (WorkflowStatus.APPROVED, WorkflowStatus.REJECTED, WorkflowStatus.CANCELLED):
            assert state not in OPEN_STATES
            assert state not in VALID_TRANSITIONS


class TestWorkflowTransitions:
    """Test valid state transitions."""

    def test_pending_transitions(self):
        assert WorkflowTransition.ACTIVATE in VALID_TRANSITIONS[WorkflowStatus.PENDING]
        assert WorkflowTransition.CANCEL in VALID_TRANSITIONS[WorkflowStatus.PENDING]
        assert WorkflowTransition.APPROVE not in VALID_TRANSITIONS[WorkflowStatus.PENDING]
        assert WorkflowTransition.ADVANCE not in VALID_TRANSITIONS[WorkflowStatus.PENDING]

    def test_in_progress_transitions(self):
        for transition in (
            WorkflowTransition.ADVANCE,
            WorkflowTransition.APPROVE,
            WorkflowTransition.REJECT,
            WorkflowTransition.CANCEL,
        ):
            assert transition in VALID_TRANSITIONS[WorkflowStatus.IN_PROGRESS]
        assert WorkflowTransition.ACTIVATE not in VALID_TRANSITIONS[WorkflowStatus.IN_PROGRESS]

    def test_target_states(self):
        assert get_transition_rule(WorkflowStatus.PENDING, WorkflowTransition.ACTIVATE).to_state == WorkflowStatus.IN_PROGRESS
        assert get_transition_rule(WorkflowStatus.IN_PROGRESS, WorkflowTransition.ADVANCE).to_state == WorkflowStatus.IN_PROGRESS
        assert get_transition_rule(WorkflowStatus.IN_PROGRESS, WorkflowTransition.REJECT).to_state == WorkflowStatus.REJECTED
        assert get_transition_rule(WorkflowStatus.APPROVED, WorkflowTransition.CANCEL) is None

    def test_get_transition_rule(self):
        rule = get_transition_rule(WorkflowStatus.IN_PROGRESS, WorkflowTransition.APPROVE)
        assert rule is not None
        assert rule.from_state == WorkflowStatus.IN_PROGRESS
        assert rule.to_state == WorkflowStatus.APPROVED


class TestInstanceDecisions:
    """Test instance decision changes."""

    def test_pending_can_be_decided(self):
        assert can_change_decision(InstanceDecision.PENDING, InstanceDecision.APPROVED)
        assert can_change_decision(InstanceDecision.PENDING, InstanceDecision.REJECTED)
        assert can_change_decision(InstanceDecision.PENDING, InstanceDecision.SKIPPED)

    def test_decided_instances_are_final(self):
        for decided in (InstanceDecision.APPROVED, InstanceDecision.REJECTED, InstanceDecision.SKIPPED):
            for new in InstanceDecision:
                assert not can_change_decision(decided, new)


class TestWorkflowStateMachine:
    """Test the WorkflowStateMachine class."""

    @pytest.fixture
    def machine(self):
        return WorkflowStateMachine(
            workflow_id=uuid4(),
            current_state=WorkflowStatus.PENDING,
            tenant_id=uuid4(),
            clock=lambda: datetime(2026, 1, 1, 12, 0, 0),
        )

    def test_initial_state(self, machine):
        assert machine.state == WorkflowStatus.PENDING

    def test_transition_returns_record(self, machine):
        user_id = uuid4()
        record = machine.transition(
            WorkflowTransition.ACTIVATE,
            user_id=user_id,
            metadata={"level_name": "Manager"},
        )

        assert machine.state == WorkflowStatus.IN_PROGRESS
        assert record["from_state"] == "pending"
        assert record["to_state"] == "in_progress"
        assert record["user_id"] == user_id
        assert record["metadata"] == {"level_name": "Manager"}
        assert record["timestamp"] == datetime(2026, 1, 1, 12, 0, 0)

    def test_invalid_transition_raises(self, machine):
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.transition(WorkflowTransition.APPROVE)

        assert exc_info.value.from_state == "pending"
        assert exc_info.value.transition == "approve"
        assert machine.state == WorkflowStatus.PENDING

    def test_no_transition_after_reject(self, machine):
        machine.transition(WorkflowTransition.ACTIVATE)
        record = machine.transition(WorkflowTransition.REJECT, comment="Over budget")

        assert record["comment"] == "Over budget"
        for transition in WorkflowTransition:
            with pytest.raises(InvalidTransitionError):
                machine.transition(transition)
        assert machine.state == WorkflowStatus.REJECTED
