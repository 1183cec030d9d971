"""Workflow state machine implementation.

Validates workflow status transitions and produces transition records.
Persistence is left to the caller.
"""

from datetime import datetime
from typing import Optional, Dict, Any, Callable
from uuid import UUID
import uuid

from portal.core.errors import InvalidTransitionError
from .states import (
    WorkflowStatus,
    WorkflowTransition,
    get_transition_rule,
)


class WorkflowStateMachine:
    """
    State machine for a single approval workflow.

    Each transition is checked against the transition table and returns
    a record the caller stores as workflow history.
    """

    def __init__(
        self,
        workflow_id: UUID,
        current_state: WorkflowStatus,
        tenant_id: UUID,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the state machine.

        Args:
            workflow_id: ID of the workflow
            current_state: Current workflow status
            tenant_id: Tenant ID for scoping
            clock: Callable returning the current UTC time
        """
        self.workflow_id = workflow_id
        self._state = current_state
        self.tenant_id = tenant_id
        self._clock = clock or datetime.utcnow

    @property
    def state(self) -> WorkflowStatus:
        """Current state of the workflow."""
        return self._state

    def transition(
        self,
        transition: WorkflowTransition,
        *,
        comment: Optional[str] = None,
        user_id: Optional[UUID] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Perform a state transition.

        Args:
            transition: The transition to perform
            comment: Optional comment
            user_id: ID of user performing the transition
            metadata: Additional metadata to record

        Returns:
            The transition record (from/to state, actor, timestamp)

        Raises:
            InvalidTransitionError: If the transition is invalid
        """
        rule = get_transition_rule(self._state, transition)
        if rule is None:
            raise InvalidTransitionError(
                f"Cannot perform {transition.value} from state {self._state.value}",
                self._state.value,
                transition.value,
            )

        record = {
            "id": uuid.uuid4(),
            "workflow_id": self.workflow_id,
            "from_state": self._state.value,
            "to_state": rule.to_state.value,
            "transition": transition.value,
            "user_id": user_id,
            "comment": comment,
            "metadata": metadata or {},
            "timestamp": self._clock(),
        }
        self._state = rule.to_state
        return record
