"""Error taxonomy for the approval workflow.

All errors are raised synchronously from the service layer; the HTTP
layer maps them to status codes.
"""

from typing import Optional
from uuid import UUID


class ApprovalError(Exception):
    """Base class for approval workflow errors."""


class NotFoundError(ApprovalError):
    """Raised when a referenced entity does not exist in the tenant."""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class DuplicateWorkflowError(ApprovalError):
    """Raised when a document already has a non-terminal workflow."""

    def __init__(self, document_type: str, document_id: str, workflow_id: Optional[UUID] = None):
        message = f"Document {document_type}/{document_id} already has an open workflow"
        if workflow_id is not None:
            message = f"{message} {workflow_id}"
        super().__init__(message)
        self.document_type = document_type
        self.document_id = document_id
        self.workflow_id = workflow_id


class InvalidTransitionError(ApprovalError):
    """Raised when an operation is not permitted from the current state."""

    def __init__(self, message: str, from_state: Optional[str] = None, transition: Optional[str] = None):
        super().__init__(message)
        self.from_state = from_state
        self.transition = transition


class UnresolvedApproverError(ApprovalError):
    """A fixed approver no longer refers to an active user.

    Level resolution skips such approvers instead of raising; the error
    is kept so callers validating rule configuration can report it.
    """

    def __init__(self, user_id: UUID):
        super().__init__(f"Approver {user_id} is not an active user")
        self.user_id = user_id


class InvalidRuleError(ApprovalError):
    """Raised when an approval rule configuration is unusable."""


class InvalidDelegationError(ApprovalError):
    """Raised when a delegation request is invalid."""


class InvalidDelegationWindowError(InvalidDelegationError):
    """Raised when a delegation starts after it ends."""

    def __init__(self, start_date, end_date):
        super().__init__(f"Delegation start {start_date} is after end {end_date}")
        self.start_date = start_date
        self.end_date = end_date


class PermissionDeniedError(ApprovalError):
    """Raised when the acting user may not perform an operation."""

    def __init__(self, message: str):
        super().__init__(message)
