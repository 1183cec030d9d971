"""API routers for the procurement portal."""

from . import approval_rules
from . import approval_workflows
from . import delegations

__all__ = [
    "approval_rules",
    "approval_workflows",
    "delegations",
]
