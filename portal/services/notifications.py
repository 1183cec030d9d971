"""Notification outbox.

Turns workflow events into ``NotificationLog`` rows, one per recipient,
with rendered subject and body. Delivery (SMTP, webhooks) is done by an
external dispatcher that picks up pending rows.
"""

import logging
from typing import Optional, Dict, Any, List, Iterable
from uuid import UUID

from jinja2 import Template
from sqlalchemy.orm import Session

from portal.core.approval.events import WorkflowEvent, WorkflowEventType
from portal.core.config import get_settings
from portal.db.models import ApprovalWorkflow, Delegation, User
from portal.db.models.notification import NotificationLog, NotificationEventType

logger = logging.getLogger(__name__)


EMAIL_TEMPLATES = {
    NotificationEventType.APPROVAL_NEEDED: {
        "subject": "[{{ app_name }}] Approval needed: {{ document_label }}",
        "body": """
Hello {{ recipient_name }},

A document is waiting for your approval:

Document: {{ document_label }}
{% if amount %}Amount: {{ amount }}
{% endif %}Level: {{ level_order }} - {{ level_name }} ({{ mode | upper }})
{% if delegated_from %}You are approving on behalf of {{ delegated_from }}.
{% endif %}
Review it at: {{ workflow_url }}

---
{{ app_name }}
""",
    },
    NotificationEventType.WORKFLOW_APPROVED: {
        "subject": "[{{ app_name }}] Approved: {{ document_label }}",
        "body": """
Hello {{ recipient_name }},

{{ document_label }} has been approved at every level.
{% if comment %}
Comment: {{ comment }}
{% endif %}
Details: {{ workflow_url }}

---
{{ app_name }}
""",
    },
    NotificationEventType.WORKFLOW_REJECTED: {
        "subject": "[{{ app_name }}] Rejected: {{ document_label }}",
        "body": """
Hello {{ recipient_name }},

{{ document_label }} was rejected by {{ actor_name }} at level {{ level_order }}.

Reason: {{ comment or "No reason provided" }}

Details: {{ workflow_url }}

---
{{ app_name }}
""",
    },
    NotificationEventType.WORKFLOW_CANCELLED: {
        "subject": "[{{ app_name }}] Cancelled: {{ document_label }}",
        "body": """
Hello {{ recipient_name }},

The approval workflow for {{ document_label }} was cancelled{% if actor_name %} by {{ actor_name }}{% endif %}.
{% if comment %}
Comment: {{ comment }}
{% endif %}
---
{{ app_name }}
""",
    },
    NotificationEventType.DELEGATION_RECEIVED: {
        "subject": "[{{ app_name }}] {{ actor_name }} delegated approvals to you",
        "body": """
Hello {{ recipient_name }},

{{ actor_name }} has delegated their approval authority to you
from {{ start_date }} to {{ end_date }}.
{% if comment %}
Reason: {{ comment }}
{% endif %}
---
{{ app_name }}
""",
    },
    NotificationEventType.DELEGATION_CANCELLED: {
        "subject": "[{{ app_name }}] {{ actor_name }} cancelled a delegation to you",
        "body": """
Hello {{ recipient_name }},

{{ actor_name }} has cancelled the delegation from {{ start_date }} to {{ end_date }}.
Approvals already assigned to you stay with you.

---
{{ app_name }}
""",
    },
}

EVENT_NOTIFICATIONS = {
    WorkflowEventType.LEVEL_ACTIVATED: NotificationEventType.APPROVAL_NEEDED,
    WorkflowEventType.WORKFLOW_APPROVED: NotificationEventType.WORKFLOW_APPROVED,
    WorkflowEventType.WORKFLOW_REJECTED: NotificationEventType.WORKFLOW_REJECTED,
    WorkflowEventType.WORKFLOW_CANCELLED: NotificationEventType.WORKFLOW_CANCELLED,
    WorkflowEventType.DELEGATION_CREATED: NotificationEventType.DELEGATION_RECEIVED,
    WorkflowEventType.DELEGATION_CANCELLED: NotificationEventType.DELEGATION_CANCELLED,
}

DOCUMENT_LABELS = {
    "purchase_request": "Purchase request",
    "purchase_order": "Purchase order",
    "invoice": "Invoice",
}


def render_template(event_type: NotificationEventType, context: Dict[str, Any]) -> Dict[str, str]:
    """Render subject and body for a notification type."""
    template = EMAIL_TEMPLATES[event_type]
    return {
        "subject": Template(template["subject"]).render(**context).strip(),
        "body": Template(template["body"]).render(**context).strip(),
    }


class NotificationService:
    """
    Queues notifications for workflow events.
    """

    def __init__(self, db: Session, tenant_id: UUID):
        """
        Initialize notification service.

        Args:
            db: Database session
            tenant_id: Tenant ID
        """
        self.db = db
        self.tenant_id = tenant_id
        self.settings = get_settings()

    def dispatch(self, events: Iterable[WorkflowEvent]) -> List[NotificationLog]:
        """
        Create pending notification rows for events.

        Events without a notification type are ignored.

        Returns:
            The queued notifications
        """
        queued: List[NotificationLog] = []
        for event in events:
            notification_type = EVENT_NOTIFICATIONS.get(event.event_type)
            if notification_type is None:
                continue
            queued.extend(self._queue_event(notification_type, event))

        if queued:
            self.db.flush()
            logger.info("Queued %d notification(s)", len(queued))
        return queued

    def list_pending(self, limit: int = 100) -> List[NotificationLog]:
        """Notifications waiting for the dispatcher, oldest first."""
        return self.db.query(NotificationLog).filter(
            NotificationLog.tenant_id == self.tenant_id,
            NotificationLog.status == "pending",
        ).order_by(NotificationLog.created_at.asc()).limit(limit).all()

    def _queue_event(
        self,
        notification_type: NotificationEventType,
        event: WorkflowEvent,
    ) -> List[NotificationLog]:
        context = self._build_context(event)
        delegated = event.payload.get("delegated_from", {})

        queued = []
        for recipient_id in event.recipients:
            user = self.db.query(User).filter(User.id == recipient_id).first()
            if user is None or not user.is_active:
                logger.warning("Not notifying %s: user missing or inactive", recipient_id)
                continue

            recipient_context = dict(context)
            recipient_context["recipient_name"] = user.name or user.email
            recipient_context["delegated_from"] = self._user_name(_as_uuid(delegated.get(str(recipient_id))))
            rendered = render_template(notification_type, recipient_context)

            log = NotificationLog(
                tenant_id=self.tenant_id,
                channel="email",
                event_type=notification_type.value,
                recipient=user.email,
                user_id=user.id,
                workflow_id=event.workflow_id,
                delegation_id=event.delegation_id,
                subject=rendered["subject"],
                body=rendered["body"],
                payload=event.to_dict(),
                status="pending",
                attempts=0,
                created_at=event.timestamp,
            )
            self.db.add(log)
            queued.append(log)
        return queued

    def _build_context(self, event: WorkflowEvent) -> Dict[str, Any]:
        context: Dict[str, Any] = {
            "app_name": self.settings.app_name,
            "level_order": event.level_order,
            "level_name": event.payload.get("level_name"),
            "mode": event.payload.get("mode", ""),
            "comment": event.comment,
            "actor_name": self._user_name(event.actor_id),
        }

        if event.workflow_id is not None:
            workflow = self.db.query(ApprovalWorkflow).filter(ApprovalWorkflow.id == event.workflow_id).first()
            if workflow is not None:
                label = DOCUMENT_LABELS.get(workflow.document_type, workflow.document_type)
                context["document_label"] = f"{label} {workflow.document_id}"
                context["amount"] = workflow.amount
                context["workflow_url"] = f"{self.settings.portal_url}/approvals/{workflow.id}"

        if event.delegation_id is not None:
            delegation = self.db.query(Delegation).filter(Delegation.id == event.delegation_id).first()
            if delegation is not None:
                context["start_date"] = delegation.start_date.strftime("%Y-%m-%d")
                context["end_date"] = delegation.end_date.strftime("%Y-%m-%d")

        return context

    def _user_name(self, user_id: Optional[UUID]) -> Optional[str]:
        if user_id is None:
            return None
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            return None
        return user.name or user.email


def _as_uuid(value: Optional[str]) -> Optional[UUID]:
    return UUID(value) if value else None
