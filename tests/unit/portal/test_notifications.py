"""Tests for the notification outbox."""

import pytest
from datetime import timedelta
from decimal import Decimal

from portal.core.approval import ApprovalWorkflowService, DocumentRef
from portal.db.models import NotificationLog
from portal.db.models.notification import NotificationEventType
from portal.services import NotificationService
from portal.services.notifications import render_template

from tests.factories import create_member, create_role, create_rule, create_tenant


@pytest.fixture()
def tenant(db_session):
    return create_tenant(db_session)


@pytest.fixture()
def approver_role(db_session, tenant):
    return create_role(db_session, tenant=tenant, name="Approvers")


@pytest.fixture()
def requester(db_session, tenant, approver_role):
    return create_member(db_session, tenant=tenant, role=approver_role, name="Rita Requester",
                         email="rita@example.com")


@pytest.fixture()
def manager(db_session, tenant, approver_role):
    return create_member(db_session, tenant=tenant, role=approver_role, name="Max Manager",
                         email="max@example.com")


@pytest.fixture()
def service(db_session, tenant, clock):
    return ApprovalWorkflowService(db_session, tenant.id, clock=clock)


@pytest.fixture()
def notifications(db_session, tenant):
    return NotificationService(db_session, tenant.id)


def _start(db_session, service, tenant, requester, manager):
    rule = create_rule(db_session, tenant=tenant, levels=[{"name": "Manager", "users": [manager]}])
    return service.start_workflow(
        DocumentRef("purchase_order", "PO-77", amount=Decimal("1250.00"), initiated_by=requester.id),
        rule,
    )


class TestRenderTemplate:

    def test_approval_needed(self):
        rendered = render_template(NotificationEventType.APPROVAL_NEEDED, {
            "app_name": "Portal",
            "recipient_name": "Max",
            "document_label": "Purchase order PO-77",
            "amount": Decimal("1250.00"),
            "level_order": 1,
            "level_name": "Manager",
            "mode": "any",
            "workflow_url": "http://portal/approvals/1",
        })

        assert rendered["subject"] == "[Portal] Approval needed: Purchase order PO-77"
        assert "Level: 1 - Manager (ANY)" in rendered["body"]
        assert "Amount: 1250.00" in rendered["body"]
        assert "on behalf of" not in rendered["body"]

    def test_rejection_without_comment(self):
        rendered = render_template(NotificationEventType.WORKFLOW_REJECTED, {
            "app_name": "Portal",
            "document_label": "Invoice INV-1",
            "actor_name": "Max",
            "level_order": 2,
        })

        assert "Reason: No reason provided" in rendered["body"]


class TestDispatch:
    """Test turning workflow events into outbox rows."""

    def test_level_activation_notifies_approvers(self, db_session, service, notifications, tenant, requester, manager):
        workflow = _start(db_session, service, tenant, requester, manager)

        queued = notifications.dispatch(service.pop_events())

        assert len(queued) == 1
        log = queued[0]
        assert log.event_type == "approval_needed"
        assert log.recipient == "max@example.com"
        assert log.workflow_id == workflow.id
        assert log.status == "pending"
        assert "Purchase order PO-77" in log.subject
        assert log.body.startswith("Hello Max Manager")
        assert log.payload["event_type"] == "level_activated"

    def test_completion_notifies_initiator(self, db_session, service, notifications, tenant, requester, manager):
        workflow = _start(db_session, service, tenant, requester, manager)
        service.pop_events()

        service.record_decision(workflow, workflow.instances[0].id, "rejected", "Too expensive")
        queued = notifications.dispatch(service.pop_events())

        assert [(n.event_type, n.recipient) for n in queued] == [("workflow_rejected", "rita@example.com")]
        assert "Reason: Too expensive" in queued[0].body
        assert "rejected by Max Manager" in queued[0].body

    def test_delegation_notifies_delegate(self, db_session, service, notifications, requester, manager, clock):
        service.create_delegation(requester.id, manager.id, clock.now, clock.now + timedelta(days=3), "Travel")

        queued = notifications.dispatch(service.pop_events())

        assert len(queued) == 1
        assert queued[0].event_type == "delegation_received"
        assert queued[0].subject.endswith("Rita Requester delegated approvals to you")
        assert "from 2026-03-02 to 2026-03-05" in queued[0].body

    def test_delegation_cancellation_notifies_delegate(self, db_session, service, notifications,
                                                        requester, manager, clock):
        delegation = service.create_delegation(requester.id, manager.id, clock.now, clock.now + timedelta(days=3))
        service.pop_events()

        service.cancel_delegation(delegation)
        queued = notifications.dispatch(service.pop_events())

        assert [(n.event_type, n.recipient) for n in queued] == [("delegation_cancelled", "max@example.com")]
        assert queued[0].delegation_id == delegation.id
        assert "Rita Requester has cancelled the delegation from 2026-03-02 to 2026-03-05" in queued[0].body

    def test_delegated_instance_mentions_original_approver(self, db_session, service, notifications,
                                                          tenant, requester, manager, approver_role, clock):
        deputy = create_member(db_session, tenant=tenant, role=approver_role, name="Dee Deputy")
        service.create_delegation(manager.id, deputy.id, clock.now, clock.now + timedelta(days=3))
        service.pop_events()
        _start(db_session, service, tenant, requester, manager)

        queued = notifications.dispatch(service.pop_events())

        assert "You are approving on behalf of Max Manager." in queued[0].body

    def test_events_without_notification_ignored(self, db_session, service, notifications, tenant, requester, manager):
        workflow = _start(db_session, service, tenant, requester, manager)
        service.pop_events()

        service.record_decision(workflow, workflow.instances[0].id, "approved")
        events = service.pop_events()
        queued = notifications.dispatch(events)

        assert len(events) == 2
        assert [n.event_type for n in queued] == ["workflow_approved"]

    def test_inactive_recipient_skipped(self, db_session, service, notifications, tenant, requester, manager):
        _start(db_session, service, tenant, requester, manager)
        manager.is_active = False

        assert notifications.dispatch(service.pop_events()) == []

    def test_list_pending(self, db_session, service, notifications, tenant, requester, manager):
        _start(db_session, service, tenant, requester, manager)
        notifications.dispatch(service.pop_events())

        assert db_session.query(NotificationLog).count() == 1
        assert len(notifications.list_pending()) == 1
