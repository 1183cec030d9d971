"""Integration tests for the approval HTTP API.

Runs the FastAPI application against the per-test SQLite database with
tenants seeded through the same helpers the CLI uses.
"""

import pytest
from datetime import datetime, timedelta
from uuid import uuid4

from portal.db.models import NotificationLog
from portal.db.seed import get_role_by_name, seed_tenant

from tests.factories import add_membership, auth_headers, create_tenant, create_user


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def tenant(db_session):
    return seed_tenant(db_session, name="Acme Procurement", slug="acme")


def _member(db_session, tenant, role_name, email, name):
    user = create_user(db_session, email=email, name=name)
    add_membership(db_session, tenant=tenant, user=user, role=get_role_by_name(db_session, tenant.id, role_name))
    return user


@pytest.fixture()
def users(db_session, tenant):
    users = {
        "admin": _member(db_session, tenant, "Purchase Admin", "admin@acme.test", "Alex Admin"),
        "manager": _member(db_session, tenant, "Purchase Approver", "manager@acme.test", "Morgan Manager"),
        "cfo": _member(db_session, tenant, "Purchase Approver", "cfo@acme.test", "Casey CFO"),
        "requester": _member(db_session, tenant, "Requester", "requester@acme.test", "Riley Requester"),
        "viewer": _member(db_session, tenant, "Viewer", "viewer@acme.test", "Vic Viewer"),
    }
    db_session.commit()
    return users


@pytest.fixture()
def headers(users, tenant):
    return {key: auth_headers(user, tenant) for key, user in users.items()}


@pytest.fixture()
def rule(client, db_session, tenant, users, headers):
    """Two-level rule: any purchase approver, then the CFO."""
    approver_role = get_role_by_name(db_session, tenant.id, "Purchase Approver")
    response = client.post("/api/approval-rules", headers=headers["admin"], json={
        "name": "Standard purchases",
        "document_type": "purchase_request",
        "max_amount": "50000",
        "levels": [
            {"name": "Purchasing", "mode": "any", "approvers": [{"role_id": str(approver_role.id)}]},
            {"name": "CFO", "mode": "all", "approvers": [{"user_id": str(users["cfo"].id)}]},
        ],
    })
    assert response.status_code == 201, response.text
    return response.json()


def _start(client, headers, document_id="PR-2001", amount="1200.00"):
    return client.post("/api/approval-workflows", headers=headers, json={
        "document_type": "purchase_request",
        "document_id": document_id,
        "amount": amount,
    })


def _instance_for(workflow, user, level_order=None):
    return next(
        i for i in workflow["instances"]
        if i["approver_id"] == str(user.id)
        and i["decision"] == "pending"
        and (level_order is None or i["level_order"] == level_order)
    )


# ---------------------------------------------------------------------------
# Health and auth
# ---------------------------------------------------------------------------

class TestHealthAndAuth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_requires_token(self, client, tenant):
        response = client.get("/api/approval-rules", headers={"X-Tenant-ID": str(tenant.id)})

        assert response.status_code == 401

    def test_invalid_token(self, client, tenant):
        response = client.get("/api/approval-rules", headers={
            "Authorization": "Bearer not-a-token",
            "X-Tenant-ID": str(tenant.id),
        })

        assert response.status_code == 401

    def test_requires_membership(self, client, db_session, users):
        other = create_tenant(db_session)
        db_session.commit()

        response = client.get("/api/approval-rules", headers=auth_headers(users["admin"], other))

        assert response.status_code == 403


# ---------------------------------------------------------------------------
# Approval rules
# ---------------------------------------------------------------------------

class TestApprovalRulesAPI:

    def test_create_numbers_levels(self, rule):
        assert [(l["level_order"], l["name"], l["mode"]) for l in rule["levels"]] == [
            (1, "Purchasing", "any"),
            (2, "CFO", "all"),
        ]

    def test_list_and_get(self, client, headers, rule):
        listed = client.get("/api/approval-rules", headers=headers["viewer"])
        fetched = client.get(f"/api/approval-rules/{rule['id']}", headers=headers["viewer"])

        assert listed.status_code == 200
        assert [r["id"] for r in listed.json()] == [rule["id"]]
        assert fetched.json()["name"] == "Standard purchases"

    def test_unknown_rule(self, client, headers, users):
        response = client.get(f"/api/approval-rules/{uuid4()}", headers=headers["admin"])

        assert response.status_code == 404

    def test_viewer_cannot_create(self, client, headers, users):
        response = client.post("/api/approval-rules", headers=headers["viewer"], json={
            "name": "Sneaky",
            "levels": [{"name": "L1", "approvers": [{"user_id": str(users["viewer"].id)}]}],
        })

        assert response.status_code == 403

    def test_approver_needs_exactly_one_reference(self, client, headers, users):
        response = client.post("/api/approval-rules", headers=headers["admin"], json={
            "name": "Ambiguous",
            "levels": [{"name": "L1", "approvers": [{}]}],
        })

        assert response.status_code == 422

    def test_invalid_bounds(self, client, headers, users):
        response = client.post("/api/approval-rules", headers=headers["admin"], json={
            "name": "Backwards",
            "min_amount": "100",
            "max_amount": "10",
            "levels": [{"name": "L1", "approvers": [{"user_id": str(users["cfo"].id)}]}],
        })

        assert response.status_code == 400

    def test_update_metadata(self, client, headers, rule):
        response = client.put(f"/api/approval-rules/{rule['id']}", headers=headers["admin"], json={
            "priority": 5,
            "is_active": False,
        })

        assert response.status_code == 200
        assert response.json()["priority"] == 5
        assert response.json()["is_active"] is False
        assert len(response.json()["levels"]) == 2

    def test_delete_refused_while_workflow_open(self, client, headers, rule):
        assert _start(client, headers["requester"]).status_code == 201

        response = client.delete(f"/api/approval-rules/{rule['id']}", headers=headers["admin"])

        assert response.status_code == 400

    def test_delete(self, client, headers, rule):
        response = client.delete(f"/api/approval-rules/{rule['id']}", headers=headers["admin"])

        assert response.status_code == 200
        assert client.get(f"/api/approval-rules/{rule['id']}", headers=headers["admin"]).status_code == 404

    def test_available_approvers(self, client, headers, users):
        response = client.get("/api/approval-rules/approvers/available", headers=headers["admin"])

        names = [u["name"] for u in response.json()]
        assert names == ["Alex Admin", "Casey CFO", "Morgan Manager"]


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------

class TestWorkflowAPI:

    def test_start_matches_rule(self, client, headers, users, rule):
        response = _start(client, headers["requester"])

        assert response.status_code == 201, response.text
        workflow = response.json()
        assert workflow["status"] == "in_progress"
        assert workflow["rule_id"] == rule["id"]
        assert workflow["current_level_order"] == 1
        assert {i["approver_id"] for i in workflow["instances"]} == {str(users["manager"].id), str(users["cfo"].id)}

    def test_start_queues_notifications(self, client, db_session, headers, rule):
        _start(client, headers["requester"])

        assert db_session.query(NotificationLog).filter(NotificationLog.event_type == "approval_needed").count() == 2

    def test_duplicate_start_conflicts(self, client, headers, rule):
        assert _start(client, headers["requester"]).status_code == 201

        response = _start(client, headers["requester"])

        assert response.status_code == 409

    def test_no_matching_rule(self, client, headers, rule):
        response = _start(client, headers["requester"], amount="999999.00")

        assert response.status_code == 422

    def test_viewer_cannot_start(self, client, headers, rule):
        assert _start(client, headers["viewer"]).status_code == 403

    def test_full_approval(self, client, headers, users, rule):
        workflow = _start(client, headers["requester"]).json()

        instance = _instance_for(workflow, users["manager"])
        response = client.post(
            f"/api/approval-workflows/instances/{instance['id']}/approve",
            headers=headers["manager"], json={"comment": "OK from purchasing"},
        )
        assert response.status_code == 200, response.text
        workflow = response.json()
        assert workflow["current_level_order"] == 2

        instance = _instance_for(workflow, users["cfo"], level_order=2)
        response = client.post(
            f"/api/approval-workflows/instances/{instance['id']}/approve",
            headers=headers["cfo"], json={},
        )

        assert response.json()["status"] == "approved"
        assert response.json()["completed_at"] is not None

    def test_only_assigned_approver_decides(self, client, headers, users, rule):
        workflow = _start(client, headers["requester"]).json()
        instance = _instance_for(workflow, users["manager"])

        response = client.post(
            f"/api/approval-workflows/instances/{instance['id']}/approve",
            headers=headers["admin"], json={},
        )

        assert response.status_code == 403

    def test_reject_requires_comment(self, client, headers, users, rule):
        workflow = _start(client, headers["requester"]).json()
        instance = _instance_for(workflow, users["manager"])

        response = client.post(
            f"/api/approval-workflows/instances/{instance['id']}/reject",
            headers=headers["manager"], json={},
        )

        assert response.status_code == 400

    def test_reject(self, client, headers, users, rule):
        workflow = _start(client, headers["requester"]).json()
        instance = _instance_for(workflow, users["manager"])

        response = client.post(
            f"/api/approval-workflows/instances/{instance['id']}/reject",
            headers=headers["manager"], json={"comment": "Use the framework contract"},
        )

        body = response.json()
        assert body["status"] == "rejected"
        assert body["final_comment"] == "Use the framework contract"
        assert all(i["decision"] != "pending" for i in body["instances"])

    def test_decide_twice(self, client, headers, users, rule):
        workflow = _start(client, headers["requester"]).json()
        instance = _instance_for(workflow, users["manager"])
        url = f"/api/approval-workflows/instances/{instance['id']}/approve"
        client.post(url, headers=headers["manager"], json={})

        response = client.post(url, headers=headers["manager"], json={})

        assert response.status_code == 400

    def test_pending_list(self, client, headers, users, rule):
        workflow = _start(client, headers["requester"]).json()

        manager_pending = client.get("/api/approval-workflows/pending", headers=headers["manager"]).json()
        admin_pending = client.get("/api/approval-workflows/pending", headers=headers["admin"]).json()

        assert [p["instance"]["workflow_id"] for p in manager_pending] == [workflow["id"]]
        assert manager_pending[0]["document_id"] == "PR-2001"
        assert admin_pending == []

    def test_get_by_document_and_history(self, client, headers, users, rule):
        workflow = _start(client, headers["requester"]).json()

        by_document = client.get(
            "/api/approval-workflows/document/purchase_request/PR-2001", headers=headers["viewer"],
        )
        history = client.get(f"/api/approval-workflows/{workflow['id']}/history", headers=headers["viewer"])

        assert by_document.json()["id"] == workflow["id"]
        assert [h["transition"] for h in history.json()] == ["activate"]

    def test_document_without_workflow(self, client, headers, users):
        response = client.get(
            "/api/approval-workflows/document/invoice/INV-404", headers=headers["viewer"],
        )

        assert response.status_code == 404

    def test_cancel_by_initiator(self, client, headers, rule):
        workflow = _start(client, headers["requester"]).json()

        response = client.post(
            f"/api/approval-workflows/{workflow['id']}/cancel",
            headers=headers["requester"], json={"comment": "Raised in error"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_cancel_requires_initiator_or_manage(self, client, db_session, tenant, headers, rule):
        workflow = _start(client, headers["requester"]).json()
        other = create_user(db_session, email="other@acme.test")
        add_membership(db_session, tenant=tenant, user=other, role=get_role_by_name(db_session, tenant.id, "Requester"))
        db_session.commit()

        denied = client.post(
            f"/api/approval-workflows/{workflow['id']}/cancel",
            headers=auth_headers(other, tenant), json={},
        )
        allowed = client.post(
            f"/api/approval-workflows/{workflow['id']}/cancel", headers=headers["admin"], json={},
        )

        assert denied.status_code == 403
        assert allowed.status_code == 200

    def test_cancel_terminal(self, client, headers, rule):
        workflow = _start(client, headers["requester"]).json()
        url = f"/api/approval-workflows/{workflow['id']}/cancel"
        client.post(url, headers=headers["requester"], json={})

        response = client.post(url, headers=headers["requester"], json={})

        assert response.status_code == 400


# ---------------------------------------------------------------------------
# Delegations
# ---------------------------------------------------------------------------

class TestDelegationAPI:

    def _window(self, start_days=-1, end_days=7):
        now = datetime.utcnow()
        return {
            "start_date": (now + timedelta(days=start_days)).isoformat(),
            "end_date": (now + timedelta(days=end_days)).isoformat(),
        }

    def test_create_and_list(self, client, headers, users):
        response = client.post("/api/delegations", headers=headers["manager"], json={
            "delegate_id": str(users["cfo"].id),
            "reason": "Vacation",
            **self._window(),
        })

        assert response.status_code == 201, response.text
        assert response.json()["status"] == "active"
        assert response.json()["delegator_id"] == str(users["manager"].id)

        for key in ("manager", "cfo"):
            listed = client.get("/api/delegations", headers=headers[key]).json()
            assert [d["id"] for d in listed] == [response.json()["id"]]

    def test_scheduled_status(self, client, headers, users):
        response = client.post("/api/delegations", headers=headers["manager"], json={
            "delegate_id": str(users["cfo"].id),
            **self._window(start_days=3, end_days=5),
        })

        assert response.json()["status"] == "scheduled"

    def test_invalid_window(self, client, headers, users):
        response = client.post("/api/delegations", headers=headers["manager"], json={
            "delegate_id": str(users["cfo"].id),
            **self._window(start_days=5, end_days=1),
        })

        assert response.status_code == 400

    def test_self_delegation(self, client, headers, users):
        response = client.post("/api/delegations", headers=headers["manager"], json={
            "delegate_id": str(users["manager"].id),
            **self._window(),
        })

        assert response.status_code == 400

    def test_on_behalf_requires_manage(self, client, headers, users):
        payload = {
            "delegator_id": str(users["cfo"].id),
            "delegate_id": str(users["admin"].id),
            **self._window(),
        }

        assert client.post("/api/delegations", headers=headers["manager"], json=payload).status_code == 403
        assert client.post("/api/delegations", headers=headers["admin"], json=payload).status_code == 201

    def test_delegate_receives_new_instances(self, client, headers, users, rule):
        client.post("/api/delegations", headers=headers["cfo"], json={
            "delegate_id": str(users["admin"].id),
            **self._window(),
        })

        workflow = _start(client, headers["requester"]).json()
        instance = _instance_for(workflow, users["manager"])
        workflow = client.post(
            f"/api/approval-workflows/instances/{instance['id']}/approve",
            headers=headers["manager"], json={},
        ).json()

        level_two = [i for i in workflow["instances"] if i["level_order"] == 2]
        assert [(i["approver_id"], i["delegated_from_id"]) for i in level_two] == [
            (str(users["admin"].id), str(users["cfo"].id)),
        ]

    def test_cancel_only_by_delegator(self, client, headers, users):
        created = client.post("/api/delegations", headers=headers["manager"], json={
            "delegate_id": str(users["cfo"].id),
            **self._window(),
        }).json()
        url = f"/api/delegations/{created['id']}"

        assert client.delete(url, headers=headers["cfo"]).status_code == 403
        assert client.delete(url, headers=headers["manager"]).status_code == 200

        listed = client.get("/api/delegations", headers=headers["manager"]).json()
        assert listed[0]["status"] == "cancelled"

    def test_cancel_notifies_delegate(self, client, headers, users, db_session):
        created = client.post("/api/delegations", headers=headers["manager"], json={
            "delegate_id": str(users["cfo"].id),
            **self._window(),
        }).json()

        client.delete(f"/api/delegations/{created['id']}", headers=headers["manager"])

        logs = db_session.query(NotificationLog).filter(
            NotificationLog.event_type == "delegation_cancelled"
        ).all()
        assert [log.recipient for log in logs] == ["cfo@acme.test"]
        assert logs[0].subject.endswith("Morgan Manager cancelled a delegation to you")

    def test_available_delegates(self, client, headers, users):
        response = client.get("/api/delegations/available-delegates", headers=headers["manager"])

        assert [u["name"] for u in response.json()] == ["Alex Admin", "Casey CFO"]
