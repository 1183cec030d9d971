"""Tests for tenant, role and approval rule seeding."""

import pytest
import yaml

from portal.core.approval.rules import ordered_levels
from portal.core.errors import InvalidRuleError
from portal.core.rbac.roles import DEFAULT_ROLES
from portal.db.models import ApprovalRule, Role
from portal.db.seed import (
    get_role_by_name,
    load_rules_file,
    seed_default_roles,
    seed_rules,
    seed_tenant,
)

from tests.factories import create_tenant, create_user


RULES_YAML = """
rules:
  - name: Large purchases
    document_type: purchase_request
    min_amount: 10000
    priority: 10
    levels:
      - name: Purchasing
        mode: any
        approvers:
          - role: Purchase Approver
      - name: Finance
        mode: all
        approvers:
          - user: ${FINANCE_APPROVER}
  - name: Invoices
    document_type: invoice
    levels:
      - name: Accounts payable
        approvers:
          - role: Purchase Admin
"""


class TestSeedTenant:

    def test_creates_default_roles(self, db_session):
        tenant = seed_tenant(db_session, name="Acme", slug="acme")

        roles = db_session.query(Role).filter(Role.tenant_id == tenant.id).all()
        assert {r.name for r in roles} == {cfg["name"] for cfg in DEFAULT_ROLES.values()}
        assert all(r.is_system for r in roles)

    def test_idempotent(self, db_session):
        first = seed_tenant(db_session, name="Acme", slug="acme")
        second = seed_tenant(db_session, name="Acme again", slug="acme")

        assert first.id == second.id
        assert len(seed_default_roles(db_session, first.id)) == len(DEFAULT_ROLES)
        assert db_session.query(Role).filter(Role.tenant_id == first.id).count() == len(DEFAULT_ROLES)

    def test_get_role_by_name(self, db_session):
        tenant = seed_tenant(db_session, name="Acme", slug="acme")

        assert get_role_by_name(db_session, tenant.id, "Viewer").permissions == DEFAULT_ROLES["viewer"]["permissions"]
        assert get_role_by_name(db_session, tenant.id, "Nope") is None


class TestLoadRulesFile:

    def test_load_with_env_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FINANCE_APPROVER", "cfo@example.com")
        path = tmp_path / "rules.yaml"
        path.write_text(RULES_YAML)

        rules = load_rules_file(str(path))

        assert [r["name"] for r in rules] == ["Large purchases", "Invoices"]
        assert rules[0]["levels"][1]["approvers"] == [{"user": "cfo@example.com"}]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_rules_file(str(tmp_path / "absent.yaml"))

    def test_rules_must_be_a_list(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(yaml.safe_dump({"rules": {"name": "oops"}}))

        with pytest.raises(TypeError):
            load_rules_file(str(path))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("")

        assert load_rules_file(str(path)) == []


class TestSeedRules:

    @pytest.fixture()
    def rules(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FINANCE_APPROVER", "cfo@example.com")
        path = tmp_path / "rules.yaml"
        path.write_text(RULES_YAML)
        return load_rules_file(str(path))

    def test_seed_rules(self, db_session, rules):
        tenant = seed_tenant(db_session, name="Acme", slug="acme")
        cfo = create_user(db_session, email="cfo@example.com")

        seeded = seed_rules(db_session, tenant.id, rules)

        large = seeded[0]
        assert large.priority == 10
        levels = ordered_levels(large)
        assert [(l.name, l.mode) for l in levels] == [("Purchasing", "any"), ("Finance", "all")]
        assert levels[0].approvers[0].role_id == get_role_by_name(db_session, tenant.id, "Purchase Approver").id
        assert levels[1].approvers[0].user_id == cfo.id
        assert seeded[1].document_type == "invoice"

    def test_seed_rules_idempotent(self, db_session, rules):
        tenant = seed_tenant(db_session, name="Acme", slug="acme")
        create_user(db_session, email="cfo@example.com")

        seed_rules(db_session, tenant.id, rules)
        seed_rules(db_session, tenant.id, rules)

        assert db_session.query(ApprovalRule).filter(ApprovalRule.tenant_id == tenant.id).count() == 2

    def test_unknown_role(self, db_session):
        tenant = create_tenant(db_session)

        with pytest.raises(InvalidRuleError):
            seed_rules(db_session, tenant.id, [
                {"name": "Broken", "levels": [{"name": "L1", "approvers": [{"role": "Ghosts"}]}]},
            ])

    def test_unknown_user(self, db_session):
        tenant = seed_tenant(db_session, name="Acme", slug="acme")

        with pytest.raises(InvalidRuleError):
            seed_rules(db_session, tenant.id, [
                {"name": "Broken", "levels": [{"name": "L1", "approvers": [{"user": "ghost@example.com"}]}]},
            ])
