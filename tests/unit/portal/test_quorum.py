"""Tests for level quorum evaluation."""

from portal.core.approval.quorum import is_quorum_met
from portal.core.approval.states import ApprovalMode, InstanceDecision

A = InstanceDecision.APPROVED
P = InstanceDecision.PENDING
R = InstanceDecision.REJECTED
S = InstanceDecision.SKIPPED


class TestAnyMode:

    def test_single_approval_meets_quorum(self):
        assert is_quorum_met(ApprovalMode.ANY, [P, A, P])

    def test_all_pending_does_not(self):
        assert not is_quorum_met(ApprovalMode.ANY, [P, P])

    def test_accepts_raw_strings(self):
        assert is_quorum_met("any", ["pending", "approved"])


class TestAllMode:

    def test_every_approval_needed(self):
        assert not is_quorum_met(ApprovalMode.ALL, [A, P])
        assert is_quorum_met(ApprovalMode.ALL, [A, A])

    def test_skipped_instance_blocks_quorum(self):
        assert not is_quorum_met(ApprovalMode.ALL, [A, S])


def test_empty_level_never_meets_quorum():
    assert not is_quorum_met(ApprovalMode.ANY, [])
    assert not is_quorum_met(ApprovalMode.ALL, [])
