"""Quorum evaluation for approval levels."""

from typing import Iterable

from .states import ApprovalMode, InstanceDecision


def is_quorum_met(mode: ApprovalMode, decisions: Iterable[InstanceDecision]) -> bool:
    """
    Check whether a level's decisions satisfy its quorum.

    ANY is met by a single approval. ALL needs every instance approved;
    a level with no instances never meets ALL quorum here since empty
    levels are skipped before any instance exists.
    """
    decisions = [InstanceDecision(d) for d in decisions]
    if not decisions:
        return False
    if ApprovalMode(mode) == ApprovalMode.ANY:
        return InstanceDecision.APPROVED in decisions
    return all(d == InstanceDecision.APPROVED for d in decisions)
