import itertools

import pytest

from medmarket import state_machine as sm
from medmarket.errors import ErrorCode, WorkflowError


def test_table_pairs_are_allowed():
    for source, targets in sm.VALID_TRANSITIONS.items():
        for target in targets:
            assert sm.can_transition(source, target)


def test_pairs_outside_table_are_refused():
    for source, target in itertools.product(sm.SERVICE_REQUEST_STATUSES, repeat=2):
        expected = target in sm.VALID_TRANSITIONS[source] and source != target
        assert sm.can_transition(source, target) is expected


def test_self_and_unknown_transitions_never_raise():
    for status in sm.SERVICE_REQUEST_STATUSES:
        assert sm.can_transition(status, status) is False
    assert sm.can_transition("archived", "pending") is False
    assert sm.can_transition("pending", "archived") is False
    assert sm.can_transition_quote("draft", "accepted") is False
    assert sm.next_statuses("archived") == []


def test_cancelled_is_terminal():
    assert sm.next_statuses("cancelled") == []
    assert sm.next_statuses("in_progress") == ["cancelled", "completed", "disputed"]


def test_quote_transitions_only_leave_pending():
    assert sm.next_quote_statuses("pending") == ["accepted", "expired", "rejected"]
    for status in ("accepted", "rejected", "expired"):
        assert sm.next_quote_statuses(status) == []
        assert not sm.can_transition_quote(status, "pending")


def test_assert_transition_names_both_statuses():
    with pytest.raises(WorkflowError) as exc:
        sm.assert_transition("pending", "completed")
    assert exc.value.code == ErrorCode.INVALID_TRANSITION
    assert exc.value.context == {
        "current_status": "pending",
        "target_status": "completed",
        "allowed": ["cancelled", "quoted"],
    }
    assert exc.value.http_status == 409


def test_assert_quote_transition_uses_quote_code():
    sm.assert_quote_transition("pending", "accepted")
    with pytest.raises(WorkflowError) as exc:
        sm.assert_quote_transition("accepted", "accepted")
    assert exc.value.code == ErrorCode.INVALID_QUOTE_STATUS
    assert exc.value.context["allowed"] == []


def test_approval_transitions_depend_on_acting_org():
    assert sm.is_approval_transition("quoted", "accepted", "hospital")
    assert sm.is_approval_transition("quoted", "accepted", None)
    assert sm.is_approval_transition("accepted", "in_progress", "hospital")
    assert not sm.is_approval_transition("accepted", "in_progress", "provider")
    assert not sm.is_approval_transition("in_progress", "completed", "hospital")
    assert not sm.is_approval_transition("pending", "cancelled", "hospital")
