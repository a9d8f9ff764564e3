import pytest

from partner_portal.errors import ApiError
from partner_portal.status_machine import (
    ALL_STATUSES,
    DISPATCH_TRANSITION,
    SUBMISSION_TRANSITION,
    Transition,
    can_transition,
    ensure_transition,
)


def test_forward_edges_follow_sequence():
    assert can_transition("requested", "ordered")
    assert can_transition("ordered", "in_progress")
    assert can_transition("in_progress", "delivered")
    assert can_transition("delivered", "approved")


def test_terminal_states_have_no_exits():
    for status in ALL_STATUSES:
        assert not can_transition("approved", status)
        assert not can_transition("cancelled", status)


def test_invalid_transition_raises_conflict():
    with pytest.raises(ApiError) as exc:
        ensure_transition("delivered", "in_progress")

    assert exc.value.code == "EXTERNAL_JOB_TRANSITION_INVALID"
    assert exc.value.http_status == 409


def test_dispatch_only_advances_requested_jobs():
    assert DISPATCH_TRANSITION.applies_to("requested")
    for status in ("ordered", "in_progress", "delivered", "approved", "cancelled"):
        assert not DISPATCH_TRANSITION.applies_to(status)
    assert DISPATCH_TRANSITION.to_status == "ordered"


def test_submission_advances_requested_or_ordered_jobs():
    assert SUBMISSION_TRANSITION.applies_to("requested")
    assert SUBMISSION_TRANSITION.applies_to("ordered")
    for status in ("in_progress", "delivered", "approved", "cancelled"):
        assert not SUBMISSION_TRANSITION.applies_to(status)


def test_driven_edges_are_legal_transitions():
    for transition in (DISPATCH_TRANSITION, SUBMISSION_TRANSITION):
        for source in transition.from_statuses:
            ensure_transition(source, transition.to_status)


def test_transition_rejects_edges_missing_from_table():
    with pytest.raises(ApiError) as exc:
        Transition(from_statuses=frozenset({"delivered", "ordered"}), to_status="in_progress")

    assert exc.value.code == "EXTERNAL_JOB_TRANSITION_INVALID"
