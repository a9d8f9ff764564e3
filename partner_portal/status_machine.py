from __future__ import annotations

from dataclasses import dataclass

from partner_portal.errors import ApiError

REQUESTED = "requested"
ORDERED = "ordered"
IN_PROGRESS = "in_progress"
DELIVERED = "delivered"
APPROVED = "approved"
CANCELLED = "cancelled"

ALL_STATUSES = (REQUESTED, ORDERED, IN_PROGRESS, DELIVERED, APPROVED, CANCELLED)

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    REQUESTED: {ORDERED, IN_PROGRESS, CANCELLED},
    ORDERED: {IN_PROGRESS, CANCELLED},
    IN_PROGRESS: {DELIVERED, CANCELLED},
    DELIVERED: {APPROVED, CANCELLED},
    APPROVED: set(),
    CANCELLED: set(),
}


@dataclass(frozen=True)
class Transition:
    from_statuses: frozenset[str]
    to_status: str

    def __post_init__(self) -> None:
        for source in self.from_statuses:
            ensure_transition(source, self.to_status)

    def applies_to(self, current: str) -> bool:
        return current in self.from_statuses and can_transition(current, self.to_status)


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def ensure_transition(current: str, new: str) -> None:
    if not can_transition(current, new):
        raise ApiError(
            code="EXTERNAL_JOB_TRANSITION_INVALID",
            message=f"invalid transition: {current} -> {new}",
            error_class="business_rule",
            retryable=False,
            http_status=409,
        )


# The only two edges driven by partner dispatch and partner submission.
DISPATCH_TRANSITION = Transition(from_statuses=frozenset({REQUESTED}), to_status=ORDERED)
SUBMISSION_TRANSITION = Transition(from_statuses=frozenset({REQUESTED, ORDERED}), to_status=IN_PROGRESS)
