"""Transition tables for service requests and quotes.

Pure functions with no database access; every status-changing workflow
operation consults these before it writes.

Service request::

    pending      -> quoted | cancelled
    quoted       -> accepted | cancelled
    accepted     -> in_progress | cancelled
    in_progress  -> completed | cancelled | disputed
    completed    -> disputed
    disputed     -> completed | cancelled
    cancelled    -> (terminal)

Quote::

    pending  -> accepted | rejected | expired
    accepted, rejected, expired -> (terminal)
"""

from __future__ import annotations

from .errors import ErrorCode, WorkflowError

SERVICE_REQUEST_STATUSES: tuple[str, ...] = (
    "pending",
    "quoted",
    "accepted",
    "in_progress",
    "completed",
    "cancelled",
    "disputed",
)

QUOTE_STATUSES: tuple[str, ...] = ("pending", "accepted", "rejected", "expired")

SERVICE_REQUEST_TYPES: tuple[str, ...] = (
    "repair",
    "maintenance",
    "calibration",
    "inspection",
    "installation",
    "other",
)

SERVICE_REQUEST_PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "critical")

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"quoted", "cancelled"}),
    "quoted": frozenset({"accepted", "cancelled"}),
    "accepted": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed", "cancelled", "disputed"}),
    "completed": frozenset({"disputed"}),
    "disputed": frozenset({"completed", "cancelled"}),
    "cancelled": frozenset(),
}

VALID_QUOTE_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"accepted", "rejected", "expired"}),
    "accepted": frozenset(),
    "rejected": frozenset(),
    "expired": frozenset(),
}

# statuses from which a provider may still attach a quote
QUOTABLE_STATUSES: frozenset[str] = frozenset({"pending", "quoted"})

# a completion report may trail the completed flip slightly
REPORTABLE_STATUSES: frozenset[str] = frozenset({"in_progress", "completed"})


def can_transition(from_status: str, to_status: str) -> bool:
    """Return True when a service request may move from one status to another."""

    if from_status == to_status:
        return False
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def can_transition_quote(from_status: str, to_status: str) -> bool:
    """Return True when a quote may move from one status to another."""

    if from_status == to_status:
        return False
    return to_status in VALID_QUOTE_TRANSITIONS.get(from_status, frozenset())


def next_statuses(from_status: str) -> list[str]:
    return sorted(VALID_TRANSITIONS.get(from_status, frozenset()))


def next_quote_statuses(from_status: str) -> list[str]:
    return sorted(VALID_QUOTE_TRANSITIONS.get(from_status, frozenset()))


def assert_transition(from_status: str, to_status: str) -> None:
    """Raise INVALID_TRANSITION unless the request transition is in the table."""

    if not can_transition(from_status, to_status):
        raise WorkflowError(
            ErrorCode.INVALID_TRANSITION,
            current_status=from_status,
            target_status=to_status,
            allowed=next_statuses(from_status),
        )


def assert_quote_transition(from_status: str, to_status: str) -> None:
    """Raise INVALID_QUOTE_STATUS unless the quote transition is in the table."""

    if not can_transition_quote(from_status, to_status):
        raise WorkflowError(
            ErrorCode.INVALID_QUOTE_STATUS,
            current_status=from_status,
            target_status=to_status,
            allowed=next_quote_statuses(from_status),
        )


def is_approval_transition(from_status: str, to_status: str, acting_org_type: str | None) -> bool:
    """Classify transitions that need an owner/admin and a non-creator approver.

    ``quoted -> accepted`` always qualifies; ``accepted -> in_progress`` only
    when the hospital initiates it.
    """

    if (from_status, to_status) == ("quoted", "accepted"):
        return True
    if (from_status, to_status) == ("accepted", "in_progress"):
        return acting_org_type == "hospital"
    return False
