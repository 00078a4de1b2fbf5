"""
Application status enum and gate sequence.

Gate Sequence:
    DRAFT → SUBMITTED → ADMIN_SCREENED → APPROVED_HIGH → TERMS_SET
        → MIN_DUE → MIN_PAID → COUNTERSIGNED → OCCUPIED

Terminal side branches:
    SUBMITTED → REJECTED
    SUBMITTED → WITHDRAWN

Status only moves forward along the gate sequence. The side branches are
reached by landlord/tenant decisions, never by payment evaluation.
"""

from django.db import models


class ApplicationStatus(models.TextChoices):
    """
    Status of a rental application.

    Payment gates:
        MIN_DUE: Countersign minimums are owed
        MIN_PAID: Countersign minimums are paid, awaiting signatures
    """

    DRAFT = "draft", "Draft"
    SUBMITTED = "submitted", "Submitted"
    ADMIN_SCREENED = "admin_screened", "Admin Screened"
    APPROVED_HIGH = "approved_high", "Approved"
    TERMS_SET = "terms_set", "Terms Set"
    MIN_DUE = "min_due", "Minimum Due"
    MIN_PAID = "min_paid", "Minimum Paid"
    COUNTERSIGNED = "countersigned", "Countersigned"
    OCCUPIED = "occupied", "Occupied"
    REJECTED = "rejected", "Rejected"
    WITHDRAWN = "withdrawn", "Withdrawn"


GATE_SEQUENCE: tuple[str, ...] = (
    ApplicationStatus.DRAFT,
    ApplicationStatus.SUBMITTED,
    ApplicationStatus.ADMIN_SCREENED,
    ApplicationStatus.APPROVED_HIGH,
    ApplicationStatus.TERMS_SET,
    ApplicationStatus.MIN_DUE,
    ApplicationStatus.MIN_PAID,
    ApplicationStatus.COUNTERSIGNED,
    ApplicationStatus.OCCUPIED,
)

TERMINAL_BRANCHES: frozenset[str] = frozenset(
    {ApplicationStatus.REJECTED, ApplicationStatus.WITHDRAWN}
)


def gate_position(status: str) -> int | None:
    """Return the index of a status in the gate sequence, or None for side branches."""
    try:
        return GATE_SEQUENCE.index(status)
    except ValueError:
        return None


def is_forward_transition(current: str, target: str) -> bool:
    """
    Check whether moving from current to target advances along the sequence.

    Side branches and unknown statuses never count as forward moves.
    """
    current_position = gate_position(current)
    target_position = gate_position(target)
    if current_position is None or target_position is None:
        return False
    return target_position > current_position


__all__ = [
    "ApplicationStatus",
    "GATE_SEQUENCE",
    "TERMINAL_BRANCHES",
    "gate_position",
    "is_forward_transition",
]
