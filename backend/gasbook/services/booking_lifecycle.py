# Overview: Booking status state machine; the single source of truth for legal transitions.

"""
Booking Lifecycle

================================================================================
STATE MACHINE:
    PENDING -> APPROVED -> OUT_FOR_DELIVERY -> DELIVERED
       |          |               |
       +----------+---------------+--> CANCELLED

    DELIVERED and CANCELLED are terminal.
================================================================================

RULES:
1. No back-edges other than to CANCELLED.
2. OUT_FOR_DELIVERY is entered only through the delivery-assignment path
   (delivery_service), never through a direct booking status write, so the
   booking and its assignment cannot disagree.
3. Side-effect preconditions (UPI payment settled, stock available,
   assignment present) live with the services that own those records;
   this module only answers "is this edge on the graph?".
"""

from __future__ import annotations
from typing import Literal

from ..errors import ConflictError, InvalidTransitionError, ValidationError


PENDING = "PENDING"
APPROVED = "APPROVED"
OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"

BookingStatus = Literal["PENDING", "APPROVED", "OUT_FOR_DELIVERY", "DELIVERED", "CANCELLED"]

VALID_STATUSES = {PENDING, APPROVED, OUT_FOR_DELIVERY, DELIVERED, CANCELLED}
TERMINAL_STATUSES = frozenset({DELIVERED, CANCELLED})

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({APPROVED, CANCELLED}),
    APPROVED: frozenset({OUT_FOR_DELIVERY, CANCELLED}),
    OUT_FOR_DELIVERY: frozenset({DELIVERED, CANCELLED}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
}

# Targets an admin may request through PUT /admin/bookings/<id>/status
DIRECT_ADMIN_TARGETS = frozenset({APPROVED, DELIVERED, CANCELLED})

# Statuses whose bookings still hold the customer's quota and may be cancelled
CANCELLABLE_STATUSES = frozenset({PENDING, APPROVED, OUT_FOR_DELIVERY})


def validate_status(status: str) -> str:
    if not isinstance(status, str) or status.strip().upper() not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )
    return status.strip().upper()


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(from_status: str, to_status: str) -> bool:
    """True only for edges on the graph above. Same-status is not an edge."""
    return to_status in TRANSITIONS.get(from_status, frozenset())


def check_transition(from_status: str, to_status: str) -> None:
    """
    Raise if from_status -> to_status is not allowed.

    - Terminal source: ConflictError (409), the booking can no longer change.
      Cancelling a DELIVERED booking reads "delivered bookings cannot be
      cancelled"; cancelling twice reads "booking is already cancelled".
    - Missing edge otherwise: InvalidTransitionError (400).
    """
    validate_status(to_status)

    if from_status == DELIVERED:
        if to_status == CANCELLED:
            raise ConflictError("delivered bookings cannot be cancelled")
        raise ConflictError("booking is already delivered")

    if from_status == CANCELLED:
        if to_status == CANCELLED:
            raise ConflictError("booking is already cancelled")
        raise ConflictError("cancelled bookings cannot change status")

    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(
            f"Cannot move booking from {from_status} to {to_status}",
            details={"from": from_status, "to": to_status},
        )


def check_direct_admin_target(to_status: str) -> str:
    """Reject targets that must go through another path (OUT_FOR_DELIVERY)."""
    to_status = validate_status(to_status)
    if to_status == OUT_FOR_DELIVERY:
        raise InvalidTransitionError(
            "OUT_FOR_DELIVERY is set through the delivery assignment status update"
        )
    if to_status not in DIRECT_ADMIN_TARGETS:
        raise InvalidTransitionError(f"Status {to_status} cannot be set directly")
    return to_status
