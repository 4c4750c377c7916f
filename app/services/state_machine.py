"""
Booking lifecycle as an explicit transition table.

    requested ──► payment_completed ──► accepted
        │                                  │
        └────────────► accepted ──► in_progress ──► completed
    requested / accepted ──► cancelled | rejected_by_driver

`accepted → requested` exists only for the reject-and-reassign flow, which
puts the booking back in the pool.
"""
from enum import Enum

from app.exceptions import InvalidStateError


class BookingStatus(str, Enum):
    REQUESTED = "requested"
    PAYMENT_COMPLETED = "payment_completed"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED_BY_DRIVER = "rejected_by_driver"


BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.REQUESTED: frozenset({
        BookingStatus.PAYMENT_COMPLETED,
        BookingStatus.ACCEPTED,
        BookingStatus.CANCELLED,
        BookingStatus.REJECTED_BY_DRIVER,
    }),
    BookingStatus.PAYMENT_COMPLETED: frozenset({
        BookingStatus.ACCEPTED,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.ACCEPTED: frozenset({
        BookingStatus.IN_PROGRESS,
        BookingStatus.REQUESTED,
        BookingStatus.CANCELLED,
        BookingStatus.REJECTED_BY_DRIVER,
    }),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.REJECTED_BY_DRIVER: frozenset(),
}

# A booking in one of these states must have a driver
ACTIVE_STATUSES = frozenset({BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS})

# Statuses in which the assigned driver is released
DRIVER_RELEASING_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.REJECTED_BY_DRIVER,
})

# Statuses in which a booking keeps its driver off the market
DRIVER_HOLDING_STATUSES = frozenset({BookingStatus.REQUESTED, BookingStatus.ACCEPTED})

TERMINAL_STATUSES = frozenset(s for s, nxt in BOOKING_TRANSITIONS.items() if not nxt)


def can_transition(current: BookingStatus | str, target: BookingStatus | str) -> bool:
    return BookingStatus(target) in BOOKING_TRANSITIONS[BookingStatus(current)]


def ensure_transition(current: BookingStatus | str, target: BookingStatus | str) -> BookingStatus:
    """Return `target` as a BookingStatus, or raise if the move is illegal."""
    current, target = BookingStatus(current), BookingStatus(target)
    if target not in BOOKING_TRANSITIONS[current]:
        raise InvalidStateError(
            f"Cannot move booking from status {current.value} to {target.value}"
        )
    return target


def ensure_status(current: BookingStatus | str, *allowed: BookingStatus, action: str) -> None:
    if BookingStatus(current) not in allowed:
        names = ", ".join(s.value for s in allowed)
        raise InvalidStateError(
            f"Cannot {action} booking with status: {BookingStatus(current).value}. "
            f"Only {names} bookings are allowed."
        )


def check_driver_invariant(status: BookingStatus | str, driver_id: int | None) -> None:
    if BookingStatus(status) in ACTIVE_STATUSES and driver_id is None:
        raise InvalidStateError(
            f"A booking with status {BookingStatus(status).value} must have a driver assigned"
        )
