"""Booking state machine.

States: PENDING -> CONFIRMED | DECLINED; CONFIRMED -> COMPLETED | CANCELLED;
PENDING -> CANCELLED. COMPLETED, CANCELLED and DECLINED are terminal.

Everything here is pure: no I/O, no clock, no database. The HTTP layer and
any UI only ever *query* this module (see ``allowed_actions``); enforcement
happens in the booking service, which calls ``decide`` before every write.
"""

from dataclasses import dataclass
from enum import Enum


class BookingStatus(str, Enum):
    """Booking lifecycle states."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class BookingEntityType(str, Enum):
    """What is being booked."""

    TOUR = "TOUR"
    GUIDE = "GUIDE"
    DRIVER = "DRIVER"


class BookingAction(str, Enum):
    """Actor-triggered transitions."""

    CONFIRM = "confirm"
    DECLINE = "decline"
    CANCEL = "cancel"
    COMPLETE = "complete"


class ActorRole(str, Enum):
    """An actor's relationship to a specific booking."""

    CUSTOMER = "customer"
    PROVIDER = "provider"
    # Internal expiry job; never resolved from a request
    SYSTEM = "system"


class RejectionCode(str, Enum):
    """Why the guard refused a transition."""

    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"


TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.DECLINED}
)


@dataclass(frozen=True)
class TransitionRule:
    """One row of the transition table."""

    from_statuses: frozenset[BookingStatus]
    roles: frozenset[ActorRole]
    next_status: BookingStatus
    timestamp_field: str


BOOKING_TRANSITIONS: dict[BookingAction, TransitionRule] = {
    BookingAction.CONFIRM: TransitionRule(
        from_statuses=frozenset({BookingStatus.PENDING}),
        roles=frozenset({ActorRole.PROVIDER}),
        next_status=BookingStatus.CONFIRMED,
        timestamp_field="confirmed_at",
    ),
    BookingAction.DECLINE: TransitionRule(
        from_statuses=frozenset({BookingStatus.PENDING}),
        roles=frozenset({ActorRole.PROVIDER, ActorRole.SYSTEM}),
        next_status=BookingStatus.DECLINED,
        timestamp_field="declined_at",
    ),
    BookingAction.CANCEL: TransitionRule(
        from_statuses=frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED}),
        roles=frozenset({ActorRole.CUSTOMER}),
        next_status=BookingStatus.CANCELLED,
        timestamp_field="cancelled_at",
    ),
    BookingAction.COMPLETE: TransitionRule(
        from_statuses=frozenset({BookingStatus.CONFIRMED}),
        roles=frozenset({ActorRole.PROVIDER}),
        next_status=BookingStatus.COMPLETED,
        timestamp_field="completed_at",
    ),
}


@dataclass(frozen=True)
class Decision:
    """The guard accepted the action."""

    next_status: BookingStatus
    timestamp_field: str


@dataclass(frozen=True)
class Rejection:
    """The guard refused the action."""

    code: RejectionCode
    message: str


def decide(
    current_status: BookingStatus | str,
    action: BookingAction | str,
    actor_role: ActorRole | str,
    declined_reason: str | None = None,
) -> Decision | Rejection:
    """Decide whether ``actor_role`` may apply ``action`` to a booking in ``current_status``.

    Checks run in a fixed order: the actor must own the action, the action
    must be valid from the current status (terminal statuses accept
    nothing), and required input must be present.

    Args:
        current_status: Booking's status as read from the store
        action: Requested action
        actor_role: Actor's role on this booking
        declined_reason: Reason supplied with a decline

    Returns:
        Decision with the next status, or Rejection with a code and message
    """
    status = BookingStatus(current_status)
    action = BookingAction(action)
    role = ActorRole(actor_role)
    rule = BOOKING_TRANSITIONS[action]

    if role not in rule.roles:
        return Rejection(
            RejectionCode.NOT_AUTHORIZED,
            f"Only the {_describe_roles(rule.roles)} can {action.value} a booking",
        )

    if status not in rule.from_statuses:
        if status in TERMINAL_STATUSES:
            message = f"Booking is already {status.value.lower()}"
        else:
            message = f"Cannot {action.value} a {status.value.lower()} booking"
        return Rejection(RejectionCode.INVALID_TRANSITION, message)

    if action is BookingAction.DECLINE and not (declined_reason or "").strip():
        return Rejection(
            RejectionCode.MISSING_REQUIRED_FIELD,
            "A reason is required to decline a booking",
        )

    return Decision(next_status=rule.next_status, timestamp_field=rule.timestamp_field)


def allowed_actions(
    current_status: BookingStatus | str,
    actor_role: ActorRole | str,
) -> list[BookingAction]:
    """Actions ``actor_role`` could take right now, for display only."""
    status = BookingStatus(current_status)
    role = ActorRole(actor_role)
    return [
        action
        for action, rule in BOOKING_TRANSITIONS.items()
        if role in rule.roles and status in rule.from_statuses
    ]


def is_terminal(status: BookingStatus | str) -> bool:
    return BookingStatus(status) in TERMINAL_STATUSES


def _describe_roles(roles: frozenset[ActorRole]) -> str:
    public = sorted(role.value for role in roles if role is not ActorRole.SYSTEM)
    return " or ".join(public)
