"""
Order lifecycle state machine. Valid transitions enforce business rules;
role edges decide which party may drive each of them.
"""
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ActorRole(str, Enum):
    STUDENT = "student"
    VENDOR = "vendor"
    RIDER = "rider"


S = OrderStatus

FORWARD_SEQUENCE: list[OrderStatus] = [
    S.PENDING,
    S.CONFIRMED,
    S.PREPARING,
    S.READY,
    S.ASSIGNED,
    S.PICKED_UP,
    S.IN_TRANSIT,
    S.DELIVERED,
]

TERMINAL_STATUSES = frozenset({S.DELIVERED, S.CANCELLED})
ACTIVE_STATUSES = frozenset(set(OrderStatus) - TERMINAL_STATUSES)

# rider_id is set exactly while the order is in one of these
RIDER_STATUSES = frozenset({S.ASSIGNED, S.PICKED_UP, S.IN_TRANSIT, S.DELIVERED})
RIDER_ACTIVE_STATUSES = frozenset({S.ASSIGNED, S.PICKED_UP, S.IN_TRANSIT})

# Current status -> allowed next statuses
VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    current: frozenset({nxt, S.CANCELLED})
    for current, nxt in zip(FORWARD_SEQUENCE, FORWARD_SEQUENCE[1:])
}
VALID_TRANSITIONS[S.DELIVERED] = frozenset()  # terminal
VALID_TRANSITIONS[S.CANCELLED] = frozenset()  # terminal

ROLE_TRANSITIONS: dict[ActorRole, frozenset[tuple[OrderStatus, OrderStatus]]] = {
    ActorRole.VENDOR: frozenset({
        (S.PENDING, S.CONFIRMED),
        (S.CONFIRMED, S.PREPARING),
        (S.PREPARING, S.READY),
        (S.PENDING, S.CANCELLED),
        (S.CONFIRMED, S.CANCELLED),
        (S.PREPARING, S.CANCELLED),
        (S.READY, S.CANCELLED),
        (S.ASSIGNED, S.CANCELLED),
    }),
    ActorRole.RIDER: frozenset({
        (S.READY, S.ASSIGNED),
        (S.ASSIGNED, S.PICKED_UP),
        (S.PICKED_UP, S.IN_TRANSIT),
        (S.IN_TRANSIT, S.DELIVERED),
    }),
    ActorRole.STUDENT: frozenset({
        (S.PENDING, S.CANCELLED),
    }),
}


def is_valid_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """True if target is allowed after current."""
    return target in VALID_TRANSITIONS.get(current, frozenset())


def is_allowed_for_role(role: ActorRole, current: OrderStatus, target: OrderStatus) -> bool:
    """True if the edge exists and this role may drive it."""
    return is_valid_transition(current, target) and (current, target) in ROLE_TRANSITIONS.get(role, frozenset())


def next_status(current: OrderStatus) -> OrderStatus | None:
    """Forward successor of current, or None for terminal statuses."""
    if current in TERMINAL_STATUSES:
        return None
    return FORWARD_SEQUENCE[FORWARD_SEQUENCE.index(current) + 1]
