"""
Order status lifecycle.

pending -> confirmed -> in_preparation -> ready -> delivered, with cancelled
reachable from anything that is not yet delivered. Staff move an order one
step at a time; nothing moves backwards and terminal states stay put.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, Optional

from errors import InvalidStateTransition


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PREPARATION = "in_preparation"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


HAPPY_PATH: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.IN_PREPARATION,
    OrderStatus.READY,
    OrderStatus.DELIVERED,
)

TERMINAL_STATES: FrozenSet[OrderStatus] = frozenset([
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
])

INITIAL_STATE = OrderStatus.PENDING

# Field stamped with the current time when an order enters the state
TIMESTAMP_FIELDS: dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.IN_PREPARATION: "preparation_started_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def allowed_transitions(current: OrderStatus) -> list[OrderStatus]:
    current = OrderStatus(current)
    if current in TERMINAL_STATES:
        return []
    nxt = HAPPY_PATH[HAPPY_PATH.index(current) + 1]
    return [nxt, OrderStatus.CANCELLED]


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in allowed_transitions(current)


def transition(current: OrderStatus, target: OrderStatus, now: Optional[datetime] = None) -> dict[str, Any]:
    """Return the field update that moves an order from ``current`` to ``target``.

    Raises InvalidStateTransition for terminal sources, skipped steps,
    backward moves and no-op moves.
    """
    current = OrderStatus(current)
    target = OrderStatus(target)
    if not can_transition(current, target):
        raise InvalidStateTransition(current.value, target.value)
    changes: dict[str, Any] = {"status": target.value}
    changes[TIMESTAMP_FIELDS[target]] = now or datetime.now(timezone.utc)
    return changes


def is_editable(status: OrderStatus) -> bool:
    return OrderStatus(status) is OrderStatus.PENDING
