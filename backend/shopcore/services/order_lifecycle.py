# Overview: Order state machine; pure transition rules, no database work.

"""
Order Lifecycle

STATE MACHINE:
    PENDING -> CONFIRMED -> PREPARING -> READY_FOR_PICKUP -> DELIVERED
                                      -> SHIPPED          -> DELIVERED
    PENDING | CONFIRMED -> CANCELLED

    READY_FOR_PICKUP -> SHIPPED is in the table as well; the delivery-type
    guard below decides whether a given order may take it.

RULES (NON-NEGOTIABLE):
1. DELIVERED and CANCELLED are terminal.
2. READY_FOR_PICKUP only for PICKUP orders; SHIPPED only for non-PICKUP orders.
3. DELIVERED requires the order to be paid. This is what makes earning
   cashback on delivery safe.

Every guard failure is an InvalidTransition carrying the current status, so
the caller can reflect it back.
"""

from __future__ import annotations

from ..errors import InvalidTransition
from ..models.orders import (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PREPARING,
    ORDER_STATUS_READY_FOR_PICKUP,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
    DELIVERY_PICKUP,
)

VALID_TRANSITIONS = {
    ORDER_STATUS_PENDING: {ORDER_STATUS_CONFIRMED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_CONFIRMED: {ORDER_STATUS_PREPARING, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_PREPARING: {ORDER_STATUS_READY_FOR_PICKUP, ORDER_STATUS_SHIPPED},
    ORDER_STATUS_READY_FOR_PICKUP: {ORDER_STATUS_SHIPPED, ORDER_STATUS_DELIVERED},
    ORDER_STATUS_SHIPPED: {ORDER_STATUS_DELIVERED},
    ORDER_STATUS_DELIVERED: set(),
    ORDER_STATUS_CANCELLED: set(),
}

# States in which items, delivery and cashback redemption may still change
EDITABLE_STATUSES = {ORDER_STATUS_PENDING}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def validate_transition(order, to_status: str) -> None:
    """Raise InvalidTransition unless `order` may move to `to_status` right now."""
    details = {"order_id": order.id, "status": order.status, "requested_status": to_status}

    if not can_transition(order.status, to_status):
        raise InvalidTransition(
            f"Cannot move order from {order.status} to {to_status}", details=details
        )

    if to_status == ORDER_STATUS_READY_FOR_PICKUP and order.delivery_type != DELIVERY_PICKUP:
        raise InvalidTransition(
            "Only pickup orders can be marked ready for pickup",
            details={**details, "delivery_type": order.delivery_type},
        )

    if to_status == ORDER_STATUS_SHIPPED and order.delivery_type == DELIVERY_PICKUP:
        raise InvalidTransition(
            "Pickup orders cannot be shipped",
            details={**details, "delivery_type": order.delivery_type},
        )

    if to_status == ORDER_STATUS_DELIVERED and not order.is_paid:
        raise InvalidTransition("Order must be paid before delivery", details=details)


def require_editable(order) -> None:
    if order.status not in EDITABLE_STATUSES:
        raise InvalidTransition(
            f"Order can no longer be modified in status {order.status}",
            details={"order_id": order.id, "status": order.status},
        )


def require_not_terminal(order) -> None:
    if order.is_terminal:
        raise InvalidTransition(
            f"Order is {order.status} and can no longer be changed",
            details={"order_id": order.id, "status": order.status},
        )
