# Overview: Order orchestrator; one all-or-nothing unit of work per create/cancel/deliver.

"""
Order Orchestrator

Coordinates the order aggregate, the cashback ledger and the stock store.
Each public function is ONE unit of work: every write (order row, items,
stock, ledger entries, cart) is flushed into the same session and committed
once at the end. Any error rolls the whole session back (run_with_retry), so
a half-created order, a partial stock decrement or a partial ledger draw is
never observable. There is no post-hoc compensation.

LOCK ORDER: customer -> order -> products (ascending id) -> ledger entries.

Notifications are published only after the commit succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import InsufficientBalance, InvalidTransition, ValidationError
from ..models import Order, OrderItem
from ..models.orders import (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
    PAYMENT_CASH,
    VALID_PAYMENT_METHODS,
    DELIVERY_PICKUP,
)
from ..money import format_cents, percent_of, require_non_negative_cents, require_quantity
from shopcore.time_utils import resolve_now
from .cart_service import _clear_cart_locked, list_cart
from .cashback_service import (
    _earn_locked,
    _refund_locked,
    _use_locked,
    available_balance,
    earn_idempotency_key,
)
from .concurrency import run_with_retry
from .customer_service import get_customer, get_seller
from .discount_service import _apply_seller_discount_locked
from .document_service import next_order_number
from .notification_service import (
    publish_cashback_earned,
    publish_order_created,
    publish_status_changed,
)
from .order_service import (
    _transition_locked,
    delivery_fee_for,
    get_order_for_update,
    get_order_record,
    order_items,
    recalculate_totals,
    validate_delivery,
)
from .stock_service import _decrease_stock_locked, _increase_stock_locked, validate_availability


@dataclass
class OrderLineRequest:
    product_id: int
    quantity: int


@dataclass
class CreateOrderCommand:
    """Online order placed by a customer, from explicit lines or from their cart."""
    customer_id: int
    items: list[OrderLineRequest] = field(default_factory=list)
    from_cart: bool = False
    payment_method: str = PAYMENT_CASH
    delivery_type: str = DELIVERY_PICKUP
    delivery_address: str | None = None
    cashback_to_use_cents: int = 0
    customer_notes: str | None = None


@dataclass
class CreateInPersonOrderCommand:
    """Sale rung up by a seller in the shop: confirmed, cash, pickup, paid."""
    seller_id: int
    customer_id: int
    items: list[OrderLineRequest] = field(default_factory=list)
    discount_cents: int = 0
    discount_reason_id: int | None = None
    discount_note: str | None = None
    seller_notes: str | None = None


def _merge_lines(lines) -> dict[int, int]:
    """product_id -> total quantity, keeping first-seen line order."""
    requested: dict[int, int] = {}
    for line in lines:
        qty = require_quantity(line.quantity)
        requested[line.product_id] = requested.get(line.product_id, 0) + qty
    if not requested:
        raise ValidationError("Order must contain at least one item")
    return requested


def _build_items_locked(order: Order, requested: dict[int, int], *, actor_id: int | None) -> list[OrderItem]:
    """Snapshot products into lines and reserve stock. Products are locked ascending by id."""
    products = validate_availability(requested)

    items = []
    for product_id, qty in requested.items():
        product = products[product_id]
        item = OrderItem(
            order_id=order.id,
            product_id=product.id,
            product_name=product.name,
            quantity=qty,
            unit_price_cents=product.price_cents,
            created_by=actor_id,
        )
        db.session.add(item)
        items.append(item)

    for product_id in sorted(requested):
        _decrease_stock_locked(product_id, requested[product_id], actor_id=actor_id)

    db.session.flush()
    return items


# =============================================================================
# CREATE
# =============================================================================

def create_order(command: CreateOrderCommand, now: datetime | None = None) -> Order:
    """
    Place an online order (starts PENDING).

    Optionally redeems cashback: checked against the available balance before
    anything is written, drawn FIFO after the order row exists so the USED
    entries reference it.
    """
    if command.payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method '{command.payment_method}'",
            details={"allowed": VALID_PAYMENT_METHODS},
        )
    address = validate_delivery(command.delivery_type, command.delivery_address)
    cashback = require_non_negative_cents(command.cashback_to_use_cents, field="cashback_to_use")

    def _op():
        op_now = resolve_now(now)
        customer = get_customer(command.customer_id, lock=True, require_active=True)

        cart_lines = []
        if command.from_cart:
            cart_lines = list_cart(customer.id)
            if not cart_lines:
                raise ValidationError("Cart is empty", details={"customer_id": customer.id})
            requested = _merge_lines(cart_lines)
        else:
            requested = _merge_lines(command.items)

        order = Order(
            order_number=next_order_number(op_now),
            customer_id=customer.id,
            ordered_at=op_now,
            status=ORDER_STATUS_PENDING,
            payment_method=command.payment_method,
            delivery_type=command.delivery_type,
            delivery_address=address,
            delivery_fee_cents=delivery_fee_for(command.delivery_type),
            customer_notes=command.customer_notes,
            created_by=customer.id,
        )
        db.session.add(order)
        db.session.flush()

        items = _build_items_locked(order, requested, actor_id=customer.id)

        if cashback:
            gross = sum(i.subtotal_cents for i in items)
            if cashback > gross:
                raise ValidationError(
                    "Cashback redemption cannot exceed the order total",
                    details={"cashback_to_use_cents": cashback, "gross_total_cents": gross},
                )
            available = available_balance(customer.id, now=op_now)
            if cashback > available:
                raise InsufficientBalance(
                    "Insufficient cashback balance",
                    details={"available_cents": available, "requested_cents": cashback},
                )
            _use_locked(customer, order.id, cashback, now=op_now)
            order.cashback_used_cents = cashback

        recalculate_totals(order)

        if cart_lines:
            _clear_cart_locked(cart_lines, actor_id=customer.id)

        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Order created: %s customer=%s final=%s cashback_used=%s",
        order.order_number, order.customer_id,
        format_cents(order.final_price_cents), format_cents(order.cashback_used_cents),
    )
    publish_order_created(order)
    return order


def create_in_person_order(command: CreateInPersonOrderCommand, now: datetime | None = None) -> Order:
    """
    Ring up a sale in the shop.

    Starts CONFIRMED, paid in cash, picked up on the spot. May carry a direct
    seller discount (non-manager cap applies); never redeems cashback.
    """
    discount = require_non_negative_cents(command.discount_cents, field="discount")
    if discount and command.discount_reason_id is None:
        raise ValidationError("A discount reason is required to apply a discount")

    def _op():
        op_now = resolve_now(now)
        seller = get_seller(command.seller_id)
        customer = get_customer(command.customer_id, lock=True, require_active=True)
        requested = _merge_lines(command.items)

        order = Order(
            order_number=next_order_number(op_now),
            customer_id=customer.id,
            seller_id=seller.id,
            ordered_at=op_now,
            status=ORDER_STATUS_CONFIRMED,
            confirmed_at=op_now,
            payment_method=PAYMENT_CASH,
            paid_at=op_now,
            delivery_type=DELIVERY_PICKUP,
            delivery_fee_cents=delivery_fee_for(DELIVERY_PICKUP),
            seller_notes=command.seller_notes,
            created_by=seller.id,
        )
        db.session.add(order)
        db.session.flush()

        _build_items_locked(order, requested, actor_id=seller.id)
        recalculate_totals(order)

        if discount:
            _apply_seller_discount_locked(
                order, seller, command.discount_reason_id, discount, command.discount_note
            )

        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "In-person order created: %s seller=%s customer=%s final=%s",
        order.order_number, order.seller_id, order.customer_id, format_cents(order.final_price_cents),
    )
    publish_order_created(order)
    return order


# =============================================================================
# CANCEL
# =============================================================================

def cancel_order(order_id: int, reason: str | None = None, actor_id: int | None = None) -> Order:
    """
    Cancel a PENDING or CONFIRMED order.

    Restores stock for every line and credits back any redeemed cashback as a
    compensating EARNED entry (fresh expiry window, own idempotency key).
    """
    def _op():
        customer_id = get_order_record(order_id).customer_id
        customer = get_customer(customer_id, lock=True)
        order = get_order_for_update(order_id)
        previous = order.status

        _transition_locked(order, ORDER_STATUS_CANCELLED, actor_id=actor_id)
        order.cancellation_reason = reason

        for item in sorted(order_items(order.id), key=lambda i: i.product_id):
            _increase_stock_locked(item.product_id, item.quantity, actor_id=actor_id)

        if order.cashback_used_cents > 0:
            _refund_locked(customer, order.id, order.cashback_used_cents)

        db.session.commit()
        return order, previous

    order, previous = run_with_retry(_op)
    current_app.logger.info(
        "Order cancelled: %s (was %s) refunded_cashback=%s reason=%s",
        order.order_number, previous, format_cents(order.cashback_used_cents), reason,
    )
    publish_status_changed(order, previous)
    return order


# =============================================================================
# DELIVERY / CASHBACK EARNING
# =============================================================================

def cashback_for(order: Order) -> int:
    """Cashback an order earns: the configured rate of its final price."""
    return percent_of(order.final_price_cents, current_app.config["CASHBACK_RATE_BPS"])


def _on_delivered_locked(order: Order, customer, now: datetime | None = None):
    """
    Credit the order's cashback exactly once. Returns (entry, created), or
    (None, False) when the order earns nothing.
    """
    if order.status != ORDER_STATUS_DELIVERED or not order.is_paid:
        raise InvalidTransition(
            "Only paid, delivered orders earn cashback",
            details={"order_id": order.id, "status": order.status, "paid": order.is_paid},
        )

    amount = cashback_for(order)
    if amount <= 0:
        return None, False

    return _earn_locked(
        customer,
        amount_cents=amount,
        order_id=order.id,
        description=f"Cashback for order {order.order_number}",
        idempotency_key=earn_idempotency_key(order.id),
        earned_at=now,
    )


def on_delivered(order_id: int, now: datetime | None = None):
    """Earn cashback for an already delivered order. Safe to call repeatedly."""
    def _op():
        customer_id = get_order_record(order_id).customer_id
        customer = get_customer(customer_id, lock=True)
        order = get_order_for_update(order_id)
        txn, created = _on_delivered_locked(order, customer, now=now)
        db.session.commit()
        return txn, created

    txn, created = run_with_retry(_op)
    if created:
        current_app.logger.info(
            "Cashback earned: order=%s amount=%s", order_id, format_cents(txn.amount_cents)
        )
        publish_cashback_earned(txn)
    return txn


def deliver_order(order_id: int, actor_id: int | None = None, now: datetime | None = None) -> Order:
    """
    MarkDelivered and earn cashback in one unit of work.

    Requires the order to be paid and READY_FOR_PICKUP or SHIPPED.
    """
    def _op():
        op_now = resolve_now(now)
        customer_id = get_order_record(order_id).customer_id
        customer = get_customer(customer_id, lock=True)
        order = get_order_for_update(order_id)
        previous = _transition_locked(order, ORDER_STATUS_DELIVERED, actor_id=actor_id, now=op_now)
        txn, created = _on_delivered_locked(order, customer, now=op_now)
        db.session.commit()
        return order, previous, txn, created

    order, previous, txn, created = run_with_retry(_op)
    current_app.logger.info("Order %s: %s -> %s", order.order_number, previous, order.status)
    publish_status_changed(order, previous)
    if created:
        current_app.logger.info(
            "Cashback earned: order=%s customer=%s amount=%s",
            order.order_number, order.customer_id, format_cents(txn.amount_cents),
        )
        publish_cashback_earned(txn)
    return order
