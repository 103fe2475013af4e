# Overview: Order aggregate; totals, state transitions, payment, delivery and item edits.

"""
Order Aggregate Service

TOTALS (always recomputed from rows, never adjusted incrementally):
    gross_total    = sum(quantity * unit_price) over active items
    discount_total = sum(amount) over active OrderDiscount rows
    final_price    = max(0, gross_total - discount_total - cashback_used + delivery_fee)

recalculate_totals() is idempotent: calling it twice in a row changes nothing.

MUTATION RULES:
- Items and delivery may change only while PENDING, and every item edit
  reserves or releases stock in the same unit of work.
- A change that would leave discount_total + cashback_used > gross_total, or
  remove the order's last item, is rejected before anything is written.
- Status changes go through order_lifecycle.validate_transition().

Delivery (and the cashback earned on it) and cancellation live in
order_orchestrator, because they touch the ledger and stock as well.

LOCK ORDER: customer -> order -> products (ascending id) -> ledger entries.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import InternalInvariantViolation, NotFound, ValidationError
from ..models import Order, OrderDiscount, OrderItem, active
from ..models.orders import (
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PREPARING,
    ORDER_STATUS_READY_FOR_PICKUP,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
    VALID_DELIVERY_TYPES,
    VALID_PAYMENT_METHODS,
    DELIVERY_PICKUP,
)
from ..money import format_cents, require_quantity
from shopcore.time_utils import resolve_now
from .concurrency import lock_for_update, run_with_retry
from .discount_service import distribute_to_items
from .notification_service import publish_status_changed
from .order_lifecycle import require_editable, validate_transition
from .stock_service import _decrease_stock_locked, _increase_stock_locked, get_product


# =============================================================================
# READS
# =============================================================================

def _order_query():
    return active(db.session.query(Order), Order)


def get_order_for_update(order_id: int) -> Order:
    order = lock_for_update(_order_query().filter(Order.id == order_id)).first()
    if not order:
        raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def get_order_record(order_id: int) -> Order:
    order = _order_query().filter(Order.id == order_id).first()
    if not order:
        raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def order_items(order_id: int) -> list[OrderItem]:
    return (
        active(db.session.query(OrderItem), OrderItem)
        .filter(OrderItem.order_id == order_id)
        .order_by(OrderItem.id.asc())
        .all()
    )


def order_discounts(order_id: int) -> list[OrderDiscount]:
    return (
        active(db.session.query(OrderDiscount), OrderDiscount)
        .filter(OrderDiscount.order_id == order_id)
        .order_by(OrderDiscount.id.asc())
        .all()
    )


def get_order(order_id: int) -> dict:
    """Order plus its active items and discounts as plain dicts."""
    order = get_order_record(order_id)
    data = order.to_dict()
    data["items"] = [i.to_dict() for i in order_items(order.id)]
    data["discounts"] = [d.to_dict() for d in order_discounts(order.id)]
    return data


# =============================================================================
# TOTALS
# =============================================================================

def delivery_fee_for(delivery_type: str) -> int:
    fees = current_app.config["DELIVERY_FEES_CENTS"]
    return int(fees.get(delivery_type, 0))


def _check_reductions(order: Order, gross_total_cents: int) -> None:
    """Reject a change that would let discounts plus cashback exceed the gross total."""
    reductions = order.discount_total_cents + order.cashback_used_cents
    if reductions > gross_total_cents:
        raise ValidationError(
            "Order total would fall below its discounts and redeemed cashback",
            details={
                "order_id": order.id,
                "gross_total_cents": gross_total_cents,
                "discount_total_cents": order.discount_total_cents,
                "cashback_used_cents": order.cashback_used_cents,
            },
        )


def recalculate_totals(order: Order) -> Order:
    """Rewrite every derived money field of `order` from its current rows. Caller commits."""
    items = order_items(order.id)
    gross = sum(i.subtotal_cents for i in items)
    discount_total = sum(d.amount_cents for d in order_discounts(order.id))

    if discount_total + order.cashback_used_cents > gross:
        current_app.logger.error(
            "Order reductions exceed gross: order=%s gross=%s discount=%s cashback=%s",
            order.id, gross, discount_total, order.cashback_used_cents,
        )
        raise InternalInvariantViolation(
            "Order discounts and cashback exceed its gross total",
            details={
                "order_id": order.id,
                "gross_total_cents": gross,
                "discount_total_cents": discount_total,
                "cashback_used_cents": order.cashback_used_cents,
            },
        )

    distribute_to_items(discount_total, items)

    order.gross_total_cents = gross
    order.discount_total_cents = discount_total
    order.final_price_cents = max(
        0, gross - discount_total - order.cashback_used_cents + order.delivery_fee_cents
    )
    return order


# =============================================================================
# TRANSITIONS
# =============================================================================

_TIMESTAMP_FIELDS = {
    ORDER_STATUS_CONFIRMED: "confirmed_at",
    ORDER_STATUS_SHIPPED: "shipped_at",
    ORDER_STATUS_DELIVERED: "delivered_at",
    ORDER_STATUS_CANCELLED: "cancelled_at",
}


def _transition_locked(order: Order, to_status: str, *, actor_id: int | None = None, now: datetime | None = None) -> str:
    """Move a locked order to `to_status`. Returns the previous status. Caller commits."""
    validate_transition(order, to_status)
    now = resolve_now(now)
    previous = order.status
    order.status = to_status
    field = _TIMESTAMP_FIELDS.get(to_status)
    if field:
        setattr(order, field, now)
    order.touch(actor_id)
    return previous


def _transition(order_id: int, to_status: str, actor_id: int | None = None) -> Order:
    def _op():
        order = get_order_for_update(order_id)
        previous = _transition_locked(order, to_status, actor_id=actor_id)
        db.session.commit()
        return order, previous

    order, previous = run_with_retry(_op)
    current_app.logger.info("Order %s: %s -> %s", order.order_number, previous, order.status)
    publish_status_changed(order, previous)
    return order


def confirm_order(order_id: int, actor_id: int | None = None) -> Order:
    return _transition(order_id, ORDER_STATUS_CONFIRMED, actor_id)


def start_preparing(order_id: int, actor_id: int | None = None) -> Order:
    return _transition(order_id, ORDER_STATUS_PREPARING, actor_id)


def mark_ready_for_pickup(order_id: int, actor_id: int | None = None) -> Order:
    return _transition(order_id, ORDER_STATUS_READY_FOR_PICKUP, actor_id)


def mark_shipped(order_id: int, actor_id: int | None = None) -> Order:
    return _transition(order_id, ORDER_STATUS_SHIPPED, actor_id)


# =============================================================================
# PAYMENT / DELIVERY
# =============================================================================

def _record_payment_locked(
    order: Order,
    payment_method: str | None = None,
    reference: str | None = None,
    paid_at: datetime | None = None,
) -> Order:
    if order.status == ORDER_STATUS_CANCELLED:
        raise ValidationError("Cannot record payment for a cancelled order", details={"order_id": order.id})
    if order.is_paid:
        raise ValidationError("Order is already paid", details={"order_id": order.id})
    if payment_method is not None:
        if payment_method not in VALID_PAYMENT_METHODS:
            raise ValidationError(
                f"Invalid payment method '{payment_method}'",
                details={"allowed": VALID_PAYMENT_METHODS},
            )
        order.payment_method = payment_method
    order.payment_reference = reference
    order.paid_at = resolve_now(paid_at)
    order.touch()
    return order


def record_payment(
    order_id: int,
    payment_method: str | None = None,
    reference: str | None = None,
    paid_at: datetime | None = None,
) -> Order:
    """Stamp the order as paid. Settlement itself happens outside this service."""
    def _op():
        order = get_order_for_update(order_id)
        _record_payment_locked(order, payment_method, reference, paid_at)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Payment recorded: order=%s method=%s amount=%s",
        order.order_number, order.payment_method, format_cents(order.final_price_cents),
    )
    return order


def validate_delivery(delivery_type: str, address: str | None) -> str | None:
    if delivery_type not in VALID_DELIVERY_TYPES:
        raise ValidationError(
            f"Invalid delivery type '{delivery_type}'",
            details={"allowed": VALID_DELIVERY_TYPES},
        )
    address = (address or "").strip() or None
    if delivery_type != DELIVERY_PICKUP and not address:
        raise ValidationError(
            "Delivery address is required unless the order is picked up",
            details={"delivery_type": delivery_type},
        )
    return address


def set_delivery(order_id: int, delivery_type: str, address: str | None = None) -> Order:
    address = validate_delivery(delivery_type, address)

    def _op():
        order = get_order_for_update(order_id)
        require_editable(order)
        order.delivery_type = delivery_type
        order.delivery_address = address
        order.delivery_fee_cents = delivery_fee_for(delivery_type)
        recalculate_totals(order)
        order.touch()
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# ITEM MUTATIONS (PENDING only)
# =============================================================================

def _get_item(order: Order, item_id: int) -> OrderItem:
    item = active(db.session.query(OrderItem), OrderItem).filter(
        OrderItem.id == item_id, OrderItem.order_id == order.id
    ).first()
    if not item:
        raise NotFound(
            f"Item {item_id} not found on order {order.order_number}",
            details={"order_id": order.id, "item_id": item_id},
        )
    return item


def add_item(order_id: int, product_id: int, quantity: int, actor_id: int | None = None) -> OrderItem:
    """Add units of a product; an existing line for the product absorbs them at its snapshot price."""
    quantity = require_quantity(quantity)

    def _op():
        order = get_order_for_update(order_id)
        require_editable(order)

        item = active(db.session.query(OrderItem), OrderItem).filter(
            OrderItem.order_id == order.id, OrderItem.product_id == product_id
        ).first()

        product = get_product(product_id, lock=True)
        if not product.is_active:
            raise ValidationError(
                f"Product {product.name} is not available for sale",
                details={"product_id": product.id},
            )
        _decrease_stock_locked(product_id, quantity, actor_id=actor_id)

        if item:
            item.quantity += quantity
            item.touch(actor_id)
        else:
            item = OrderItem(
                order_id=order.id,
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_price_cents=product.price_cents,
                created_by=actor_id,
            )
            db.session.add(item)
        db.session.flush()

        recalculate_totals(order)
        order.touch(actor_id)
        db.session.commit()
        return item

    return run_with_retry(_op)


def change_item_quantity(order_id: int, item_id: int, quantity: int, actor_id: int | None = None) -> OrderItem:
    quantity = require_quantity(quantity)

    def _op():
        order = get_order_for_update(order_id)
        require_editable(order)
        item = _get_item(order, item_id)

        delta = quantity - item.quantity
        if delta == 0:
            return item

        new_gross = order.gross_total_cents + delta * item.unit_price_cents
        _check_reductions(order, new_gross)

        if delta > 0:
            _decrease_stock_locked(item.product_id, delta, actor_id=actor_id)
        else:
            _increase_stock_locked(item.product_id, -delta, actor_id=actor_id)

        item.quantity = quantity
        item.touch(actor_id)
        db.session.flush()
        recalculate_totals(order)
        order.touch(actor_id)
        db.session.commit()
        return item

    return run_with_retry(_op)


def remove_item(order_id: int, item_id: int, actor_id: int | None = None) -> Order:
    def _op():
        order = get_order_for_update(order_id)
        require_editable(order)
        item = _get_item(order, item_id)

        if len(order_items(order.id)) <= 1:
            raise ValidationError(
                "An order must keep at least one item; cancel the order instead",
                details={"order_id": order.id},
            )
        _check_reductions(order, order.gross_total_cents - item.subtotal_cents)

        _increase_stock_locked(item.product_id, item.quantity, actor_id=actor_id)
        item.soft_delete(actor_id)
        db.session.flush()
        recalculate_totals(order)
        order.touch(actor_id)
        db.session.commit()
        return order

    return run_with_retry(_op)

