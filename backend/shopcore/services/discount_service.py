# Overview: Discount engine; records OrderDiscount events and spreads them over items.

"""
Discount Engine

INVARIANTS:
- order.discount_total_cents == sum(amount_cents) over the order's active
  OrderDiscount rows. Totals are always recomputed from rows, never adjusted
  incrementally (order_service.recalculate_totals).
- discount_total + cashback_used <= gross_total, so the price before the
  delivery fee never goes negative.
- Per-item discount_cents is derived by distribute_to_items() and always sums
  to the order-level figure; it exists for item-level reporting only.

POLICY vs MECHANISM:
- apply_discount() is mechanism: amount checks, reason limits, bookkeeping.
- apply_seller_discount() is the caller-side policy: sellers without the
  MANAGER role are capped at NON_MANAGER_DISCOUNT_LIMIT_BPS of gross total.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import NotFound, ValidationError
from ..models import DiscountReason, Order, OrderDiscount, OrderItem, Seller, active
from ..money import bps_of, format_cents, percent_of, require_positive_cents, BPS_SCALE
from .concurrency import run_with_retry
from .customer_service import get_seller
from .order_lifecycle import require_not_terminal


# =============================================================================
# REASONS
# =============================================================================

def get_discount_reason(reason_id: int) -> DiscountReason:
    reason = active(db.session.query(DiscountReason), DiscountReason).filter(
        DiscountReason.id == reason_id
    ).first()
    if not reason:
        raise NotFound(f"Discount reason {reason_id} not found", details={"discount_reason_id": reason_id})
    return reason


def list_discount_reasons(include_inactive: bool = False) -> list[DiscountReason]:
    q = active(db.session.query(DiscountReason), DiscountReason)
    if not include_inactive:
        q = q.filter(DiscountReason.is_active.is_(True))
    return q.order_by(DiscountReason.name.asc()).all()


def create_discount_reason(
    name: str,
    description: str | None = None,
    *,
    max_discount_bps: int | None = None,
    max_discount_cents: int | None = None,
    is_seller_only: bool = False,
) -> DiscountReason:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Discount reason name is required")
    if max_discount_bps is not None and not 0 < max_discount_bps <= BPS_SCALE:
        raise ValidationError("max_discount_bps must be between 1 and 10000")
    if max_discount_cents is not None:
        max_discount_cents = require_positive_cents(max_discount_cents, field="max_discount_cents")

    reason = DiscountReason(
        name=name,
        description=description,
        max_discount_bps=max_discount_bps,
        max_discount_cents=max_discount_cents,
        is_seller_only=is_seller_only,
    )
    db.session.add(reason)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(f"Discount reason '{name}' already exists", details={"name": name})
    return reason


# =============================================================================
# PERCENTAGE MATH / DISTRIBUTION
# =============================================================================

def discount_share_bps(order: Order, amount_cents: int) -> int:
    """Share of the order's gross total that `amount_cents` represents."""
    return bps_of(amount_cents, order.gross_total_cents)


def distribute_to_items(discount_total_cents: int, items: list[OrderItem]) -> int:
    """
    Spread an order-level discount over its lines, cheapest unit price first.

    Each line absorbs min(remaining, line subtotal). Equal prices keep the
    original line order. Overwrites every line's discount_cents and returns
    whatever could not be placed (0 whenever discount <= gross).
    """
    remaining = discount_total_cents
    for item in sorted(items, key=lambda i: i.unit_price_cents):
        absorbed = min(remaining, item.subtotal_cents)
        item.discount_cents = absorbed
        remaining -= absorbed
    return remaining


# =============================================================================
# APPLY / REMOVE
# =============================================================================

def _check_reason_limits(order: Order, reason: DiscountReason, amount_cents: int, applied_by_seller_id) -> None:
    if not reason.is_active:
        raise ValidationError(
            f"Discount reason '{reason.name}' is inactive", details={"discount_reason_id": reason.id}
        )
    if reason.is_seller_only and applied_by_seller_id is None:
        raise ValidationError(
            f"Discount reason '{reason.name}' can only be applied by a seller",
            details={"discount_reason_id": reason.id},
        )
    if reason.max_discount_cents is not None and amount_cents > reason.max_discount_cents:
        raise ValidationError(
            f"Discount exceeds the {format_cents(reason.max_discount_cents)} limit of '{reason.name}'",
            details={"discount_reason_id": reason.id, "max_discount_cents": reason.max_discount_cents},
        )
    if reason.max_discount_bps is not None:
        cap = percent_of(order.gross_total_cents, reason.max_discount_bps)
        if amount_cents > cap:
            raise ValidationError(
                f"Discount exceeds the limit of '{reason.name}'",
                details={
                    "discount_reason_id": reason.id,
                    "max_discount_bps": reason.max_discount_bps,
                    "max_discount_cents": cap,
                },
            )


def _apply_discount_locked(
    order: Order,
    reason_id: int,
    amount_cents: int,
    applied_by_seller_id: int | None = None,
    note: str | None = None,
) -> OrderDiscount:
    """Record one discount event on a row-locked order and recompute totals. Caller commits."""
    from .order_service import recalculate_totals

    require_not_terminal(order)
    amount_cents = require_positive_cents(amount_cents, field="discount amount")

    if amount_cents > order.gross_total_cents:
        raise ValidationError(
            "Discount cannot exceed the order gross total",
            details={"amount_cents": amount_cents, "gross_total_cents": order.gross_total_cents},
        )
    if order.discount_total_cents + amount_cents + order.cashback_used_cents > order.gross_total_cents:
        raise ValidationError(
            "Discounts and redeemed cashback together cannot exceed the order gross total",
            details={
                "amount_cents": amount_cents,
                "discount_total_cents": order.discount_total_cents,
                "cashback_used_cents": order.cashback_used_cents,
                "gross_total_cents": order.gross_total_cents,
            },
        )

    reason = get_discount_reason(reason_id)
    _check_reason_limits(order, reason, amount_cents, applied_by_seller_id)

    discount = OrderDiscount(
        order_id=order.id,
        discount_reason_id=reason.id,
        amount_cents=amount_cents,
        applied_by_seller_id=applied_by_seller_id,
        note=note,
        created_by=applied_by_seller_id,
    )
    db.session.add(discount)
    db.session.flush()
    recalculate_totals(order)
    return discount


def apply_discount(
    order_id: int,
    reason_id: int,
    amount_cents: int,
    applied_by_seller_id: int | None = None,
    note: str | None = None,
) -> OrderDiscount:
    """Apply a discount to a non-terminal order. None for applied_by means the system."""
    from .order_service import get_order_for_update

    def _op():
        order = get_order_for_update(order_id)
        discount = _apply_discount_locked(order, reason_id, amount_cents, applied_by_seller_id, note)
        db.session.commit()
        current_app.logger.info(
            "Discount applied: order=%s reason=%s amount=%s by=%s",
            order.order_number, reason_id, format_cents(discount.amount_cents),
            applied_by_seller_id or "system",
        )
        return discount

    return run_with_retry(_op)


def remove_discount(order_id: int, discount_id: int, actor_id: int | None = None) -> Order:
    """Reverse (soft-delete) one discount and recompute the order totals."""
    from .order_service import get_order_for_update, recalculate_totals

    def _op():
        order = get_order_for_update(order_id)
        require_not_terminal(order)

        discount = active(db.session.query(OrderDiscount), OrderDiscount).filter(
            OrderDiscount.id == discount_id,
            OrderDiscount.order_id == order.id,
        ).first()
        if not discount:
            raise NotFound(
                f"Discount {discount_id} not found on order {order.order_number}",
                details={"order_id": order.id, "discount_id": discount_id},
            )

        discount.soft_delete(actor_id)
        db.session.flush()
        recalculate_totals(order)
        db.session.commit()
        current_app.logger.info(
            "Discount removed: order=%s discount=%s amount=%s",
            order.order_number, discount.id, format_cents(discount.amount_cents),
        )
        return order

    return run_with_retry(_op)


# =============================================================================
# SELLER POLICY
# =============================================================================

def _apply_seller_discount_locked(
    order: Order,
    seller: Seller,
    reason_id: int,
    amount_cents: int,
    note: str | None = None,
) -> OrderDiscount:
    amount_cents = require_positive_cents(amount_cents, field="discount amount")
    if not seller.is_manager:
        limit_bps = current_app.config["NON_MANAGER_DISCOUNT_LIMIT_BPS"]
        cap = percent_of(order.gross_total_cents, limit_bps)
        if amount_cents > cap:
            current_app.logger.warning(
                "Discount over seller limit rejected: seller=%s order=%s amount=%s share_bps=%s limit_bps=%s",
                seller.id, order.order_number, format_cents(amount_cents),
                discount_share_bps(order, amount_cents), limit_bps,
            )
            raise ValidationError(
                "Discount exceeds the limit for non-manager sellers; manager approval required",
                details={
                    "seller_id": seller.id,
                    "amount_cents": amount_cents,
                    "max_discount_cents": cap,
                    "limit_bps": limit_bps,
                },
            )
    return _apply_discount_locked(order, reason_id, amount_cents, seller.id, note)


def apply_seller_discount(
    order_id: int,
    seller_id: int,
    reason_id: int,
    amount_cents: int,
    note: str | None = None,
) -> OrderDiscount:
    from .order_service import get_order_for_update

    def _op():
        seller = get_seller(seller_id)
        order = get_order_for_update(order_id)
        discount = _apply_seller_discount_locked(order, seller, reason_id, amount_cents, note)
        db.session.commit()
        current_app.logger.info(
            "Seller discount applied: order=%s seller=%s amount=%s",
            order.order_number, seller.id, format_cents(discount.amount_cents),
        )
        return discount

    return run_with_retry(_op)
