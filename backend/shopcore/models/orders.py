from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import utcnow, to_utc_z
from .lifecycle import LifecycleMixin


# =============================================================================
# ORDER STATUS / PAYMENT / DELIVERY (CONSTANTS)
# =============================================================================

ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_CONFIRMED = "CONFIRMED"
ORDER_STATUS_PREPARING = "PREPARING"
ORDER_STATUS_READY_FOR_PICKUP = "READY_FOR_PICKUP"
ORDER_STATUS_SHIPPED = "SHIPPED"
ORDER_STATUS_DELIVERED = "DELIVERED"
ORDER_STATUS_CANCELLED = "CANCELLED"

TERMINAL_STATUSES = {ORDER_STATUS_DELIVERED, ORDER_STATUS_CANCELLED}

PAYMENT_CASH = "CASH"
PAYMENT_CARD = "CARD"
PAYMENT_CASHBACK = "CASHBACK"
PAYMENT_MIXED = "MIXED"
VALID_PAYMENT_METHODS = [PAYMENT_CASH, PAYMENT_CARD, PAYMENT_CASHBACK, PAYMENT_MIXED]

DELIVERY_PICKUP = "PICKUP"
DELIVERY_POSTAL = "POSTAL"
DELIVERY_COURIER = "COURIER"
VALID_DELIVERY_TYPES = [DELIVERY_PICKUP, DELIVERY_POSTAL, DELIVERY_COURIER]


class Order(LifecycleMixin, db.Model):
    """
    One sale, online (customer-initiated) or in-person (seller_id set).

    All money columns are cents. gross/discount/final are DERIVED fields,
    rewritten together by order_service.recalculate_totals():

        final_price = max(0, gross_total - discount_total - cashback_used + delivery_fee)

    Cancellation is a terminal status; orders are never physically removed.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_customer_status", "customer_id", "status"),
        db.Index("ix_orders_status_ordered", "status", "ordered_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    # Present = in-person sale
    seller_id = db.Column(db.Integer, db.ForeignKey("sellers.id"), nullable=True, index=True)

    ordered_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    status = db.Column(db.String(32), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    # Totals (cents)
    gross_total_cents = db.Column(db.BigInteger, nullable=False, default=0)
    discount_total_cents = db.Column(db.BigInteger, nullable=False, default=0)
    cashback_used_cents = db.Column(db.BigInteger, nullable=False, default=0)
    delivery_fee_cents = db.Column(db.BigInteger, nullable=False, default=0)
    final_price_cents = db.Column(db.BigInteger, nullable=False, default=0)

    # Payment
    payment_method = db.Column(db.String(16), nullable=False, default=PAYMENT_CASH)
    payment_reference = db.Column(db.String(128), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Delivery
    delivery_type = db.Column(db.String(16), nullable=False, default=DELIVERY_PICKUP)
    delivery_address = db.Column(db.String(512), nullable=True)

    customer_notes = db.Column(db.String(1000), nullable=True)
    seller_notes = db.Column(db.String(1000), nullable=True)

    # Transition audit
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None

    @property
    def is_in_person(self) -> bool:
        return self.seller_id is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "seller_id": self.seller_id,
            "ordered_at": to_utc_z(self.ordered_at),
            "status": self.status,
            "gross_total_cents": self.gross_total_cents,
            "discount_total_cents": self.discount_total_cents,
            "cashback_used_cents": self.cashback_used_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "final_price_cents": self.final_price_cents,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "delivery_type": self.delivery_type,
            "delivery_address": self.delivery_address,
            "customer_notes": self.customer_notes,
            "seller_notes": self.seller_notes,
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "shipped_at": to_utc_z(self.shipped_at) if self.shipped_at else None,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
            **self.lifecycle_dict(),
        }


class OrderItem(LifecycleMixin, db.Model):
    """
    One product line on an order.

    product_name and unit_price_cents are snapshots taken at order time and
    are immune to later product renames/re-pricing.
    Invariant: 0 <= discount_cents <= quantity * unit_price_cents.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="quantity_positive"),
        db.CheckConstraint("discount_cents >= 0", name="discount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=False)
    discount_cents = db.Column(db.BigInteger, nullable=False, default=0)

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents - (self.discount_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            **self.lifecycle_dict(),
        }


class DiscountReason(LifecycleMixin, db.Model):
    """
    Catalogue of reasons a discount may be given for.

    Optional limits are enforced by discount_service on every application:
    - max_discount_bps: share of the order gross total
    - max_discount_cents: absolute cap per application
    - is_seller_only: only a seller (not the system) may apply it
    """
    __tablename__ = "discount_reasons"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.String(512), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    max_discount_bps = db.Column(db.Integer, nullable=True)
    max_discount_cents = db.Column(db.BigInteger, nullable=True)
    is_seller_only = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "max_discount_bps": self.max_discount_bps,
            "max_discount_cents": self.max_discount_cents,
            "is_seller_only": self.is_seller_only,
            **self.lifecycle_dict(),
        }


class OrderDiscount(LifecycleMixin, db.Model):
    """
    One discount event on an order.

    applied_by_seller_id NULL means the system applied it.
    Reversal = soft delete; the order's discount_total is recomputed from the
    remaining active rows.
    """
    __tablename__ = "order_discounts"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    discount_reason_id = db.Column(db.Integer, db.ForeignKey("discount_reasons.id"), nullable=False, index=True)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    applied_by_seller_id = db.Column(db.Integer, db.ForeignKey("sellers.id"), nullable=True)
    note = db.Column(db.String(512), nullable=True)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "discount_reason_id": self.discount_reason_id,
            "amount_cents": self.amount_cents,
            "applied_by_seller_id": self.applied_by_seller_id,
            "applied_by": "seller" if self.applied_by_seller_id else "system",
            "note": self.note,
            "applied_at": to_utc_z(self.applied_at),
            **self.lifecycle_dict(),
        }
