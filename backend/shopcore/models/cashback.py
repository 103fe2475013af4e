from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import to_utc_z
from .lifecycle import LifecycleMixin

CASHBACK_EARNED = "EARNED"
CASHBACK_USED = "USED"
CASHBACK_EXPIRED = "EXPIRED"


class CashbackTransaction(LifecycleMixin, db.Model):
    """
    Append-only cashback ledger entry.

    KINDS:
    - EARNED:  amount > 0, remaining starts equal to amount and only ever decreases
    - USED:    amount < 0, remaining = 0, source_transaction_id -> EARNED entry drawn from
    - EXPIRED: amount < 0, remaining = 0, source_transaction_id -> EARNED entry expired

    IMMUTABLE except remaining_cents / consumed_at on the EARNED source entry
    being drawn down or expired.
    """
    __tablename__ = "cashback_transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_number", name="uq_cashback_txn_number"),
        db.UniqueConstraint("idempotency_key", name="uq_cashback_txn_idempotency_key"),
        # FIFO selection: customer's live EARNED entries by expiry
        db.Index("ix_cashback_txn_customer_kind_expires", "customer_id", "kind", "expires_at"),
        db.CheckConstraint("remaining_cents >= 0", name="remaining_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(64), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    source_transaction_id = db.Column(
        db.Integer, db.ForeignKey("cashback_transactions.id"), nullable=True, index=True
    )

    kind = db.Column(db.String(16), nullable=False, index=True)  # EARNED, USED, EXPIRED
    amount_cents = db.Column(db.BigInteger, nullable=False)  # Positive for earn, negative for use/expire
    remaining_cents = db.Column(db.BigInteger, nullable=False, default=0)

    earned_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)  # EARNED only
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    description = db.Column(db.String(255), nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "customer_id": self.customer_id,
            "order_id": self.order_id,
            "source_transaction_id": self.source_transaction_id,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "remaining_cents": self.remaining_cents,
            "earned_at": to_utc_z(self.earned_at),
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "consumed_at": to_utc_z(self.consumed_at) if self.consumed_at else None,
            "description": self.description,
            "version_id": self.version_id,
            **self.lifecycle_dict(),
        }
