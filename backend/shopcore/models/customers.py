from __future__ import annotations

from ..extensions import db
from .lifecycle import LifecycleMixin

SELLER_ROLE_SELLER = "SELLER"
SELLER_ROLE_MANAGER = "MANAGER"


class Customer(LifecycleMixin, db.Model):
    """
    Customer master data.

    cashback_balance_cents is a READ CACHE of the customer's cashback ledger
    (sum of remaining amounts on unswept EARNED entries). It is written only by
    cashback_service inside the same transaction as the ledger rows it mirrors;
    any divergence from the ledger is a bug, not a second truth.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("phone", name="uq_customers_phone"),
        db.Index("ix_customers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False, default="")
    phone = db.Column(db.String(32), nullable=False)
    address = db.Column(db.String(512), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Denormalized cache of the cashback ledger (cents)
    cashback_balance_cents = db.Column(db.BigInteger, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "phone": self.phone,
            "address": self.address,
            "is_active": self.is_active,
            "cashback_balance_cents": self.cashback_balance_cents,
            "version_id": self.version_id,
            **self.lifecycle_dict(),
        }


class Seller(LifecycleMixin, db.Model):
    """In-store staff member who can create in-person orders and apply discounts."""
    __tablename__ = "sellers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    role = db.Column(db.String(16), nullable=False, default=SELLER_ROLE_SELLER)  # SELLER, MANAGER
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    @property
    def is_manager(self) -> bool:
        return self.role == SELLER_ROLE_MANAGER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            **self.lifecycle_dict(),
        }
