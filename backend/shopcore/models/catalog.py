from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import utcnow, to_utc_z
from .lifecycle import LifecycleMixin


class Product(LifecycleMixin, db.Model):
    """
    Product master data plus its stock counter.

    stock_quantity is write-contended: every change goes through
    stock_service under a row lock, in the caller's unit of work.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        db.CheckConstraint("stock_quantity >= 0", name="stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.BigInteger, nullable=False)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "stock_quantity": self.stock_quantity,
            "is_active": self.is_active,
            "version_id": self.version_id,
            **self.lifecycle_dict(),
        }


class CartItem(LifecycleMixin, db.Model):
    """Customer cart line. Soft-deleted when checked out or removed."""
    __tablename__ = "cart_items"
    __table_args__ = (
        db.Index("ix_cart_items_customer_active", "customer_id", "deleted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    added_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "added_at": to_utc_z(self.added_at),
            **self.lifecycle_dict(),
        }
