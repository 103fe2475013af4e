# Overview: Customer cart; the source lines for create_order(from_cart=True).

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import NotFound, ValidationError
from ..models import CartItem, active
from ..money import require_quantity
from .concurrency import run_with_retry
from .customer_service import get_customer
from .stock_service import get_product


def _active_cart(customer_id: int):
    return active(db.session.query(CartItem), CartItem).filter(CartItem.customer_id == customer_id)


def list_cart(customer_id: int) -> list[CartItem]:
    return _active_cart(customer_id).order_by(CartItem.added_at.asc(), CartItem.id.asc()).all()


def add_to_cart(customer_id: int, product_id: int, quantity: int = 1) -> CartItem:
    """Add a product; an existing line for the same product absorbs the quantity."""
    quantity = require_quantity(quantity)

    def _op():
        get_customer(customer_id, require_active=True)
        product = get_product(product_id)
        if not product.is_active:
            raise ValidationError(
                f"Product {product.name} is not available for sale",
                details={"product_id": product.id},
            )

        item = _active_cart(customer_id).filter(CartItem.product_id == product_id).first()
        if item:
            item.quantity += quantity
            item.touch(customer_id)
        else:
            item = CartItem(
                customer_id=customer_id,
                product_id=product_id,
                quantity=quantity,
                created_by=customer_id,
            )
            db.session.add(item)
        db.session.commit()
        return item

    return run_with_retry(_op)


def remove_from_cart(customer_id: int, cart_item_id: int) -> None:
    def _op():
        item = _active_cart(customer_id).filter(CartItem.id == cart_item_id).first()
        if not item:
            raise NotFound(
                f"Cart item {cart_item_id} not found",
                details={"customer_id": customer_id, "cart_item_id": cart_item_id},
            )
        item.soft_delete(customer_id)
        db.session.commit()

    run_with_retry(_op)


def _clear_cart_locked(items: list[CartItem], *, actor_id: int | None = None) -> None:
    """Soft-delete checked-out lines. Caller commits."""
    for item in items:
        item.soft_delete(actor_id)
    if items:
        current_app.logger.debug("Cart cleared: %s line(s)", len(items))
