# Overview: Product stock store; row-locked stock decrements and restores.

"""
Product stock store.

Invariants:
- stock_quantity never goes negative (also a DB check constraint).
- Every change runs under a row lock on the product, inside the caller's
  unit of work. The `_locked` helpers never commit; the public wrappers are
  one-shot units of work for standalone use (restocking, admin tools).
- Callers touching several products lock them in ascending id order.
"""

from __future__ import annotations

from ..extensions import db
from ..errors import NotFound, InsufficientStock, ValidationError
from ..models import Product, active
from ..money import require_quantity
from .concurrency import lock_for_update, run_with_retry


def get_product(product_id: int, *, lock: bool = False) -> Product:
    q = active(db.session.query(Product), Product).filter(Product.id == product_id)
    if lock:
        q = lock_for_update(q)
    product = q.first()
    if not product:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def _decrease_stock_locked(product_id: int, quantity: int, *, actor_id: int | None = None) -> Product:
    require_quantity(quantity)
    product = get_product(product_id, lock=True)
    if product.stock_quantity < quantity:
        raise InsufficientStock(
            f"Insufficient stock for {product.name}",
            details={
                "product_id": product.id,
                "requested_quantity": quantity,
                "on_hand": product.stock_quantity,
            },
        )
    product.stock_quantity -= quantity
    product.touch(actor_id)
    return product


def _increase_stock_locked(product_id: int, quantity: int, *, actor_id: int | None = None) -> Product:
    require_quantity(quantity)
    # Restores must succeed even if the product was deactivated meanwhile
    product = lock_for_update(db.session.query(Product).filter(Product.id == product_id)).first()
    if not product:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    product.stock_quantity += quantity
    product.touch(actor_id)
    return product


def decrease_stock(product_id: int, quantity: int, *, actor_id: int | None = None) -> Product:
    """Fails with InsufficientStock if fewer than `quantity` units are on hand."""
    def _op():
        product = _decrease_stock_locked(product_id, quantity, actor_id=actor_id)
        db.session.commit()
        return product

    return run_with_retry(_op)


def increase_stock(product_id: int, quantity: int, *, actor_id: int | None = None) -> Product:
    def _op():
        product = _increase_stock_locked(product_id, quantity, actor_id=actor_id)
        db.session.commit()
        return product

    return run_with_retry(_op)


def validate_availability(requested: dict[int, int]) -> dict[int, Product]:
    """
    Lock every requested product (ascending id) and check it is sellable.

    Returns the locked products keyed by id. Collects every shortage before
    failing so the caller can report them all at once.
    """
    products: dict[int, Product] = {}
    insufficient = []
    for product_id in sorted(requested):
        qty = requested[product_id]
        product = get_product(product_id, lock=True)
        if not product.is_active:
            raise ValidationError(
                f"Product {product.name} is not available for sale",
                details={"product_id": product.id},
            )
        if product.stock_quantity < qty:
            insufficient.append({
                "product_id": product.id,
                "requested_quantity": qty,
                "on_hand": product.stock_quantity,
            })
        products[product_id] = product

    if insufficient:
        raise InsufficientStock(
            "Insufficient stock to place order",
            details={"items": insufficient},
        )
    return products
