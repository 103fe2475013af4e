# Overview: Customer balance store; the cashback balance field is a ledger cache.

from __future__ import annotations

from ..extensions import db
from ..errors import NotFound, ValidationError
from ..models import Customer, Seller, active
from .concurrency import lock_for_update


def get_customer(
    customer_id: int, *, lock: bool = False, require_active: bool = False, include_deleted: bool = False
) -> Customer:
    q = db.session.query(Customer).filter(Customer.id == customer_id)
    if not include_deleted:
        q = active(q, Customer)
    if lock:
        q = lock_for_update(q)
    customer = q.first()
    if not customer:
        raise NotFound(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    if require_active and not customer.is_active:
        raise ValidationError("Customer account is inactive", details={"customer_id": customer_id})
    return customer


def get_seller(seller_id: int, *, require_active: bool = True) -> Seller:
    seller = active(db.session.query(Seller), Seller).filter(Seller.id == seller_id).first()
    if not seller:
        raise NotFound(f"Seller {seller_id} not found", details={"seller_id": seller_id})
    if require_active and not seller.is_active:
        raise ValidationError("Seller account is inactive", details={"seller_id": seller_id})
    return seller


def set_cashback_balance(customer: Customer, value_cents: int) -> None:
    """
    Write the cached cashback balance.

    Only cashback_service calls this, in the same transaction as the ledger
    rows the new value mirrors.
    """
    if value_cents < 0:
        raise ValueError("cached cashback balance cannot go negative")
    customer.cashback_balance_cents = value_cents
    customer.touch()
