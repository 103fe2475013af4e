# Overview: FIFO cashback ledger; earn, use (oldest-expiring first), expire, reconcile.

"""
Cashback Ledger Service

WHY: A customer's cashback balance is not one mutable number. It is a ledger
of dated credits (EARNED) that are drawn down (USED) or lapse (EXPIRED), and
every figure shown to the customer must be reconcilable from those rows.

LEDGER INVARIANTS (authoritative):
- EARNED: 0 <= remaining_cents <= amount_cents; expires_at = earned_at + window.
- USED / EXPIRED: amount_cents < 0, remaining_cents = 0, linked to the EARNED
  entry they drew from via source_transaction_id.
- Customer.cashback_balance_cents == sum(remaining_cents) over unswept EARNED
  entries, always, because both are written in the same transaction.
- available balance = sum(remaining_cents) over EARNED entries with
  expires_at > now. It equals the cached field once the expiry sweep has
  processed everything past expiry.

FIFO RULE:
- Redemption draws from the soonest-expiring credit first (expires_at ASC,
  then id ASC), never in insertion order. One USED row per source drawn.

LOCKING (same order everywhere, to avoid deadlocks):
1. Customer row (FOR UPDATE + version_id)
2. The customer's candidate EARNED rows (FOR UPDATE + version_id)
Selection, draw-down and cache write happen in ONE transaction.

`_locked` helpers never commit: the orchestrator composes them into its own
unit of work. Public functions are standalone units of work.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import DomainError, InsufficientBalance, InternalInvariantViolation, ValidationError
from ..models import CashbackTransaction, Customer, active
from ..models.cashback import CASHBACK_EARNED, CASHBACK_USED, CASHBACK_EXPIRED
from ..money import format_cents, require_positive_cents
from shopcore.time_utils import resolve_now
from .concurrency import lock_for_update, run_with_retry
from .customer_service import get_customer, set_cashback_balance
from .document_service import next_transaction_number


def _expiry_window() -> timedelta:
    return timedelta(days=current_app.config["CASHBACK_EXPIRY_DAYS"])


def earn_idempotency_key(order_id: int) -> str:
    return f"order:{order_id}:earn"


def refund_idempotency_key(order_id: int) -> str:
    return f"order:{order_id}:refund"


# =============================================================================
# READS
# =============================================================================

def _live_earned(customer_id: int):
    return active(db.session.query(CashbackTransaction), CashbackTransaction).filter(
        CashbackTransaction.customer_id == customer_id,
        CashbackTransaction.kind == CASHBACK_EARNED,
        CashbackTransaction.remaining_cents > 0,
    )


def _sum_remaining(query) -> int:
    total = query.with_entities(
        func.coalesce(func.sum(CashbackTransaction.remaining_cents), 0)
    ).scalar()
    return int(total or 0)


def available_balance(customer_id: int, now: datetime | None = None) -> int:
    """Spendable cashback: remaining amounts on EARNED entries not yet expired."""
    now = resolve_now(now)
    return _sum_remaining(
        _live_earned(customer_id).filter(CashbackTransaction.expires_at > now)
    )


def ledger_balance(customer_id: int) -> int:
    """Remaining amounts on every unswept EARNED entry; what the cached field mirrors."""
    return _sum_remaining(_live_earned(customer_id))


def expiring_within(customer_id: int, days: int, now: datetime | None = None) -> int:
    """Cashback that will lapse within `days` but has not lapsed yet (read only)."""
    if days < 0:
        raise ValidationError("days cannot be negative")
    now = resolve_now(now)
    return _sum_remaining(
        _live_earned(customer_id).filter(
            CashbackTransaction.expires_at > now,
            CashbackTransaction.expires_at <= now + timedelta(days=days),
        )
    )


def get_by_idempotency_key(key: str) -> CashbackTransaction | None:
    return db.session.query(CashbackTransaction).filter_by(idempotency_key=key).first()


def get_cashback_summary(customer_id: int, now: datetime | None = None) -> dict:
    now = resolve_now(now)
    customer = get_customer(customer_id)

    def _total(kind: str) -> int:
        total = (
            active(db.session.query(CashbackTransaction), CashbackTransaction)
            .filter(CashbackTransaction.customer_id == customer_id, CashbackTransaction.kind == kind)
            .with_entities(func.coalesce(func.sum(CashbackTransaction.amount_cents), 0))
            .scalar()
        )
        return abs(int(total or 0))

    return {
        "customer_id": customer_id,
        "balance_cents": customer.cashback_balance_cents,
        "available_cents": available_balance(customer_id, now=now),
        "total_earned_cents": _total(CASHBACK_EARNED),
        "total_used_cents": _total(CASHBACK_USED),
        "total_expired_cents": _total(CASHBACK_EXPIRED),
        "expiring_soon_cents": expiring_within(
            customer_id, current_app.config["CASHBACK_EXPIRING_SOON_DAYS"], now=now
        ),
    }


def list_cashback_history(customer_id: int, page: int = 1, page_size: int = 20) -> list[dict]:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= page_size <= 100:
        raise ValidationError("page_size must be between 1 and 100")
    get_customer(customer_id)

    rows = (
        active(db.session.query(CashbackTransaction), CashbackTransaction)
        .filter(CashbackTransaction.customer_id == customer_id)
        .order_by(CashbackTransaction.earned_at.desc(), CashbackTransaction.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return [r.to_dict() for r in rows]


# =============================================================================
# EARN
# =============================================================================

def _earn_locked(
    customer: Customer,
    *,
    amount_cents: int,
    order_id: int | None,
    description: str,
    idempotency_key: str | None,
    earned_at: datetime | None = None,
) -> tuple[CashbackTransaction, bool]:
    """
    Append an EARNED entry and raise the cached balance by the same amount.

    Returns (entry, created). With an idempotency key that was already used,
    returns the existing entry and changes nothing.
    """
    amount_cents = require_positive_cents(amount_cents)

    if idempotency_key:
        existing = get_by_idempotency_key(idempotency_key)
        if existing is not None:
            if existing.customer_id != customer.id or existing.kind != CASHBACK_EARNED:
                raise InternalInvariantViolation(
                    "Idempotency key already used for a different ledger entry",
                    details={"idempotency_key": idempotency_key, "transaction_id": existing.id},
                )
            return existing, False

    earned_at = resolve_now(earned_at)
    txn = CashbackTransaction(
        transaction_number=next_transaction_number(),
        customer_id=customer.id,
        order_id=order_id,
        kind=CASHBACK_EARNED,
        amount_cents=amount_cents,
        remaining_cents=amount_cents,
        earned_at=earned_at,
        expires_at=earned_at + _expiry_window(),
        description=description,
        idempotency_key=idempotency_key,
    )
    db.session.add(txn)
    set_cashback_balance(customer, customer.cashback_balance_cents + amount_cents)
    db.session.flush()
    return txn, True


def earn(
    customer_id: int,
    order_id: int | None,
    amount_cents: int,
    note: str | None = None,
    *,
    idempotency_key: str | None = None,
    earned_at: datetime | None = None,
) -> CashbackTransaction:
    """
    Credit cashback to a customer.

    For order-linked credits the idempotency key defaults to
    "order:<id>:earn", so an order can never earn twice.
    """
    if idempotency_key is None and order_id is not None:
        idempotency_key = earn_idempotency_key(order_id)

    def _op():
        customer = get_customer(customer_id, lock=True)
        txn, created = _earn_locked(
            customer,
            amount_cents=amount_cents,
            order_id=order_id,
            description=note or (f"Earned from order #{order_id}" if order_id else "Cashback credit"),
            idempotency_key=idempotency_key,
            earned_at=earned_at,
        )
        db.session.commit()
        if created:
            current_app.logger.info(
                "Cashback earned: customer=%s order=%s amount=%s",
                customer_id, order_id, format_cents(txn.amount_cents),
            )
        return txn

    return run_with_retry(_op)


def _refund_locked(customer: Customer, order_id: int, amount_cents: int) -> tuple[CashbackTransaction, bool]:
    """Compensating credit for cashback redeemed on an order that was cancelled."""
    return _earn_locked(
        customer,
        amount_cents=amount_cents,
        order_id=order_id,
        description=f"Refund of cashback used on cancelled order #{order_id}",
        idempotency_key=refund_idempotency_key(order_id),
    )


# =============================================================================
# USE (FIFO)
# =============================================================================

def _use_locked(
    customer: Customer,
    order_id: int | None,
    amount_cents: int,
    now: datetime | None = None,
) -> list[CashbackTransaction]:
    """
    Redeem `amount_cents` oldest-expiring-first. Caller holds the customer lock.

    Raises InsufficientBalance (nothing written) when the spendable balance
    is too small. Running out of entries after that check passed means the
    ledger is corrupt: InternalInvariantViolation.
    """
    amount_cents = require_positive_cents(amount_cents)
    now = resolve_now(now)

    candidates = (
        lock_for_update(
            _live_earned(customer.id).filter(CashbackTransaction.expires_at > now)
        )
        .order_by(CashbackTransaction.expires_at.asc(), CashbackTransaction.id.asc())
        .all()
    )
    available = sum(c.remaining_cents for c in candidates)
    if amount_cents > available:
        raise InsufficientBalance(
            "Insufficient cashback balance",
            details={"available_cents": available, "requested_cents": amount_cents},
        )

    needed = amount_cents
    used_entries: list[CashbackTransaction] = []
    for source in candidates:
        if needed <= 0:
            break
        draw = min(source.remaining_cents, needed)

        used = CashbackTransaction(
            transaction_number=next_transaction_number(),
            customer_id=customer.id,
            order_id=order_id,
            source_transaction_id=source.id,
            kind=CASHBACK_USED,
            amount_cents=-draw,
            remaining_cents=0,
            earned_at=now,
            description=f"Used for order #{order_id}" if order_id else "Cashback redeemed",
        )
        db.session.add(used)
        used_entries.append(used)

        source.remaining_cents -= draw
        if source.remaining_cents == 0:
            source.consumed_at = now
        source.touch()
        needed -= draw

    if needed != 0:
        current_app.logger.error(
            "Cashback FIFO walk exhausted entries: customer=%s requested=%s short=%s",
            customer.id, amount_cents, needed,
        )
        raise InternalInvariantViolation(
            "Cashback entries exhausted before redemption was satisfied",
            details={"customer_id": customer.id, "requested_cents": amount_cents, "short_cents": needed},
        )

    new_balance = customer.cashback_balance_cents - amount_cents
    if new_balance < 0:
        current_app.logger.error(
            "Cached cashback balance would go negative: customer=%s cached=%s redeem=%s",
            customer.id, customer.cashback_balance_cents, amount_cents,
        )
        raise InternalInvariantViolation(
            "Cached cashback balance diverged from ledger",
            details={"customer_id": customer.id, "cached_cents": customer.cashback_balance_cents},
        )
    set_cashback_balance(customer, new_balance)
    db.session.flush()
    return used_entries


def use(customer_id: int, order_id: int | None, amount_cents: int, now: datetime | None = None) -> list[CashbackTransaction]:
    """Redeem cashback as a standalone unit of work. Returns the USED entries."""
    def _op():
        customer = get_customer(customer_id, lock=True)
        entries = _use_locked(customer, order_id, amount_cents, now=now)
        db.session.commit()
        current_app.logger.info(
            "Cashback used: customer=%s order=%s amount=%s entries=%s",
            customer_id, order_id, format_cents(amount_cents), len(entries),
        )
        return entries

    return run_with_retry(_op)


# =============================================================================
# EXPIRE
# =============================================================================

def _expire_customer_locked(customer: Customer, now: datetime) -> list[CashbackTransaction]:
    due = (
        lock_for_update(
            _live_earned(customer.id).filter(CashbackTransaction.expires_at <= now)
        )
        .order_by(CashbackTransaction.expires_at.asc(), CashbackTransaction.id.asc())
        .all()
    )

    expired_entries = []
    total = 0
    for source in due:
        # Re-checked under the lock: a concurrent sweep may have zeroed it
        if source.remaining_cents <= 0:
            continue
        lapsed = source.remaining_cents
        entry = CashbackTransaction(
            transaction_number=next_transaction_number(),
            customer_id=customer.id,
            source_transaction_id=source.id,
            kind=CASHBACK_EXPIRED,
            amount_cents=-lapsed,
            remaining_cents=0,
            earned_at=now,
            description="Expired cashback",
        )
        db.session.add(entry)
        expired_entries.append(entry)

        source.remaining_cents = 0
        source.consumed_at = now
        source.touch()
        total += lapsed

    if total:
        new_balance = customer.cashback_balance_cents - total
        if new_balance < 0:
            raise InternalInvariantViolation(
                "Cached cashback balance diverged from ledger",
                details={"customer_id": customer.id, "cached_cents": customer.cashback_balance_cents},
            )
        set_cashback_balance(customer, new_balance)
        db.session.flush()
    return expired_entries


def expire_sweep(now: datetime | None = None) -> list[CashbackTransaction]:
    """
    Expire every EARNED entry with remaining > 0 and expires_at <= now.

    One unit of work per customer, so sweeps for different customers never
    contend and a failure for one customer does not undo the others.
    Idempotent: a second run (or a concurrent sweeper) finds remaining = 0.
    """
    now = resolve_now(now)

    customer_ids = [
        row[0]
        for row in active(db.session.query(CashbackTransaction.customer_id), CashbackTransaction)
        .join(Customer, Customer.id == CashbackTransaction.customer_id)
        .filter(
            Customer.deleted_at.is_(None),
            CashbackTransaction.kind == CASHBACK_EARNED,
            CashbackTransaction.remaining_cents > 0,
            CashbackTransaction.expires_at <= now,
        )
        .distinct()
        .order_by(CashbackTransaction.customer_id)
        .all()
    ]
    db.session.rollback()

    expired: list[CashbackTransaction] = []
    for customer_id in customer_ids:
        def _op(customer_id=customer_id):
            # May have been soft-deleted since the id scan; its ledger still expires
            customer = get_customer(customer_id, lock=True, include_deleted=True)
            entries = _expire_customer_locked(customer, now)
            db.session.commit()
            return entries

        try:
            entries = run_with_retry(_op)
        except DomainError as exc:
            current_app.logger.error(
                "Cashback expiry failed: customer=%s error=%s", customer_id, exc.message
            )
            continue
        if entries:
            current_app.logger.info(
                "Cashback expired: customer=%s entries=%s amount=%s",
                customer_id, len(entries), format_cents(-sum(e.amount_cents for e in entries)),
            )
        expired.extend(entries)

    return expired


# =============================================================================
# RECONCILIATION
# =============================================================================

def reconcile_balance(customer_id: int, *, fix: bool = False) -> dict:
    """
    Compare the cached balance with the ledger.

    A divergence is a bug. It is logged, and raises InternalInvariantViolation
    unless fix=True, in which case the cache is reset to the ledger value.
    """
    def _op():
        customer = get_customer(customer_id, lock=True)
        ledger = ledger_balance(customer_id)
        cached = customer.cashback_balance_cents
        result = {
            "customer_id": customer_id,
            "cached_cents": cached,
            "ledger_cents": ledger,
            "in_sync": cached == ledger,
            "fixed": False,
        }
        if cached != ledger:
            current_app.logger.error(
                "Cashback cache diverged: customer=%s cached=%s ledger=%s", customer_id, cached, ledger
            )
            if not fix:
                raise InternalInvariantViolation("Cached cashback balance diverged from ledger", details=result)
            set_cashback_balance(customer, ledger)
            db.session.commit()
            result["fixed"] = True
        else:
            db.session.rollback()
        return result

    return run_with_retry(_op)


def reconcile_all(*, fix: bool = False) -> list[dict]:
    """Reconcile every customer; returns only the customers that were out of sync."""
    ids = [row[0] for row in active(db.session.query(Customer.id), Customer).order_by(Customer.id).all()]
    mismatches = []
    for customer_id in ids:
        try:
            result = reconcile_balance(customer_id, fix=fix)
        except InternalInvariantViolation as exc:
            mismatches.append(exc.details)
            continue
        if not result["in_sync"]:
            mismatches.append(result)
    return mismatches
