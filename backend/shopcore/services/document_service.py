# Overview: Collision-free identifiers for orders and ledger entries.

from __future__ import annotations

import uuid
from datetime import datetime

from shopcore.time_utils import resolve_now


def next_order_number(at: datetime | None = None) -> str:
    """ORD-YYYYMMDD-<12 hex>; random part from uuid4, uniqueness also enforced by the DB."""
    day = resolve_now(at).strftime("%Y%m%d")
    return f"ORD-{day}-{uuid.uuid4().hex[:12].upper()}"


def next_transaction_number() -> str:
    """CB-<32 hex>, globally unique per ledger entry."""
    return f"CB-{uuid.uuid4().hex.upper()}"
