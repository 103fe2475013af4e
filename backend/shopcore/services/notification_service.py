# Overview: Fire-and-forget notification sink built on blinker signals.

"""
Notification sink.

Signals are sent only AFTER the unit of work that produced the event has
committed. Delivery (push/SMS/email) is somebody else's job: receivers
subscribe with `order_created.connect(fn)` etc. A failing receiver is
logged and never propagates into the business operation that already
committed.
"""

from __future__ import annotations

from blinker import Namespace
from flask import current_app

_signals = Namespace()

order_created = _signals.signal("order-created")
order_status_changed = _signals.signal("order-status-changed")
cashback_earned = _signals.signal("cashback-earned")


def publish(signal, **payload) -> None:
    try:
        signal.send(current_app._get_current_object(), **payload)
    except Exception:
        current_app.logger.exception("Notification receiver failed for %s", signal.name)


def publish_order_created(order) -> None:
    publish(order_created, order=order.to_dict())


def publish_status_changed(order, previous_status: str) -> None:
    publish(order_status_changed, order=order.to_dict(), previous_status=previous_status)


def publish_cashback_earned(txn) -> None:
    publish(cashback_earned, transaction=txn.to_dict())
