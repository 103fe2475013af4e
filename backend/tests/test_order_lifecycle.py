# Overview: Pytest coverage for the order aggregate (transitions, payment, item edits).

"""
Order Aggregate Tests

State machine:
    PENDING -> CONFIRMED -> PREPARING -> {READY_FOR_PICKUP | SHIPPED} -> DELIVERED
    PENDING | CONFIRMED -> CANCELLED

Every test re-reads the order and checks the total invariant:
    final = max(0, gross - discount - cashback + delivery_fee)
"""

import pytest
from shopcore.errors import InvalidTransition, NotFound, ValidationError
from shopcore.models import Product
from shopcore.models.orders import (
    ORDER_STATUS_CONFIRMED, ORDER_STATUS_PREPARING, ORDER_STATUS_READY_FOR_PICKUP,
    ORDER_STATUS_SHIPPED, ORDER_STATUS_DELIVERED, DELIVERY_COURIER, DELIVERY_POSTAL,
    PAYMENT_CARD,
)
from shopcore.services import order_service
from shopcore.services.order_lifecycle import can_transition
from shopcore.services.order_orchestrator import deliver_order


def _stock(db_session, product):
    db_session.expire_all()
    return db_session.get(Product, product.id).stock_quantity


def _assert_totals(order):
    assert order.final_price_cents == max(
        0,
        order.gross_total_cents - order.discount_total_cents
        - order.cashback_used_cents + order.delivery_fee_cents,
    )


class TestTransitionTable:
    def test_terminal_states_have_no_exits(self):
        for target in ("PENDING", "CONFIRMED", "SHIPPED", "CANCELLED"):
            assert not can_transition("DELIVERED", target)
            assert not can_transition("CANCELLED", target)

    def test_cancel_only_from_pending_or_confirmed(self):
        assert can_transition("PENDING", "CANCELLED")
        assert can_transition("CONFIRMED", "CANCELLED")
        assert not can_transition("PREPARING", "CANCELLED")
        assert not can_transition("SHIPPED", "CANCELLED")


class TestTransitions:
    def test_pickup_happy_path(self, db_session, place_order):
        order = place_order()

        assert order_service.confirm_order(order.id).status == ORDER_STATUS_CONFIRMED
        assert order_service.start_preparing(order.id).status == ORDER_STATUS_PREPARING
        assert order_service.mark_ready_for_pickup(order.id).status == ORDER_STATUS_READY_FOR_PICKUP
        order_service.record_payment(order.id, PAYMENT_CARD, "POS-1")
        order = deliver_order(order.id)

        assert order.status == ORDER_STATUS_DELIVERED
        assert order.confirmed_at is not None
        assert order.delivered_at is not None
        assert order.payment_method == PAYMENT_CARD

    def test_courier_happy_path(self, db_session, place_order):
        order = place_order(delivery_type=DELIVERY_COURIER, delivery_address="Yunusobod 12")
        order_service.confirm_order(order.id)
        order_service.start_preparing(order.id)
        order = order_service.mark_shipped(order.id)
        assert order.status == ORDER_STATUS_SHIPPED
        assert order.shipped_at is not None

    def test_mark_shipped_on_pickup_order_fails(self, db_session, place_order):
        order = place_order()
        order_service.confirm_order(order.id)
        order_service.start_preparing(order.id)
        with pytest.raises(InvalidTransition):
            order_service.mark_shipped(order.id)

    def test_ready_for_pickup_requires_pickup(self, db_session, place_order):
        order = place_order(delivery_type=DELIVERY_POSTAL, delivery_address="Samarkand, PO box 7")
        order_service.confirm_order(order.id)
        order_service.start_preparing(order.id)
        with pytest.raises(InvalidTransition):
            order_service.mark_ready_for_pickup(order.id)

    def test_deliver_unpaid_order_fails(self, db_session, place_order):
        order = place_order(delivery_type=DELIVERY_COURIER, delivery_address="Yunusobod 12")
        order_service.confirm_order(order.id)
        order_service.start_preparing(order.id)
        order_service.mark_shipped(order.id)

        with pytest.raises(InvalidTransition):
            deliver_order(order.id)
        assert order_service.get_order_record(order.id).status == ORDER_STATUS_SHIPPED

    def test_cannot_skip_or_repeat(self, db_session, place_order):
        order = place_order()
        with pytest.raises(InvalidTransition):
            order_service.start_preparing(order.id)
        order_service.confirm_order(order.id)
        with pytest.raises(InvalidTransition) as exc:
            order_service.confirm_order(order.id)
        assert exc.value.details["status"] == ORDER_STATUS_CONFIRMED

    def test_status_change_notification(self, db_session, place_order):
        from shopcore.services.notification_service import order_status_changed

        seen = []

        def receiver(sender, **payload):
            seen.append((payload["previous_status"], payload["order"]["status"]))

        order = place_order()
        with order_status_changed.connected_to(receiver):
            order_service.confirm_order(order.id)
        assert seen == [("PENDING", "CONFIRMED")]


class TestPayment:
    def test_record_payment_once(self, db_session, place_order):
        order = place_order()
        order = order_service.record_payment(order.id, reference="TX-1")
        assert order.is_paid
        with pytest.raises(ValidationError):
            order_service.record_payment(order.id)

    def test_invalid_method(self, db_session, place_order):
        order = place_order()
        with pytest.raises(ValidationError):
            order_service.record_payment(order.id, "BITCOIN")


class TestDelivery:
    def test_set_delivery_recomputes_fee(self, db_session, place_order):
        order = place_order()
        order = order_service.set_delivery(order.id, DELIVERY_COURIER, "Yunusobod 12")
        assert order.delivery_fee_cents == 2_000_000
        assert order.final_price_cents == 45_000 + 2_000_000
        _assert_totals(order)

    def test_address_required_unless_pickup(self, db_session, place_order):
        order = place_order()
        with pytest.raises(ValidationError):
            order_service.set_delivery(order.id, DELIVERY_POSTAL, "   ")

    def test_not_after_confirmation(self, db_session, place_order):
        order = place_order()
        order_service.confirm_order(order.id)
        with pytest.raises(InvalidTransition):
            order_service.set_delivery(order.id, DELIVERY_COURIER, "Yunusobod 12")


class TestItemMutations:
    def test_add_item_merges_and_reserves_stock(self, db_session, place_order, products):
        order = place_order()
        assert _stock(db_session, products["pen"]) == 99

        order_service.add_item(order.id, products["pen"].id, 3)
        order_service.add_item(order.id, products["backpack"].id, 1)

        order = order_service.get_order_record(order.id)
        lines = {i.product_name: i.quantity for i in order_service.order_items(order.id)}
        assert lines == {"Notebook": 2, "Pen": 4, "Backpack": 1}
        assert order.gross_total_cents == 40_000 + 20_000 + 150_000
        assert _stock(db_session, products["pen"]) == 96
        assert _stock(db_session, products["backpack"]) == 9
        _assert_totals(order)

    def test_add_item_insufficient_stock(self, db_session, place_order, products):
        from shopcore.errors import InsufficientStock

        order = place_order()
        with pytest.raises(InsufficientStock):
            order_service.add_item(order.id, products["backpack"].id, 11)
        assert _stock(db_session, products["backpack"]) == 10
        assert order_service.get_order_record(order.id).gross_total_cents == 45_000

    def test_change_quantity_moves_stock_both_ways(self, db_session, place_order, products):
        order = place_order()
        notebook_line = next(i for i in order_service.order_items(order.id) if i.product_name == "Notebook")

        order_service.change_item_quantity(order.id, notebook_line.id, 5)
        assert _stock(db_session, products["notebook"]) == 45
        order_service.change_item_quantity(order.id, notebook_line.id, 1)
        assert _stock(db_session, products["notebook"]) == 49

        order = order_service.get_order_record(order.id)
        assert order.gross_total_cents == 25_000
        _assert_totals(order)

    def test_remove_item_restores_stock(self, db_session, place_order, products):
        order = place_order()
        pen_line = next(i for i in order_service.order_items(order.id) if i.product_name == "Pen")

        order = order_service.remove_item(order.id, pen_line.id)

        assert order.gross_total_cents == 40_000
        assert _stock(db_session, products["pen"]) == 100
        _assert_totals(order)

    def test_cannot_remove_last_item(self, db_session, place_order):
        order = place_order(lines=[("pen", 1)])
        (line,) = order_service.order_items(order.id)
        with pytest.raises(ValidationError):
            order_service.remove_item(order.id, line.id)

    def test_mutation_cannot_undercut_redeemed_cashback(self, db_session, place_order, products, earn_expiring):
        earn_expiring(42_000, 20)
        order = place_order(cashback_to_use_cents=42_000)
        pen_line = next(i for i in order_service.order_items(order.id) if i.product_name == "Pen")

        with pytest.raises(ValidationError):
            order_service.remove_item(order.id, pen_line.id)
        assert _stock(db_session, products["pen"]) == 99

    def test_no_item_edits_after_confirmation(self, db_session, place_order, products):
        order = place_order()
        order_service.confirm_order(order.id)
        with pytest.raises(InvalidTransition):
            order_service.add_item(order.id, products["pen"].id, 1)

    def test_unknown_item(self, db_session, place_order):
        order = place_order()
        with pytest.raises(NotFound):
            order_service.change_item_quantity(order.id, 99_999, 2)

    def test_recalculate_is_idempotent(self, db_session, place_order):
        order = place_order()
        order = order_service.get_order_for_update(order.id)
        before = (order.gross_total_cents, order.discount_total_cents, order.final_price_cents)
        order_service.recalculate_totals(order)
        order_service.recalculate_totals(order)
        assert (order.gross_total_cents, order.discount_total_cents, order.final_price_cents) == before
        db_session.rollback()


class TestReads:
    def test_get_order_includes_items_and_discounts(self, db_session, place_order, reason):
        from shopcore.services.discount_service import apply_discount

        order = place_order()
        apply_discount(order.id, reason.id, 1_000)

        data = order_service.get_order(order.id)

        assert data["order_number"].startswith("ORD-")
        assert len(data["items"]) == 2
        assert data["discounts"][0]["amount_cents"] == 1_000
        assert data["final_price_cents"] == 44_000

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFound):
            order_service.get_order(12345)
