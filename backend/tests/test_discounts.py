# Overview: Pytest coverage for the discount engine.

import pytest
from shopcore.errors import InvalidTransition, NotFound, ValidationError
from shopcore.models import DiscountReason, OrderDiscount, OrderItem
from shopcore.services import discount_service, order_service
from shopcore.services.order_orchestrator import cancel_order


def _assert_totals(order):
    assert order.final_price_cents == max(
        0,
        order.gross_total_cents - order.discount_total_cents
        - order.cashback_used_cents + order.delivery_fee_cents,
    )


class TestDistribution:
    def test_cheapest_item_first(self):
        items = [
            OrderItem(product_name="Backpack", quantity=1, unit_price_cents=15_000),
            OrderItem(product_name="Pen", quantity=2, unit_price_cents=500),
            OrderItem(product_name="Notebook", quantity=1, unit_price_cents=2_000),
        ]

        leftover = discount_service.distribute_to_items(3_500, items)

        assert leftover == 0
        assert [i.discount_cents for i in items] == [500, 1_000, 2_000]

    def test_equal_prices_keep_line_order(self):
        items = [
            OrderItem(product_name="A", quantity=1, unit_price_cents=1_000),
            OrderItem(product_name="B", quantity=1, unit_price_cents=1_000),
        ]

        discount_service.distribute_to_items(1_200, items)

        assert [i.discount_cents for i in items] == [1_000, 200]

    def test_redistribution_resets_previous_split(self):
        items = [OrderItem(product_name="A", quantity=3, unit_price_cents=1_000, discount_cents=2_500)]
        discount_service.distribute_to_items(0, items)
        assert items[0].discount_cents == 0


class TestApplyDiscount:
    def test_apply_updates_totals_and_items(self, db_session, place_order, reason, seller):
        order = place_order()  # 2 x 200.00 + 1 x 50.00

        discount_service.apply_discount(order.id, reason.id, 8_000, seller.id, "loyal")

        order = order_service.get_order_record(order.id)
        assert order.gross_total_cents == 45_000
        assert order.discount_total_cents == 8_000
        assert order.final_price_cents == 37_000
        _assert_totals(order)
        items = order_service.order_items(order.id)
        assert sum(i.discount_cents for i in items) == 8_000
        # Pen line (cheapest) absorbs first
        assert {i.product_name: i.discount_cents for i in items} == {"Notebook": 3_000, "Pen": 5_000}

    def test_system_applied_discount(self, db_session, place_order, reason):
        order = place_order()
        discount = discount_service.apply_discount(order.id, reason.id, 1_000)
        assert discount.applied_by_seller_id is None
        assert discount.to_dict()["applied_by"] == "system"

    @pytest.mark.parametrize("amount", [0, -1])
    def test_rejects_non_positive(self, db_session, place_order, reason, amount):
        order = place_order()
        with pytest.raises(ValidationError):
            discount_service.apply_discount(order.id, reason.id, amount)

    def test_rejects_more_than_gross(self, db_session, place_order, reason):
        order = place_order()
        with pytest.raises(ValidationError):
            discount_service.apply_discount(order.id, reason.id, 45_001)

    def test_rejects_discounts_plus_cashback_over_gross(self, db_session, place_order, reason, earn_expiring):
        earn_expiring(40_000, 20)
        order = place_order(cashback_to_use_cents=40_000)

        with pytest.raises(ValidationError):
            discount_service.apply_discount(order.id, reason.id, 6_000)
        discount_service.apply_discount(order.id, reason.id, 5_000)

        order = order_service.get_order_record(order.id)
        assert order.final_price_cents == 0
        _assert_totals(order)

    def test_rejects_terminal_order(self, db_session, place_order, reason):
        order = place_order()
        cancel_order(order.id, "changed mind")
        with pytest.raises(InvalidTransition):
            discount_service.apply_discount(order.id, reason.id, 1_000)

    def test_unknown_order_or_reason(self, db_session, place_order, reason):
        order = place_order()
        with pytest.raises(NotFound):
            discount_service.apply_discount(99_999, reason.id, 1_000)
        with pytest.raises(NotFound):
            discount_service.apply_discount(order.id, 99_999, 1_000)


class TestReasonLimits:
    def test_inactive_reason(self, db_session, place_order):
        r = DiscountReason(name="Old promo", is_active=False)
        db_session.add(r)
        db_session.commit()
        order = place_order()
        with pytest.raises(ValidationError):
            discount_service.apply_discount(order.id, r.id, 100)

    def test_absolute_and_percentage_caps(self, db_session, place_order):
        capped = discount_service.create_discount_reason("Damaged", max_discount_bps=1000, max_discount_cents=4_000)
        order = place_order()  # gross 450.00 -> 10% is 45.00

        with pytest.raises(ValidationError):
            discount_service.apply_discount(order.id, capped.id, 4_001)

        tight = discount_service.create_discount_reason("Tiny", max_discount_bps=100)
        with pytest.raises(ValidationError):
            discount_service.apply_discount(order.id, tight.id, 451)
        discount_service.apply_discount(order.id, tight.id, 450)

    def test_seller_only_reason(self, db_session, place_order, seller):
        r = discount_service.create_discount_reason("Manual", is_seller_only=True)
        order = place_order()
        with pytest.raises(ValidationError):
            discount_service.apply_discount(order.id, r.id, 100)
        discount_service.apply_discount(order.id, r.id, 100, seller.id)


class TestRemoveDiscount:
    def test_remove_recomputes_totals(self, db_session, place_order, reason):
        order = place_order()
        first = discount_service.apply_discount(order.id, reason.id, 3_000)
        discount_service.apply_discount(order.id, reason.id, 2_000)

        order = discount_service.remove_discount(order.id, first.id)

        assert order.discount_total_cents == 2_000
        assert order.final_price_cents == 43_000
        _assert_totals(order)
        assert db_session.get(OrderDiscount, first.id).is_deleted
        assert sum(i.discount_cents for i in order_service.order_items(order.id)) == 2_000

    def test_remove_twice_is_not_found(self, db_session, place_order, reason):
        order = place_order()
        d = discount_service.apply_discount(order.id, reason.id, 3_000)
        discount_service.remove_discount(order.id, d.id)
        with pytest.raises(NotFound):
            discount_service.remove_discount(order.id, d.id)


class TestSellerPolicy:
    def test_non_manager_capped_at_twenty_percent(self, db_session, place_order, reason, seller):
        order = place_order()  # 20% of 450.00 = 90.00

        with pytest.raises(ValidationError) as exc:
            discount_service.apply_seller_discount(order.id, seller.id, reason.id, 9_001)
        assert exc.value.details["max_discount_cents"] == 9_000

        discount_service.apply_seller_discount(order.id, seller.id, reason.id, 9_000)
        assert order_service.get_order_record(order.id).discount_total_cents == 9_000

    def test_manager_not_capped(self, db_session, place_order, reason, manager):
        order = place_order()
        discount_service.apply_seller_discount(order.id, manager.id, reason.id, 20_000)
        assert order_service.get_order_record(order.id).discount_total_cents == 20_000

    def test_share_bps(self, db_session, place_order):
        order = place_order()
        assert discount_service.discount_share_bps(order, 9_000) == 2000


class TestReasonCatalogue:
    def test_create_and_list(self, db_session):
        discount_service.create_discount_reason("Promotion")
        discount_service.create_discount_reason("Bulk purchase")
        r = discount_service.create_discount_reason("Retired")
        r.is_active = False
        db_session.commit()

        names = [x.name for x in discount_service.list_discount_reasons()]
        assert names == ["Bulk purchase", "Promotion"]
        assert len(discount_service.list_discount_reasons(include_inactive=True)) == 3

    def test_duplicate_name_rejected(self, db_session):
        discount_service.create_discount_reason("Promotion")
        with pytest.raises(ValidationError):
            discount_service.create_discount_reason("Promotion")

    def test_invalid_limits(self, db_session):
        with pytest.raises(ValidationError):
            discount_service.create_discount_reason("Bad", max_discount_bps=0)
        with pytest.raises(ValidationError):
            discount_service.create_discount_reason("")
