# Overview: Pytest coverage for the product stock store.

import pytest
from shopcore.errors import InsufficientStock, NotFound, ValidationError
from shopcore.models import Product
from shopcore.services import stock_service


def _on_hand(db_session, product_id):
    db_session.expire_all()
    return db_session.get(Product, product_id).stock_quantity


class TestStockStore:
    def test_decrease_then_increase(self, db_session, products, seller):
        pen = products["pen"]

        stock_service.decrease_stock(pen.id, 30, actor_id=seller.id)
        assert _on_hand(db_session, pen.id) == 70

        stock_service.increase_stock(pen.id, 5)
        assert _on_hand(db_session, pen.id) == 75
        assert db_session.get(Product, pen.id).updated_by is None

    def test_decrease_to_exactly_zero(self, db_session, products):
        backpack = products["backpack"]
        stock_service.decrease_stock(backpack.id, 10)
        assert _on_hand(db_session, backpack.id) == 0

    def test_insufficient_stock_changes_nothing(self, db_session, products):
        backpack = products["backpack"]

        with pytest.raises(InsufficientStock) as exc:
            stock_service.decrease_stock(backpack.id, 11)

        assert exc.value.details == {
            "product_id": backpack.id,
            "requested_quantity": 11,
            "on_hand": 10,
        }
        assert _on_hand(db_session, backpack.id) == 10

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_quantity_must_be_positive(self, db_session, products, quantity):
        with pytest.raises(ValidationError):
            stock_service.decrease_stock(products["pen"].id, quantity)
        with pytest.raises(ValidationError):
            stock_service.increase_stock(products["pen"].id, quantity)
        assert _on_hand(db_session, products["pen"].id) == 100

    def test_restock_reaches_deactivated_product(self, db_session, products):
        notebook = products["notebook"]
        db_session.get(Product, notebook.id).soft_delete()
        db_session.commit()

        with pytest.raises(NotFound):
            stock_service.decrease_stock(notebook.id, 1)
        stock_service.increase_stock(notebook.id, 2)
        assert _on_hand(db_session, notebook.id) == 52
