"""
Tests for the in-memory persistence layer.
"""

import re
from concurrent.futures import ThreadPoolExecutor

import pytest

from ferrebot.exceptions import InsufficientStockError, ProductNotFoundError
from ferrebot.persistence import (
    InMemoryPersistence,
    OrderLine,
    OrderRequest,
    Product,
)


@pytest.fixture
def persistence():
    return InMemoryPersistence()


def order_for(persistence, lines, channel_id="discord:1"):
    user = persistence.find_or_create_user(channel_id)
    return OrderRequest(
        user_id=user.id,
        items=[OrderLine(pid, qty) for pid, qty in lines],
        delivery_address="Av. Principal 123, San Isidro",
        delivery_phone="987654321",
    )


class TestUsers:
    def test_find_or_create_is_stable(self, persistence):
        first = persistence.find_or_create_user("discord:1")
        second = persistence.find_or_create_user("discord:1")
        other = persistence.find_or_create_user("discord:2")

        assert first.id == second.id
        assert other.id != first.id
        assert first.has_delivery_data is False

    def test_update_only_given_fields(self, persistence):
        user = persistence.find_or_create_user("discord:1")
        persistence.update_user(user.id, phone="987654321", address="Av. Lima 100")
        updated = persistence.update_user(user.id, first_name="Juan", phone="")

        assert updated.first_name == "Juan"
        assert updated.phone == "987654321"
        assert updated.has_delivery_data is True

    def test_update_unknown_user(self, persistence):
        with pytest.raises(KeyError):
            persistence.update_user(999, phone="987654321")


class TestCatalogue:
    def test_search_ignores_accents_and_case(self, persistence):
        results = persistence.search_products("latex")
        assert [p.id for p in results] == [4]

    def test_search_matches_description(self, persistence):
        assert persistence.search_products("tuberías")[0].id == 8

    def test_search_limit(self, persistence):
        assert len(persistence.search_products("e", limit=3)) == 3

    def test_inactive_products_hidden(self):
        persistence = InMemoryPersistence(products=[
            Product(1, "Cemento", 28.5, 10, is_active=False),
            Product(2, "Cemento blanco", 30.0, 10, category="Materiales"),
        ])

        assert [p.id for p in persistence.search_products("cemento")] == [2]
        assert persistence.get_product(1) is None
        assert persistence.get_categories() == ["Materiales"]

    def test_products_by_ids(self, persistence):
        assert sorted(p.id for p in persistence.get_products_by_ids([1, 4, 99])) == [1, 4]

    def test_returned_products_are_copies(self, persistence):
        persistence.get_product(1).stock = 0
        assert persistence.get_product(1).stock == 150


class TestCreateOrder:
    def test_creates_order_and_decrements_stock(self, persistence):
        order = persistence.create_order(order_for(persistence, [(1, 2), (4, 1)]))

        assert re.fullmatch(r"ORD-\d{8}-\d{3}", order.order_number)
        assert order.total_amount == pytest.approx(28.50 * 2 + 45.00)
        assert order.status == "pending"
        assert persistence.get_product(1).stock == 148
        assert persistence.get_product(4).stock == 59

    def test_order_numbers_sequential_per_day(self, persistence):
        first = persistence.create_order(order_for(persistence, [(1, 1)]))
        second = persistence.create_order(order_for(persistence, [(1, 1)]))

        assert first.order_number.endswith("-001")
        assert second.order_number.endswith("-002")

    def test_insufficient_stock_changes_nothing(self, persistence):
        with pytest.raises(InsufficientStockError) as exc_info:
            persistence.create_order(order_for(persistence, [(1, 2), (6, 26)]))

        assert exc_info.value.available == 25
        assert persistence.get_product(1).stock == 150
        assert persistence.get_product(6).stock == 25
        assert persistence.get_stats()["orders"] == 0

    def test_repeated_lines_counted_together(self, persistence):
        with pytest.raises(InsufficientStockError):
            persistence.create_order(order_for(persistence, [(6, 20), (6, 10)]))

    def test_unknown_product(self, persistence):
        with pytest.raises(ProductNotFoundError) as exc_info:
            persistence.create_order(order_for(persistence, [(1, 1), (99, 1)]))

        assert exc_info.value.product_id == 99
        assert persistence.get_product(1).stock == 150

    def test_empty_order(self, persistence):
        with pytest.raises(ValueError):
            persistence.create_order(order_for(persistence, []))

    def test_concurrent_orders_never_oversell(self):
        persistence = InMemoryPersistence(products=[Product(1, "Taladro", 189.0, 5)])
        requests = [order_for(persistence, [(1, 1)], f"discord:{i}") for i in range(10)]

        def attempt(request):
            try:
                persistence.create_order(request)
                return True
            except InsufficientStockError:
                return False

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(attempt, requests))

        assert results.count(True) == 5
        assert persistence.get_product(1).stock == 0


class TestOrderQueries:
    def test_find_by_number_and_user(self, persistence):
        order = persistence.create_order(order_for(persistence, [(3, 1)]))

        assert persistence.find_order_by_number(order.order_number).id == order.id
        assert [o.id for o in persistence.find_orders_by_user(order.user_id)] == [order.id]
        assert persistence.find_order_by_number("ORD-00000000-000") is None

    def test_update_status(self, persistence):
        order = persistence.create_order(order_for(persistence, [(3, 1)]))

        assert persistence.update_order_status(order.id, "shipped").status == "shipped"
        with pytest.raises(ValueError):
            persistence.update_order_status(order.id, "lost")


class TestMessageLog:
    def test_recent_context(self, persistence):
        user = persistence.find_or_create_user("discord:1")
        persistence.save_message(user.id, "user", "hola", "greeting", 0.9)
        persistence.save_message(user.id, "assistant", "¡Hola!")

        assert persistence.get_recent_context(user.id, 5) == [
            {"role": "user", "content": "hola"},
            {"role": "assistant", "content": "¡Hola!"},
        ]
        assert persistence.get_intent_stats() == {"greeting": 1}
