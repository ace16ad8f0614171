"""Tests for the order placement transaction.

Uses the in-memory fake store, no MongoDB required.
"""

import asyncio

import pytest

from classbooking.errors import InvalidInput, NotFound, OutOfStock, StoreUnavailable
from classbooking.orders import OrderService
from classbooking.schemas import CartItem
from tests.fakes import FakeInventoryStore


def _cart(*entries):
    return [CartItem(id=lesson_id, subject=subject) for lesson_id, subject in entries]


class TestSubmitOrderHappyPath:

    async def test_returns_order_id_and_persists_order(self, service, store, ids):
        order_id = await service.submit_order("Alice", "07700900000", _cart((ids["Math"], "Math")))
        assert len(store.orders) == 1
        order = await service.get_order(order_id)
        assert order["name"] == "Alice"
        assert order["phone"] == "07700900000"
        assert order["orderDate"] is not None

    async def test_decrements_each_lesson(self, service, store, ids):
        await service.submit_order(
            "Alice", "123", _cart((ids["Math"], "Math"), (ids["Music"], "Music"))
        )
        assert store.spaces(ids["Math"]) == 4
        assert store.spaces(ids["Music"]) == 1

    async def test_order_details_follow_submission_order(self, service, ids):
        order_id = await service.submit_order(
            "Alice", "123", _cart((ids["Music"], "Music"), (ids["Math"], "Math"))
        )
        order = await service.get_order(order_id)
        assert [d["lessonId"] for d in order["orderDetails"]] == [ids["Music"], ids["Math"]]
        assert [d["quantity"] for d in order["orderDetails"]] == [1, 1]
        assert order["totalSpaces"] == 2

    async def test_repeated_entries_reserve_one_space_each(self, service, store, ids):
        order_id = await service.submit_order(
            "Alice", "123", _cart((ids["Music"], "Music"), (ids["Music"], "Music"))
        )
        assert store.spaces(ids["Music"]) == 0
        order = await service.get_order(order_id)
        assert len(order["orderDetails"]) == 2
        assert order["totalSpaces"] == 2

    async def test_strips_customer_fields(self, service, ids):
        order_id = await service.submit_order("  Alice ", " 123 ", _cart((ids["Math"], "Math")))
        order = await service.get_order(order_id)
        assert order["name"] == "Alice"
        assert order["phone"] == "123"


class TestSubmitOrderValidation:

    async def test_empty_cart_rejected_without_store_access(self, service, store):
        with pytest.raises(InvalidInput, match="cart"):
            await service.submit_order("Alice", "123", [])
        assert store.transactions_started == 0
        assert store.orders == {}

    async def test_missing_cart_rejected(self, service):
        with pytest.raises(InvalidInput, match="cart"):
            await service.submit_order("Alice", "123", None)

    async def test_names_every_missing_field(self, service):
        with pytest.raises(InvalidInput) as exc_info:
            await service.submit_order(None, "   ", [])
        assert exc_info.value.fields == ["name", "phone", "cart"]

    async def test_malformed_lesson_id_rejected_before_store_access(self, service, store, ids):
        with pytest.raises(InvalidInput, match="cart\\[1\\].id"):
            await service.submit_order(
                "Alice", "123", _cart((ids["Math"], "Math"), ("not-an-id", "Bogus"))
            )
        assert store.transactions_started == 0
        assert store.spaces(ids["Math"]) == 5

    async def test_missing_lesson_id_rejected(self, service):
        with pytest.raises(InvalidInput):
            await service.submit_order("Alice", "123", [CartItem(subject="Math")])


class TestSubmitOrderRollback:

    async def test_exhausted_second_item_rolls_back_first(self, service, store, ids):
        with pytest.raises(OutOfStock) as exc_info:
            await service.submit_order(
                "Alice", "123", _cart((ids["Math"], "Math"), (ids["Art"], "Art"))
            )
        assert exc_info.value.lesson_id == ids["Art"]
        assert exc_info.value.subject == "Art"
        assert store.spaces(ids["Math"]) == 5
        assert store.orders == {}
        assert store.aborts == 1

    async def test_unknown_lesson_is_out_of_stock(self, service, store, ids):
        unknown = "65a1f0c2e4b0a1b2c3d4e5f6"
        with pytest.raises(OutOfStock, match="Ghost"):
            await service.submit_order(
                "Alice", "123", _cart((ids["Math"], "Math"), (unknown, "Ghost"))
            )
        assert store.spaces(ids["Math"]) == 5

    async def test_repeated_entries_beyond_spaces_rejected(self, service, store, ids):
        with pytest.raises(OutOfStock):
            await service.submit_order(
                "Alice", "123", _cart((ids["English"], "English"), (ids["English"], "English"))
            )
        assert store.spaces(ids["English"]) == 1

    async def test_commit_failure_is_store_unavailable(self, service, store, ids):
        store.fail_commit = True
        with pytest.raises(StoreUnavailable):
            await service.submit_order("Alice", "123", _cart((ids["Math"], "Math")))
        assert store.spaces(ids["Math"]) == 5
        assert store.orders == {}

    async def test_session_released_on_every_path(self, service, store, ids):
        await service.submit_order("Alice", "123", _cart((ids["Math"], "Math")))
        with pytest.raises(OutOfStock):
            await service.submit_order("Bob", "456", _cart((ids["Art"], "Art")))
        store.fail_commit = True
        with pytest.raises(StoreUnavailable):
            await service.submit_order("Carol", "789", _cart((ids["Math"], "Math")))
        assert store.transactions_started == 3
        assert store.open_sessions == 0


class TestSubmitOrderConcurrency:

    async def test_last_seat_goes_to_exactly_one_caller(self, service, store, ids):
        cart = _cart((ids["English"], "English"))
        results = await asyncio.gather(
            service.submit_order("Alice", "123", cart),
            service.submit_order("Bob", "456", cart),
            return_exceptions=True,
        )
        assert sum(isinstance(r, str) for r in results) == 1
        assert sum(isinstance(r, OutOfStock) for r in results) == 1
        assert store.spaces(ids["English"]) == 0
        assert len(store.orders) == 1

    async def test_spaces_never_negative_under_contention(self):
        store = FakeInventoryStore()
        a = store.add_lesson(subject="A", location="X", price=10, spaces=3)
        b = store.add_lesson(subject="B", location="Y", price=10, spaces=4)
        service = OrderService(store)
        observed = []

        async def watch():
            for _ in range(50):
                observed.append((store.spaces(a), store.spaces(b)))
                await asyncio.sleep(0)

        carts = [_cart((a, "A"), (b, "B")) if i % 2 else _cart((b, "B")) for i in range(12)]
        results = await asyncio.gather(
            watch(),
            *(service.submit_order(f"c{i}", "1", cart) for i, cart in enumerate(carts)),
            return_exceptions=True,
        )
        placed = [r for r in results[1:] if isinstance(r, str)]
        assert all(isinstance(r, (str, OutOfStock)) for r in results[1:])
        assert all(x >= 0 and y >= 0 for x, y in observed)
        assert store.spaces(a) == 0 or store.spaces(b) == 0

        lines = [str(d["lessonId"]) for o in store.orders.values() for d in o["orderDetails"]]
        reserved_a, reserved_b = lines.count(a), lines.count(b)
        assert len(placed) == len(store.orders)
        assert store.spaces(a) == 3 - reserved_a
        assert store.spaces(b) == 4 - reserved_b


class TestGetOrder:

    async def test_unknown_order_not_found(self, service):
        with pytest.raises(NotFound):
            await service.get_order("65a1f0c2e4b0a1b2c3d4e5f6")

    async def test_malformed_order_id_rejected(self, service):
        with pytest.raises(InvalidInput):
            await service.get_order("42")
