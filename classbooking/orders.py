"""Order placement.

An order is recorded in the same transaction that takes one space from
each lesson in the cart. The decrement is conditional on the lesson still
having a space, so concurrent checkouts for the last seat cannot both
succeed, and the first entry that cannot be reserved aborts everything.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import structlog
from bson import ObjectId

from classbooking.errors import InvalidInput, NotFound, OutOfStock
from classbooking.schemas import CartItem, object_id
from classbooking.store import InventoryStore

logger = structlog.get_logger(__name__)

SPACES_PER_ENTRY = 1


class OrderService:

    def __init__(self, store: InventoryStore) -> None:
        self._store = store

    async def submit_order(
        self,
        name: Optional[str],
        phone: Optional[str],
        cart: Optional[Sequence[CartItem]],
    ) -> str:
        """Record an order and reserve one space per cart entry.

        Raises InvalidInput before touching the store, OutOfStock when
        any entry cannot be reserved (nothing is persisted), and
        StoreUnavailable when the transaction itself fails.
        """
        name, phone = _clean(name), _clean(phone)
        missing = [
            field
            for field, value in (("name", name), ("phone", phone), ("cart", cart))
            if not value
        ]
        if missing:
            raise InvalidInput(
                f"Missing required fields: {', '.join(missing)}", fields=missing
            )

        lines = [
            (object_id(item.id, field=f"cart[{i}].id"), item.subject)
            for i, item in enumerate(cart)
        ]

        async def place(txn: Any) -> str:
            # The store may run this more than once.
            details: List[Dict[str, Any]] = []
            for lesson_id, subject in lines:
                reserved = await self._store.conditional_decrement_spaces(
                    lesson_id, SPACES_PER_ENTRY, txn
                )
                if not reserved:
                    raise OutOfStock(str(lesson_id), subject)
                details.append(
                    {"lessonId": lesson_id, "subject": subject, "quantity": SPACES_PER_ENTRY}
                )
            order = {
                "name": name,
                "phone": phone,
                "orderDate": datetime.now(timezone.utc),
                "orderDetails": details,
                "totalSpaces": sum(d["quantity"] for d in details),
            }
            return await self._store.insert_order(order, txn)

        try:
            order_id = await self._store.run_transaction(place)
        except OutOfStock as e:
            logger.info("order.out_of_stock", lesson_id=e.lesson_id, subject=e.subject)
            raise

        logger.info("order.placed", order_id=order_id, spaces=len(lines))
        return order_id

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        oid: ObjectId = object_id(order_id)
        order = await self._store.find_order(oid)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order


def _clean(value: Optional[str]) -> Optional[str]:
    return value.strip() if isinstance(value, str) else value
