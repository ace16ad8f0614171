"""Lesson and order persistence.

``InventoryStore`` is the narrow interface the order service and the
HTTP layer depend on. ``MongoInventoryStore`` backs it with MongoDB via
motor; multi-document atomicity comes from MongoDB transactions, which
need a replica set or sharded cluster.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

import pymongo
import structlog
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from classbooking.config import DB_NAME, TRANSACTION_TIMEOUT_SECONDS
from classbooking.errors import CommitUnknown, NotFound, StoreUnavailable
from classbooking.schemas import SearchQuery, serialize_lesson, serialize_order

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class InventoryStore(ABC):

    @abstractmethod
    async def find_all(self) -> List[Dict[str, Any]]:
        """Every lesson, in natural store order."""

    @abstractmethod
    async def search(self, query: SearchQuery) -> List[Dict[str, Any]]:
        """Lessons matching ``query``, sorted by its sort field."""

    @abstractmethod
    async def run_transaction(self, work: Callable[[Any], Awaitable[T]]) -> T:
        """Run ``work(txn)`` atomically.

        The transaction commits if ``work`` returns and aborts if it
        raises; the exception is re-raised. The underlying session is
        released on every path.
        """

    @abstractmethod
    async def conditional_decrement_spaces(
        self, lesson_id: ObjectId, amount: int, txn: Any
    ) -> int:
        """Take ``amount`` spaces from a lesson if it has at least that many.

        Returns the number of lessons modified (0 or 1).
        """

    @abstractmethod
    async def insert_order(self, order: Dict[str, Any], txn: Any) -> str:
        """Persist a new order inside ``txn`` and return its id."""

    @abstractmethod
    async def find_order(self, order_id: ObjectId) -> Optional[Dict[str, Any]]:
        """A committed order, or None."""

    @abstractmethod
    async def update_lesson_fields(
        self, lesson_id: ObjectId, changes: Dict[str, Any]
    ) -> Tuple[int, int]:
        """Set ``changes`` on a lesson. Returns (matched, modified).

        Raises NotFound when no lesson has ``lesson_id``.
        """

    @abstractmethod
    async def health(self) -> Dict[str, Any]:
        """Round-trip the backing database."""


def build_search_filter(query: SearchQuery) -> Dict[str, Any]:
    if not query.text:
        return {}
    pattern = {"$regex": re.escape(query.text), "$options": "i"}
    clauses: List[Dict[str, Any]] = [{"subject": pattern}, {"location": pattern}]
    if query.number is not None:
        clauses.append({"price": query.number})
        clauses.append({"spaces": query.number})
    return {"$or": clauses}


def build_sort(query: SearchQuery) -> List[Tuple[str, int]]:
    direction = DESCENDING if query.descending else ASCENDING
    # _id follows insertion order, which keeps ties stable.
    return [(query.sort_by, direction), ("_id", ASCENDING)]


class MongoInventoryStore(InventoryStore):

    def __init__(
        self,
        client: AsyncIOMotorClient,
        db_name: str = DB_NAME,
        transaction_timeout: float = TRANSACTION_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._db = client[db_name]
        self._lessons = self._db["lessons"]
        self._orders = self._db["orders"]
        self._transaction_timeout = transaction_timeout

    @contextmanager
    def _store_errors(self, operation: str):
        try:
            yield
        except PyMongoError as e:
            if e.has_error_label("UnknownTransactionCommitResult"):
                logger.error("store.commit_unknown", operation=operation, error=str(e))
                raise CommitUnknown(f"{operation} outcome is unknown")
            logger.error("store.error", operation=operation, error=str(e))
            raise StoreUnavailable(f"{operation} failed, please retry")

    async def find_all(self) -> List[Dict[str, Any]]:
        with self._store_errors("find lessons"):
            return [serialize_lesson(d) async for d in self._lessons.find({})]

    async def search(self, query: SearchQuery) -> List[Dict[str, Any]]:
        cursor = self._lessons.find(build_search_filter(query)).sort(build_sort(query))
        with self._store_errors("search lessons"):
            return [serialize_lesson(d) async for d in cursor]

    async def run_transaction(self, work: Callable[[Any], Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._transaction_timeout

        async def bounded(session: Any) -> T:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise StoreUnavailable("transaction timed out")
            # Only the reads and writes are bounded; a sent commit is never cut short.
            with pymongo.timeout(remaining):
                return await work(session)

        with self._store_errors("transaction"):
            async with await self._client.start_session() as session:
                # with_transaction retries transient write conflicts, so a
                # losing concurrent order re-reads the decremented count.
                return await session.with_transaction(
                    bounded,
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority"),
                    max_commit_time_ms=int(self._transaction_timeout * 1000),
                )

    async def conditional_decrement_spaces(
        self, lesson_id: ObjectId, amount: int, txn: Any
    ) -> int:
        result = await self._lessons.update_one(
            {"_id": lesson_id, "spaces": {"$gte": amount}},
            {"$inc": {"spaces": -amount}},
            session=txn,
        )
        return result.modified_count

    async def insert_order(self, order: Dict[str, Any], txn: Any) -> str:
        result = await self._orders.insert_one(dict(order), session=txn)
        return str(result.inserted_id)

    async def find_order(self, order_id: ObjectId) -> Optional[Dict[str, Any]]:
        with self._store_errors("find order"):
            doc = await self._orders.find_one({"_id": order_id})
        return serialize_order(doc) if doc else None

    async def update_lesson_fields(
        self, lesson_id: ObjectId, changes: Dict[str, Any]
    ) -> Tuple[int, int]:
        with self._store_errors("update lesson"):
            result = await self._lessons.update_one({"_id": lesson_id}, {"$set": changes})
        if result.matched_count == 0:
            raise NotFound(f"Lesson {lesson_id} not found")
        return result.matched_count, result.modified_count

    async def health(self) -> Dict[str, Any]:
        with self._store_errors("ping"):
            await self._db.command("ping")
            collections = await self._db.list_collection_names()
        return {"database": self._db.name, "collections": collections[:10]}
