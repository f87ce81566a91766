"""
Remote data gateway

The storefront talks to its hosted database through a small async contract:
row-level select/insert/update/delete on three tables plus a change feed per
table. Two implementations live here:

- MongoGateway: MongoDB through pymongo's async client. Change feeds are
  MongoDB change streams, so the server must run as a replica set.
- MemoryGateway: dict-backed tables with queue-backed feeds. Used when no
  DATABASE_URL is configured and by the test-suite.

Every call that fails raises GatewayError.
"""
import asyncio
import copy
import logging
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from pymongo import ASCENDING, AsyncMongoClient, ReturnDocument
from pymongo.errors import PyMongoError

import config
from exceptions import GatewayError
from schemas import CATEGORIES, DELETE, INSERT, PRODUCTS, STORE_CONFIG, TABLES, UPDATE, ChangeEvent

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


# Utility to convert Mongo documents

def serialize_doc(doc):
    if not doc:
        return doc
    d = dict(doc)
    _id = d.get("_id")
    if isinstance(_id, ObjectId):
        d["id"] = str(_id)
        del d["_id"]
    return d


def _key(row_id: str):
    return ObjectId(row_id) if ObjectId.is_valid(row_id) else row_id


class Gateway:
    """Contract shared by all gateways."""

    # True when deleting a category also deletes its products server-side
    cascades_deletes = False

    async def select(self, table: str, order_by: Optional[str] = None, limit: Optional[int] = None) -> List[dict]:
        raise NotImplementedError

    async def insert(self, table: str, row: dict) -> dict:
        raise NotImplementedError

    async def update(self, table: str, row_id: str, changes: dict) -> Optional[dict]:
        raise NotImplementedError

    async def delete(self, table: str, row_id: str) -> None:
        raise NotImplementedError

    async def delete_where(self, table: str, column: str, value) -> int:
        raise NotImplementedError

    async def subscribe(self, table: str):
        """Open a change feed: an async iterator of ChangeEvent with close()."""
        raise NotImplementedError

    async def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# MongoDB
# ---------------------------------------------------------------------------

class MongoFeed:
    def __init__(self, table: str, stream):
        self.table = table
        self._stream = stream

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        try:
            change = await self._stream.next()
        except StopAsyncIteration:
            raise
        except PyMongoError as e:
            raise GatewayError(f"Change stream on {self.table} failed: {e}") from e
        return self.to_event(change)

    def to_event(self, change: dict) -> ChangeEvent:
        op = change.get("operationType", "")
        if op == "insert":
            return ChangeEvent(table=self.table, type=INSERT, new=serialize_doc(change.get("fullDocument")))
        if op in ("update", "replace"):
            return ChangeEvent(table=self.table, type=UPDATE, new=serialize_doc(change.get("fullDocument")))
        if op == "delete":
            doc_key = change.get("documentKey") or {}
            return ChangeEvent(table=self.table, type=DELETE, old={"id": str(doc_key.get("_id"))})
        # drop / rename / invalidate
        return ChangeEvent(table=self.table, type=op.upper())

    async def close(self):
        try:
            await self._stream.close()
        except PyMongoError as e:
            logger.warning(f"Closing change stream on {self.table} failed: {e}")


class MongoGateway(Gateway):
    def __init__(self, url: str, name: str):
        self.client = AsyncMongoClient(url, tz_aware=True)
        self.db = self.client[name]

    async def select(self, table, order_by=None, limit=None):
        try:
            cursor = self.db[table].find({})
            if order_by:
                cursor = cursor.sort(order_by, ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            docs = await cursor.to_list()
        except PyMongoError as e:
            raise GatewayError(str(e)) from e
        return [serialize_doc(d) for d in docs]

    async def insert(self, table, row):
        doc = dict(row)
        doc["created_at"] = doc["updated_at"] = _now()
        try:
            await self.db[table].insert_one(doc)
        except PyMongoError as e:
            raise GatewayError(str(e)) from e
        return serialize_doc(doc)

    async def update(self, table, row_id, changes):
        try:
            doc = await self.db[table].find_one_and_update(
                {"_id": _key(row_id)},
                {"$set": dict(changes) | {"updated_at": _now()}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise GatewayError(str(e)) from e
        return serialize_doc(doc)

    async def delete(self, table, row_id):
        try:
            await self.db[table].delete_one({"_id": _key(row_id)})
        except PyMongoError as e:
            raise GatewayError(str(e)) from e

    async def delete_where(self, table, column, value):
        try:
            res = await self.db[table].delete_many({column: value})
        except PyMongoError as e:
            raise GatewayError(str(e)) from e
        return res.deleted_count

    async def subscribe(self, table):
        try:
            stream = await self.db[table].watch(full_document="updateLookup")
        except PyMongoError as e:
            raise GatewayError(f"Could not open change stream on {table}: {e}") from e
        return MongoFeed(table, stream)

    async def close(self):
        await self.client.close()


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

_CLOSED = object()


class MemoryFeed:
    def __init__(self, gateway: "MemoryGateway", table: str):
        self.table = table
        self._gateway = gateway
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def push(self, item):
        self._queue.put_nowait(item)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        if self.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        if self.closed:
            return
        self.closed = True
        self._gateway.feeds[self.table].discard(self)
        self._queue.put_nowait(_CLOSED)


class MemoryGateway(Gateway):
    """Tables are dicts keyed by id; each write fans its event out to open feeds."""

    def __init__(self):
        self.tables = {table: {} for table in TABLES}
        self.feeds = {table: set() for table in TABLES}

    def _table(self, table):
        if table not in self.tables:
            raise GatewayError(f"Unknown table: {table}")
        return self.tables[table]

    def _publish(self, table, event_type, new=None, old=None):
        event = ChangeEvent(table=table, type=event_type, new=new, old=old)
        for feed in list(self.feeds[table]):
            feed.push(copy.deepcopy(event))

    async def select(self, table, order_by=None, limit=None):
        rows = [copy.deepcopy(r) for r in self._table(table).values()]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by))
        if limit:
            rows = rows[:limit]
        return rows

    async def insert(self, table, row):
        rows = self._table(table)
        doc = copy.deepcopy(dict(row))
        doc["id"] = str(ObjectId())
        doc["created_at"] = doc["updated_at"] = _now()
        rows[doc["id"]] = doc
        self._publish(table, INSERT, new=copy.deepcopy(doc))
        return copy.deepcopy(doc)

    async def update(self, table, row_id, changes):
        rows = self._table(table)
        if row_id not in rows:
            return None
        doc = rows[row_id]
        doc.update(copy.deepcopy(dict(changes)))
        doc["updated_at"] = _now()
        self._publish(table, UPDATE, new=copy.deepcopy(doc))
        return copy.deepcopy(doc)

    async def delete(self, table, row_id):
        rows = self._table(table)
        if rows.pop(row_id, None) is not None:
            self._publish(table, DELETE, old={"id": row_id})

    async def delete_where(self, table, column, value):
        rows = self._table(table)
        doomed = [row_id for row_id, row in rows.items() if row.get(column) == value]
        for row_id in doomed:
            await self.delete(table, row_id)
        return len(doomed)

    async def subscribe(self, table):
        self._table(table)
        feed = MemoryFeed(self, table)
        self.feeds[table].add(feed)
        return feed

    def drop_feeds(self, table: Optional[str] = None, reason: str = "connection lost"):
        """Break open feeds the way a dropped socket would."""
        for name in [table] if table else list(self.feeds):
            for feed in list(self.feeds[name]):
                self.feeds[name].discard(feed)
                feed.push(GatewayError(f"Change feed on {name}: {reason}"))

    async def close(self):
        for name in self.feeds:
            for feed in list(self.feeds[name]):
                await feed.close()


def get_gateway(url: Optional[str] = None, name: Optional[str] = None) -> Gateway:
    url = url if url is not None else config.DATABASE_URL
    if url:
        return MongoGateway(url, name or config.DATABASE_NAME)
    logger.warning("DATABASE_URL not set, using in-memory gateway")
    return MemoryGateway()


# Seed data (idempotent) for a demo store

DEMO_HOURS = {
    "monday": {"open": "18:00", "close": "23:00", "closed": False},
    "tuesday": {"open": "18:00", "close": "23:00", "closed": False},
    "wednesday": {"open": "18:00", "close": "23:00", "closed": False},
    "thursday": {"open": "18:00", "close": "23:00", "closed": False},
    "friday": {"open": "18:00", "close": "23:30", "closed": False},
    "saturday": {"open": "18:00", "close": "23:30", "closed": False},
    "sunday": {"open": "18:00", "close": "22:00", "closed": False},
}


async def seed_demo_data(gateway: Gateway) -> bool:
    # Only seed if empty
    if await gateway.select(CATEGORIES, limit=1):
        return False

    if not await gateway.select(STORE_CONFIG, limit=1):
        await gateway.insert(STORE_CONFIG, {
            "store_name": "Sabor & Cia",
            "whatsapp_number": "5511999999999",
            "address": "Rua das Delícias, 123 - Centro",
            "delivery_fee": 5.0,
            "is_open": True,
            "opening_hours": DEMO_HOURS,
            "banner_text": "Bem-vindos ao melhor sabor da cidade!",
        })

    snacks = await gateway.insert(CATEGORIES, {"name": "Lanches", "description": "Deliciosos sanduíches artesanais", "order_index": 1, "is_active": True})
    drinks = await gateway.insert(CATEGORIES, {"name": "Bebidas", "description": "Refrescantes bebidas geladas", "order_index": 2, "is_active": True})
    desserts = await gateway.insert(CATEGORIES, {"name": "Sobremesas", "description": "Doces irresistíveis", "order_index": 3, "is_active": True})

    for product in [
        {"category_id": snacks["id"], "name": "X-Burger Especial", "description": "Hambúrguer artesanal com carne bovina, queijo, alface, tomate e molho especial", "price": 18.90, "is_available": True, "is_featured": True, "preparation_time": 15, "order_index": 1},
        {"category_id": snacks["id"], "name": "X-Bacon", "description": "Hambúrguer com bacon crocante, queijo, alface e tomate", "price": 21.90, "is_available": True, "is_featured": False, "preparation_time": 18, "order_index": 2},
        {"category_id": drinks["id"], "name": "Coca-Cola 350ml", "description": "Refrigerante gelado", "price": 5.50, "is_available": True, "is_featured": False, "preparation_time": 2, "order_index": 1},
        {"category_id": desserts["id"], "name": "Brownie com Sorvete", "description": "Brownie quentinho com bola de sorvete de baunilha", "price": 12.90, "is_available": True, "is_featured": True, "preparation_time": 10, "order_index": 1},
    ]:
        await gateway.insert(PRODUCTS, product)
    logger.info("Seeded demo store")
    return True
