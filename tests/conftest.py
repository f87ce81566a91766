import asyncio
from datetime import datetime, timezone

import pytest

from database import MemoryGateway
from exceptions import GatewayError
from store import StoreState

STAMP = datetime(2024, 1, 1, tzinfo=timezone.utc)


def config_row(**overrides):
    row = {
        "id": "cfg",
        "store_name": "Sabor & Cia",
        "whatsapp_number": "5511999999999",
        "address": "Rua das Delícias, 123",
        "delivery_fee": 5.0,
        "is_open": True,
        "opening_hours": {"monday": {"open": "18:00", "close": "23:00", "closed": False}},
        "created_at": STAMP,
        "updated_at": STAMP,
    }
    row.update(overrides)
    return row


def category_row(id, order_index, name="Category", **overrides):
    row = {"id": id, "name": name, "order_index": order_index, "is_active": True,
           "created_at": STAMP, "updated_at": STAMP}
    row.update(overrides)
    return row


def product_row(id, category_id, price=10.0, order_index=1, name=None, **overrides):
    row = {
        "id": id,
        "name": name or f"Product {id}",
        "description": "Tasty",
        "price": price,
        "category_id": category_id,
        "is_available": True,
        "is_featured": False,
        "order_index": order_index,
        "created_at": STAMP,
        "updated_at": STAMP,
    }
    row.update(overrides)
    return row


class FlakyGateway(MemoryGateway):
    """MemoryGateway with switches for failing or hanging calls."""

    def __init__(self):
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False
        self.hang_writes = False
        self.fail_subscribe = False
        self.subscribe_calls = 0
        # Seconds each categories read stalls after taking its snapshot, in call order
        self.category_read_delays = []
        self.write_delay = 0

    async def _maybe_fail_write(self):
        if self.fail_writes:
            raise GatewayError("permission denied")
        if self.hang_writes:
            await asyncio.Event().wait()
        if self.write_delay:
            await asyncio.sleep(self.write_delay)

    async def select(self, table, order_by=None, limit=None):
        if self.fail_reads:
            raise GatewayError("connection refused")
        rows = await super().select(table, order_by, limit)
        if table == "categories" and self.category_read_delays:
            await asyncio.sleep(self.category_read_delays.pop(0))
        return rows

    async def insert(self, table, row):
        await self._maybe_fail_write()
        return await super().insert(table, row)

    async def update(self, table, row_id, changes):
        await self._maybe_fail_write()
        return await super().update(table, row_id, changes)

    async def delete(self, table, row_id):
        await self._maybe_fail_write()
        return await super().delete(table, row_id)

    async def subscribe(self, table):
        self.subscribe_calls += 1
        if self.fail_subscribe:
            raise GatewayError("realtime unavailable")
        return await super().subscribe(table)


def populate(gateway):
    gateway.tables["store_config"]["cfg"] = config_row()
    gateway.tables["categories"]["1"] = category_row("1", 1, "Lanches")
    gateway.tables["categories"]["2"] = category_row("2", 2, "Bebidas")
    gateway.tables["products"]["p1"] = product_row("p1", "1", price=18.90, order_index=1, name="X-Burger", is_featured=True)
    gateway.tables["products"]["p2"] = product_row("p2", "1", price=21.90, order_index=2, name="X-Bacon")
    gateway.tables["products"]["p3"] = product_row("p3", "2", price=5.50, order_index=3, name="Coca-Cola", description="Refrigerante gelado")
    return gateway


async def settle():
    """Let feed tasks drain what is already queued."""
    for _ in range(10):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def gateway():
    return populate(FlakyGateway())


@pytest.fixture
async def store(gateway):
    async with StoreState(gateway, write_timeout=1, backoff_base=0.01, backoff_cap=0.05) as s:
        yield s
