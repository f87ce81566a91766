"""
Store state container

StoreState mirrors the store_config, categories and products tables of one
gateway and owns the session cart. It is created per session and disposed
with close(); nothing else mutates its collections.

Writes are feed-driven: inserts and updates reach the local mirror only
through the change feed echo. Confirmed deletions are also applied right away,
which is safe because removing a missing id is a no-op. No state is changed
before the gateway answers, so a failed write leaves the mirror untouched.

Order indices for new rows default to "current count + 1". Two sessions
creating rows at the same time can end up with the same index; ties keep
arrival order because sorting is stable.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

import config
from converters import convert_category, convert_product, convert_store_config
from exceptions import GatewayError, InvalidReferenceError, WriteError
from realtime import FeedState, TableSubscription
from schemas import (
    CATEGORIES, DELETE, INSERT, PRODUCTS, STORE_CONFIG, TABLES, UPDATE,
    CartItem, Category, CategoryCreate, CategoryUpdate, ChangeEvent, Product,
    ProductCreate, ProductUpdate, StoreConfig, StoreConfigUpdate,
)

logger = logging.getLogger(__name__)


def _sorted(items):
    return sorted(items, key=lambda item: item.order_index)


def _upsert(items, entity):
    for i, item in enumerate(items):
        if item.id == entity.id:
            items = list(items)
            items[i] = entity
            return _sorted(items)
    return _sorted(list(items) + [entity])


def _replace(items, entity):
    return _sorted([entity if item.id == entity.id else item for item in items])


class StoreState:
    def __init__(self, gateway, write_timeout: Optional[float] = None, **feed_options):
        self._gateway = gateway
        self._write_timeout = config.WRITE_TIMEOUT if write_timeout is None else write_timeout
        self._store_config: Optional[StoreConfig] = None
        self._categories: List[Category] = []
        self._products: List[Product] = []
        self._cart: List[CartItem] = []
        self.is_loading = True
        self.error: Optional[str] = None
        self._closed = False
        self._ready = asyncio.Event()
        self._load_lock = asyncio.Lock()
        self._pending_loads = 0
        self._handlers = {
            STORE_CONFIG: self._apply_store_config,
            CATEGORIES: self._apply_category,
            PRODUCTS: self._apply_product,
        }
        self._subscriptions: Dict[str, TableSubscription] = {
            table: TableSubscription(gateway, table, self.apply_event, self._ready,
                                     on_reconnect=self._resync, **feed_options)
            for table in TABLES
        }

    # Read-only views

    @property
    def store_config(self) -> Optional[StoreConfig]:
        return self._store_config

    @property
    def categories(self) -> Tuple[Category, ...]:
        return tuple(self._categories)

    @property
    def products(self) -> Tuple[Product, ...]:
        return tuple(self._products)

    @property
    def cart(self) -> Tuple[CartItem, ...]:
        return tuple(self._cart)

    @property
    def is_stale(self) -> bool:
        return any(sub.stale for sub in self._subscriptions.values())

    def feed_states(self) -> Dict[str, str]:
        return {table: sub.state.value for table, sub in self._subscriptions.items()}

    def get_category(self, category_id: str) -> Optional[Category]:
        return next((c for c in self._categories if c.id == category_id), None)

    def get_product(self, product_id: str) -> Optional[Product]:
        return next((p for p in self._products if p.id == product_id), None)

    # Lifecycle

    async def start(self):
        # Subscribe before loading so no change between the snapshot and the
        # feed opening is lost. Buffered events are applied after the load.
        for sub in self._subscriptions.values():
            await sub.start()
        await self.refresh_data()

    async def close(self):
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions.values():
            await sub.stop()
        logger.info("Store session closed")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def refresh_data(self) -> bool:
        # Reloads run one at a time. Feed events stay held until the last
        # pending reload has installed its snapshot.
        self._pending_loads += 1
        self._ready.clear()
        self.is_loading = True
        try:
            async with self._load_lock:
                return await self._load()
        finally:
            self._pending_loads -= 1
            if not self._pending_loads:
                self.is_loading = False
                self._ready.set()

    async def _load(self) -> bool:
        self.error = None
        # Feeds open before the snapshot is read cannot have missed anything it lacks
        live = [sub for sub in self._subscriptions.values() if sub.state is FeedState.ACTIVE]
        try:
            config_rows = await self._gateway.select(STORE_CONFIG, limit=1)
            category_rows = await self._gateway.select(CATEGORIES, order_by="order_index")
            product_rows = await self._gateway.select(PRODUCTS, order_by="order_index")
            store_config = convert_store_config(config_rows[0]) if config_rows else None
            categories = [convert_category(row) for row in category_rows]
            products = [convert_product(row) for row in product_rows]
        except (GatewayError, KeyError, TypeError, ValidationError) as e:
            self.error = f"Failed to load data: {e}"
            logger.error(self.error)
            return False
        self._store_config = store_config
        self._categories = _sorted(categories)
        self._products = _sorted(products)
        known = {p.id for p in products}
        self._purge_cart(item.product.id for item in self._cart if item.product.id not in known)
        for sub in live:
            sub.stale = False
        logger.info(f"Loaded {len(categories)} categories and {len(products)} products")
        return True

    async def _resync(self, subscription) -> bool:
        return await self.refresh_data()

    # Change feed reconciliation

    def apply_event(self, event: ChangeEvent):
        if self._closed:
            return
        handler = self._handlers.get(event.table)
        if handler is None:
            logger.debug(f"Ignoring event for unknown table {event.table}")
            return
        try:
            handler(event)
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning(f"Ignoring malformed {event.type} event on {event.table}: {e}")

    def _apply_store_config(self, event: ChangeEvent):
        if event.type == UPDATE and event.new is not None:
            self._store_config = convert_store_config(event.new)
        elif event.type == DELETE and event.old is not None:
            if self._store_config is not None and self._store_config.id == event.old["id"]:
                self._store_config = None

    def _apply_category(self, event: ChangeEvent):
        self._categories = self._reconcile(self._categories, event, convert_category)

    def _apply_product(self, event: ChangeEvent):
        self._products = self._reconcile(self._products, event, convert_product)
        if event.type == DELETE and event.old is not None:
            self._purge_cart([event.old["id"]])

    @staticmethod
    def _reconcile(items, event: ChangeEvent, convert):
        if event.type == INSERT and event.new is not None:
            return _upsert(items, convert(event.new))
        if event.type == UPDATE and event.new is not None:
            return _replace(items, convert(event.new))
        if event.type == DELETE and event.old is not None:
            row_id = event.old["id"]
            return [item for item in items if item.id != row_id]
        logger.debug(f"Ignoring {event.type} event on {event.table}")
        return items

    # Remote writes

    async def _write(self, action: str, call):
        try:
            return await asyncio.wait_for(call, timeout=self._write_timeout)
        except asyncio.TimeoutError as e:
            raise WriteError(f"Failed to {action}: timed out after {self._write_timeout:g}s") from e
        except GatewayError as e:
            raise WriteError(f"Failed to {action}: {e}") from e

    def _check_category(self, category_id: str):
        if self.get_category(category_id) is None:
            raise InvalidReferenceError(f"Unknown category: {category_id}")

    async def update_store_config(self, changes: StoreConfigUpdate) -> Optional[StoreConfig]:
        if self._store_config is None:
            return None
        values = changes.model_dump(exclude_unset=True)
        if not values:
            return self._store_config
        row = await self._write("update store settings",
                                self._gateway.update(STORE_CONFIG, self._store_config.id, values))
        return convert_store_config(row) if row else None

    async def add_category(self, category: CategoryCreate) -> Category:
        values = category.model_dump()
        if values["order_index"] is None:
            values["order_index"] = len(self._categories) + 1
        row = await self._write("add category", self._gateway.insert(CATEGORIES, values))
        return convert_category(row)

    async def update_category(self, category_id: str, changes: CategoryUpdate) -> Optional[Category]:
        values = changes.model_dump(exclude_unset=True)
        row = await self._write("update category", self._gateway.update(CATEGORIES, category_id, values))
        return convert_category(row) if row else None

    async def delete_category(self, category_id: str):
        if not self._gateway.cascades_deletes:
            await self._write("delete category products",
                              self._gateway.delete_where(PRODUCTS, "category_id", category_id))
        await self._write("delete category", self._gateway.delete(CATEGORIES, category_id))
        # Products may have arrived for this category while the writes were in flight
        doomed = [p.id for p in self._products if p.category_id == category_id]
        self._categories = [c for c in self._categories if c.id != category_id]
        self._products = [p for p in self._products if p.category_id != category_id]
        self._purge_cart(doomed)

    async def add_product(self, product: ProductCreate) -> Product:
        self._check_category(product.category_id)
        values = product.model_dump()
        if values["order_index"] is None:
            values["order_index"] = len(self._products) + 1
        row = await self._write("add product", self._gateway.insert(PRODUCTS, values))
        return convert_product(row)

    async def update_product(self, product_id: str, changes: ProductUpdate) -> Optional[Product]:
        values = changes.model_dump(exclude_unset=True)
        if values.get("category_id") is not None:
            self._check_category(values["category_id"])
        row = await self._write("update product", self._gateway.update(PRODUCTS, product_id, values))
        return convert_product(row) if row else None

    async def delete_product(self, product_id: str):
        await self._write("delete product", self._gateway.delete(PRODUCTS, product_id))
        self._products = [p for p in self._products if p.id != product_id]
        self._purge_cart([product_id])

    # Cart (session-local, never written to the gateway)

    def add_to_cart(self, product: Product, quantity: int = 1, notes: Optional[str] = None):
        for i, item in enumerate(self._cart):
            if item.product.id == product.id:
                self._cart[i] = item.model_copy(update={"quantity": item.quantity + quantity, "notes": notes})
                return
        self._cart.append(CartItem(product=product.model_copy(deep=True), quantity=quantity, notes=notes))

    def update_cart_item(self, product_id: str, quantity: int):
        if quantity <= 0:
            self.remove_from_cart(product_id)
            return
        self._cart = [
            item.model_copy(update={"quantity": quantity}) if item.product.id == product_id else item
            for item in self._cart
        ]

    def remove_from_cart(self, product_id: str):
        self._purge_cart([product_id])

    def clear_cart(self):
        self._cart = []

    def get_cart_total(self) -> float:
        return sum((item.product.price * item.quantity for item in self._cart), 0.0)

    def _purge_cart(self, product_ids: Iterable[str]):
        ids = set(product_ids)
        if ids:
            self._cart = [item for item in self._cart if item.product.id not in ids]
