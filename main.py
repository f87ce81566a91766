import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import config
from admin_auth import AdminAuth
from database import MemoryGateway, get_gateway, seed_demo_data
from exceptions import InvalidReferenceError, StoreError
from menu import active_categories, featured_products, filter_products, products_by_category
from orders import checkout
from schemas import (
    CategoryCreate, CategoryUpdate, CustomerDetails, ProductCreate, ProductUpdate, StoreConfigUpdate,
)
from store import StoreState

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One storefront session per running app
    factory = getattr(app.state, "gateway_factory", None) or get_gateway
    gateway = factory()
    if config.SEED_DEMO_DATA:
        await seed_demo_data(gateway)
    store = StoreState(gateway)
    app.state.gateway = gateway
    app.state.store = store
    app.state.admin = AdminAuth()
    await store.start()
    try:
        yield
    finally:
        await store.close()
        await gateway.close()


app = FastAPI(title="Restaurant Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_store(request: Request) -> StoreState:
    return request.app.state.store


def get_admin(request: Request) -> AdminAuth:
    return request.app.state.admin


def require_admin(admin: AdminAuth = Depends(get_admin)):
    if not admin.is_authenticated:
        raise HTTPException(status_code=401, detail="Admin login required")


def http_error(e: StoreError) -> HTTPException:
    if isinstance(e, InvalidReferenceError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


@app.get("/")
def read_root():
    return {"message": "Restaurant Storefront API is running"}


# Menu

@app.get("/store")
async def get_store_config(store: StoreState = Depends(get_store)):
    if store.store_config is None:
        raise HTTPException(status_code=404, detail=store.error or "Store settings not found")
    return store.store_config


@app.get("/categories")
async def list_categories(include_inactive: bool = False, store: StoreState = Depends(get_store)):
    if include_inactive:
        return list(store.categories)
    return active_categories(store.categories)


@app.get("/products")
async def list_products(search: str = "", category_id: Optional[str] = None, store: StoreState = Depends(get_store)):
    return filter_products(store.products, search, category_id)


@app.get("/products/featured")
async def list_featured(store: StoreState = Depends(get_store)):
    return featured_products(store.products)


@app.get("/menu")
async def get_menu(store: StoreState = Depends(get_store)):
    return {
        "loading": store.is_loading,
        "error": store.error,
        "stale": store.is_stale,
        "categories": active_categories(store.categories),
        "featured": featured_products(store.products),
        "sections": products_by_category(store.categories, store.products),
    }


@app.post("/refresh")
async def refresh(store: StoreState = Depends(get_store)):
    await store.refresh_data()
    if store.error:
        raise HTTPException(status_code=500, detail=store.error)
    return {"status": "ok"}


# Cart

class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    notes: Optional[str] = None


class UpdateCartRequest(BaseModel):
    quantity: int


def cart_view(store: StoreState):
    return {
        "items": list(store.cart),
        "count": sum(item.quantity for item in store.cart),
        "total": round(store.get_cart_total(), 2),
    }


@app.get("/cart")
async def get_cart(store: StoreState = Depends(get_store)):
    return cart_view(store)


@app.post("/cart")
async def add_to_cart(payload: AddToCartRequest, store: StoreState = Depends(get_store)):
    product = store.get_product(payload.product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    if not product.is_available:
        raise HTTPException(status_code=400, detail="Product is not available")
    store.add_to_cart(product, payload.quantity, payload.notes)
    return cart_view(store)


@app.put("/cart/{product_id}")
async def update_cart_item(product_id: str, payload: UpdateCartRequest, store: StoreState = Depends(get_store)):
    store.update_cart_item(product_id, payload.quantity)
    return cart_view(store)


@app.delete("/cart/{product_id}")
async def remove_from_cart(product_id: str, store: StoreState = Depends(get_store)):
    store.remove_from_cart(product_id)
    return cart_view(store)


@app.delete("/cart")
async def clear_cart(store: StoreState = Depends(get_store)):
    store.clear_cart()
    return cart_view(store)


@app.post("/checkout")
async def place_order(payload: CustomerDetails, store: StoreState = Depends(get_store)):
    try:
        order, url = checkout(store, payload)
    except StoreError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"order": order, "whatsapp_url": url}


# Admin

class LoginRequest(BaseModel):
    password: str


@app.post("/admin/login")
def admin_login(payload: LoginRequest, admin: AdminAuth = Depends(get_admin)):
    if not admin.login(payload.password):
        raise HTTPException(status_code=401, detail="Invalid password")
    return {"authenticated": True}


@app.post("/admin/logout")
def admin_logout(admin: AdminAuth = Depends(get_admin)):
    admin.logout()
    return {"authenticated": False}


@app.get("/admin/status")
def admin_status(admin: AdminAuth = Depends(get_admin)):
    return {"authenticated": admin.is_authenticated}


@app.put("/admin/store", dependencies=[Depends(require_admin)])
async def admin_update_store(payload: StoreConfigUpdate, store: StoreState = Depends(get_store)):
    try:
        updated = await store.update_store_config(payload)
    except StoreError as e:
        raise http_error(e)
    if updated is None:
        raise HTTPException(status_code=404, detail="Store settings not found")
    return updated


@app.post("/admin/categories", dependencies=[Depends(require_admin)])
async def admin_add_category(payload: CategoryCreate, store: StoreState = Depends(get_store)):
    try:
        return await store.add_category(payload)
    except StoreError as e:
        raise http_error(e)


@app.put("/admin/categories/{category_id}", dependencies=[Depends(require_admin)])
async def admin_update_category(category_id: str, payload: CategoryUpdate, store: StoreState = Depends(get_store)):
    try:
        updated = await store.update_category(category_id, payload)
    except StoreError as e:
        raise http_error(e)
    if updated is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return updated


@app.delete("/admin/categories/{category_id}", dependencies=[Depends(require_admin)])
async def admin_delete_category(category_id: str, store: StoreState = Depends(get_store)):
    try:
        await store.delete_category(category_id)
    except StoreError as e:
        raise http_error(e)
    return {"success": True}


@app.post("/admin/products", dependencies=[Depends(require_admin)])
async def admin_add_product(payload: ProductCreate, store: StoreState = Depends(get_store)):
    try:
        return await store.add_product(payload)
    except StoreError as e:
        raise http_error(e)


@app.put("/admin/products/{product_id}", dependencies=[Depends(require_admin)])
async def admin_update_product(product_id: str, payload: ProductUpdate, store: StoreState = Depends(get_store)):
    try:
        updated = await store.update_product(product_id, payload)
    except StoreError as e:
        raise http_error(e)
    if updated is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return updated


@app.delete("/admin/products/{product_id}", dependencies=[Depends(require_admin)])
async def admin_delete_product(product_id: str, store: StoreState = Depends(get_store)):
    try:
        await store.delete_product(product_id)
    except StoreError as e:
        raise http_error(e)
    return {"success": True}


# Seed data route (idempotent) to populate a demo store
@app.post("/seed", dependencies=[Depends(require_admin)])
async def seed(request: Request):
    try:
        seeded = await seed_demo_data(request.app.state.gateway)
    except StoreError as e:
        raise HTTPException(status_code=500, detail=str(e))
    # Store settings only arrive through a load, never through feed inserts
    store = request.app.state.store
    if seeded and not await store.refresh_data():
        raise HTTPException(status_code=500, detail=store.error)
    return {"status": "ok", "seeded": seeded}


@app.get("/test")
async def test_database(request: Request):
    store = request.app.state.store
    gateway = request.app.state.gateway
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "feeds": store.feed_states(),
        "stale": store.is_stale,
        "error": store.error,
    }
    if isinstance(gateway, MemoryGateway):
        response["database"] = "⚠️  In-memory (no DATABASE_URL)"
    elif store.error:
        response["database"] = f"❌ Error: {store.error[:50]}"
    else:
        response["database"] = "✅ Connected & Working"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
