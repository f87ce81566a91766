import pytest
from fastapi.testclient import TestClient

import main
from database import MemoryGateway


@pytest.fixture
def client(gateway):
    main.app.state.gateway_factory = lambda: gateway
    with TestClient(main.app) as c:
        yield c
    main.app.state.gateway_factory = None


def login(client):
    res = client.post("/admin/login", json={"password": "595510"})
    assert res.status_code == 200


def test_root(client):
    assert client.get("/").json() == {"message": "Restaurant Storefront API is running"}


def test_store_and_menu(client):
    assert client.get("/store").json()["store_name"] == "Sabor & Cia"
    assert [c["name"] for c in client.get("/categories").json()] == ["Lanches", "Bebidas"]
    menu = client.get("/menu").json()
    assert menu["loading"] is False
    assert [p["id"] for p in menu["featured"]] == ["p1"]
    assert set(menu["sections"]) == {"1", "2"}


def test_product_search_and_filter(client):
    assert [p["id"] for p in client.get("/products", params={"search": "x-"}).json()] == ["p1", "p2"]
    assert [p["id"] for p in client.get("/products", params={"search": "GELADO"}).json()] == ["p3"]
    assert [p["id"] for p in client.get("/products", params={"category_id": "2"}).json()] == ["p3"]


def test_inactive_categories_hidden(client, gateway):
    gateway.tables["categories"]["2"]["is_active"] = False
    client.post("/refresh")
    assert [c["id"] for c in client.get("/categories").json()] == ["1"]
    assert len(client.get("/categories", params={"include_inactive": True}).json()) == 2


def test_cart_flow_and_checkout(client):
    res = client.post("/cart", json={"product_id": "p1", "quantity": 2, "notes": "no onions"})
    assert res.status_code == 200
    assert res.json()["total"] == pytest.approx(37.8)
    client.post("/cart", json={"product_id": "p3"})
    client.put("/cart/p3", json={"quantity": 0})
    cart = client.get("/cart").json()
    assert cart["count"] == 2
    assert [i["product"]["id"] for i in cart["items"]] == ["p1"]

    res = client.post("/checkout", json={"customer_name": "Ana", "customer_phone": "119999"})
    assert res.status_code == 200
    body = res.json()
    assert body["order"]["total"] == pytest.approx(42.8)
    assert body["whatsapp_url"].startswith("https://wa.me/5511999999999?text=")
    assert client.get("/cart").json()["items"] == []


def test_cart_rejects_unknown_and_unavailable(client, gateway):
    assert client.post("/cart", json={"product_id": "nope"}).status_code == 404
    gateway.tables["products"]["p2"]["is_available"] = False
    client.post("/refresh")
    assert client.post("/cart", json={"product_id": "p2"}).status_code == 400
    assert client.post("/cart", json={"product_id": "p1", "quantity": 0}).status_code == 422


def test_checkout_empty_cart(client):
    res = client.post("/checkout", json={"customer_name": "Ana", "customer_phone": "1"})
    assert res.status_code == 400


def test_admin_routes_require_login(client):
    assert client.post("/admin/categories", json={"name": "x"}).status_code == 401
    assert client.post("/admin/login", json={"password": "wrong"}).status_code == 401
    login(client)
    assert client.get("/admin/status").json() == {"authenticated": True}
    client.post("/admin/logout")
    assert client.delete("/admin/products/p1").status_code == 401


def test_admin_category_crud(client):
    login(client)
    res = client.post("/admin/categories", json={"name": "Promo", "order_index": 0})
    assert res.status_code == 200
    new_id = res.json()["id"]
    assert [c["name"] for c in client.get("/categories").json()] == ["Promo", "Lanches", "Bebidas"]

    res = client.put(f"/admin/categories/{new_id}", json={"order_index": 10})
    assert res.status_code == 200
    assert client.get("/categories").json()[-1]["id"] == new_id

    assert client.put("/admin/categories/missing", json={"name": "x"}).status_code == 404

    client.post("/cart", json={"product_id": "p1"})
    assert client.delete("/admin/categories/1").json() == {"success": True}
    assert [p["id"] for p in client.get("/products").json()] == ["p3"]
    assert client.get("/cart").json()["items"] == []


def test_admin_product_crud(client):
    login(client)
    res = client.post("/admin/products", json={"name": "Suco", "price": 8.0, "category_id": "2"})
    assert res.status_code == 200
    product_id = res.json()["id"]
    assert client.get("/products").json()[-1]["name"] == "Suco"

    assert client.post("/admin/products", json={"name": "Bad", "price": 1, "category_id": "404"}).status_code == 400
    assert client.post("/admin/products", json={"name": "Free", "price": 0, "category_id": "2"}).status_code == 422

    client.put(f"/admin/products/{product_id}", json={"price": 9.5})
    assert next(p for p in client.get("/products").json() if p["id"] == product_id)["price"] == 9.5

    client.delete(f"/admin/products/{product_id}")
    assert product_id not in [p["id"] for p in client.get("/products").json()]


def test_admin_store_update(client):
    login(client)
    res = client.put("/admin/store", json={"delivery_fee": 7.0, "banner_text": "Hoje tem promo"})
    assert res.status_code == 200
    store = client.get("/store").json()
    assert store["delivery_fee"] == 7.0
    assert store["banner_text"] == "Hoje tem promo"
    assert client.put("/admin/store", json={"delivery_fee": -1}).status_code == 422


def test_admin_write_failure_is_reported(client, gateway):
    login(client)
    gateway.fail_writes = True
    res = client.post("/admin/categories", json={"name": "x"})
    assert res.status_code == 500
    assert res.json()["detail"] == "Failed to add category: permission denied"


def test_diagnostics(client):
    body = client.get("/test").json()
    assert body["backend"] == "✅ Running"
    assert body["feeds"] == {"store_config": "active", "categories": "active", "products": "active"}
    assert body["stale"] is False


def test_seed_empty_store_loads_settings():
    main.app.state.gateway_factory = MemoryGateway
    try:
        with TestClient(main.app) as c:
            assert c.get("/store").status_code == 404
            login(c)
            res = c.post("/seed")
            assert res.json() == {"status": "ok", "seeded": True}
            assert c.get("/store").json()["store_name"] == "Sabor & Cia"
            assert len(c.get("/categories").json()) == 3
            res = c.post("/checkout", json={"customer_name": "Ana", "customer_phone": "11 98888-7777"})
            assert res.status_code == 400
            assert res.json()["detail"] == "Cart is empty"
    finally:
        main.app.state.gateway_factory = None


def test_seed_populated_store_is_noop(client):
    login(client)
    assert client.post("/seed").json() == {"status": "ok", "seeded": False}


def test_checkout_with_negative_delivery_fee(client, gateway):
    gateway.tables["store_config"]["cfg"]["delivery_fee"] = -3.0
    assert client.post("/refresh").status_code == 200
    client.post("/cart", json={"product_id": "p3", "quantity": 2})
    res = client.post("/checkout", json={"customer_name": "Ana", "customer_phone": "11 98888-7777"})
    assert res.status_code == 200
    assert res.json()["order"]["total"] == 11.0
