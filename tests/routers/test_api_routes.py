import httpx
import pytest
import pytest_asyncio

from hare_pos.main import app
from hare_pos.models.pos_models import Shelf
from hare_pos.services import order_service
from hare_pos.services.order_service import OrderPage
from hare_pos.services.session_service import PosSession, session_service

AUTH = {"Authorization": "Bearer token-1"}


@pytest.fixture
def pos_session(ctx, fake_cache, inventory_doc):
    session = PosSession(ctx, cache=fake_cache, mirror_to_rpc=False)
    session.store.set_inventory(inventory_doc, persist=False)
    # Keep mutations local; persistence has its own tests
    session.store.persistence = None
    session_service._sessions["token-1"] = session
    yield session
    session_service._sessions.pop("token-1", None)


@pytest_asyncio.fixture
async def api():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://pos.test") as client:
        yield client


async def fill_cart(api, shelf, product_id, qty):
    response = await api.post("/api/cart/items", json={"shelf": shelf, "product_id": product_id, "qty": qty},
                              headers=AUTH)
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_requests_without_session_are_rejected(api):
    response = await api.get("/api/inventory")
    assert response.status_code == 401
    assert response.json()["detail"] == "Missing bearer token"

    response = await api.get("/api/inventory", headers={"Authorization": "Bearer unknown"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_open_and_close_session(api, pos_session, mocker):
    mocker.patch.object(session_service, "open", new_callable=mocker.AsyncMock, return_value=pos_session)

    response = await api.post("/api/session", headers=AUTH)
    assert response.status_code == 200
    assert response.json() == {"session_id": pos_session.session_id, "org_id": "org-1", "user_id": "user-1"}

    response = await api.delete("/api/session", headers=AUTH)
    assert response.json() == {"status": "closed"}
    response = await api.delete("/api/session", headers=AUTH)
    assert response.json() == {"status": "not_open"}


@pytest.mark.asyncio
async def test_inventory_crud(api, pos_session):
    response = await api.get("/api/inventory", headers=AUTH)
    assert [p["id"] for p in response.json()["store"]["HandDrip"]] == ["eth-250", "eth-500"]

    response = await api.post("/api/inventory/products", headers=AUTH,
                              json={"shelf": "HandDrip", "name": "Kenya", "stock": 2, "price": 500})
    assert response.status_code == 201
    kenya = response.json()
    assert kenya["grams"] == 250

    response = await api.post("/api/inventory/products", headers=AUTH, json={"shelf": "HandDrip", "name": "kenya"})
    assert response.status_code == 422

    response = await api.patch(f"/api/inventory/products/HandDrip/{kenya['id']}", headers=AUTH, json={"price": 550})
    assert response.json()["price"] == 550

    response = await api.post("/api/inventory/products/espresso/latte/adjust", headers=AUTH, json={"delta_kg": -10})
    assert response.json()["stock"] == 0

    response = await api.delete("/api/inventory/products/espresso/missing", headers=AUTH)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_cart_and_checkout(api, pos_session):
    cart = await fill_cart(api, "espresso", "latte", 10)
    assert cart["items"][0]["key"] == "espresso|latte|0"
    assert cart["total"] == 1200

    response = await api.post("/api/orders/checkout", headers=AUTH, json={"payment_method": "cash"})
    assert response.status_code == 201
    order = response.json()
    assert order["total"] == 1200
    assert order["paymentMethod"] == "cash"

    inventory = (await api.get("/api/inventory", headers=AUTH)).json()
    assert inventory["store"]["drinks"]["espresso"][0]["stock"] == pytest.approx(4.8)
    assert (await api.get("/api/cart", headers=AUTH)).json() == {"items": [], "total": 0}

    listing = (await api.get("/api/orders", headers=AUTH)).json()
    assert listing["count"] == 1
    assert listing["rows"][0]["id"] == order["id"]


@pytest.mark.asyncio
async def test_checkout_shortfall_is_422_with_details(api, pos_session):
    await fill_cart(api, "HandDrip", "eth-250", 5)

    response = await api.post("/api/orders/checkout", headers=AUTH, json={})

    assert response.status_code == 422
    body = response.json()
    assert "Ethiopian" in body["detail"]
    assert body["shortfalls"][0]["product_id"] == "eth-250"
    assert body["shortfalls"][0]["available_kg"] == 1
    assert len(pos_session.cart) == 1
    assert pos_session.store.orders == []


@pytest.mark.asyncio
async def test_cart_line_updates(api, pos_session):
    await fill_cart(api, "HandDrip", "eth-500", 1)

    response = await api.patch("/api/cart/items/HandDrip|eth-500|500", headers=AUTH, json={"delta": 2})
    assert response.json()["items"][0]["qty"] == 3

    response = await api.delete("/api/cart/items/HandDrip|eth-500|500", headers=AUTH)
    assert response.json()["items"] == []

    response = await api.delete("/api/cart/items/HandDrip|eth-500|500", headers=AUTH)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_void_and_restore(api, pos_session):
    await fill_cart(api, "espresso", "latte", 30)
    order = (await api.post("/api/orders/checkout", headers=AUTH, json={})).json()

    response = await api.post(f"/api/orders/{order['id']}/void", headers=AUTH, json={"restock": True, "reason": "typo"})
    assert response.status_code == 200
    assert response.json()["voided"] is True
    assert pos_session.store.inventory.find(Shelf.ESPRESSO, "latte").stock == pytest.approx(5.0)

    response = await api.post("/api/orders/nope/void", headers=AUTH)
    assert response.status_code == 404

    pos_session.engine.allow_restore = False
    response = await api.post(f"/api/orders/{order['id']}/restore", headers=AUTH)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_delivery_fee_order(api, pos_session):
    response = await api.post("/api/orders/delivery", headers=AUTH, json={"fee": 0})
    assert response.status_code == 422

    response = await api.post("/api/orders/delivery", headers=AUTH,
                              json={"fee": 80, "payment_method": "cash", "delivery": {"customer_name": "Ana"}})
    assert response.status_code == 201
    assert response.json()["channel"] == "DELIVERY"

    listing = (await api.get("/api/orders?channel=DELIVERY", headers=AUTH)).json()
    assert listing["count"] == 1
    assert listing["total_amount"] == 80


@pytest.mark.asyncio
async def test_remote_order_history(api, pos_session, mocker):
    fetch = mocker.patch.object(order_service, "fetch_orders", new_callable=mocker.AsyncMock,
                                return_value=OrderPage(rows=[], count=0, total_amount=0))

    response = await api.get("/api/orders?source=remote&status=voided&date_from=2024-05-01", headers=AUTH)

    assert response.json() == {"rows": [], "count": 0, "total_amount": 0}
    query = fetch.await_args.args[1]
    assert query.status == "voided"
    assert str(query.date_from) == "2024-05-01"


@pytest.mark.asyncio
async def test_summary_csv_download(api, pos_session):
    await fill_cart(api, "espresso", "latte", 1)
    await api.post("/api/orders/checkout", headers=AUTH, json={"payment_method": "card"})

    response = await api.get("/api/reports/summary.csv?source=local", headers=AUTH)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="orders_summary_all_today.csv"' in response.headers["content-disposition"]
    assert response.content.startswith(b"\xef\xbb\xbfDate,OrderID,Type,Channel,Payment,Total,Voided\r\n")
    assert response.content.endswith(b",card,120,NO")


@pytest.mark.asyncio
async def test_dashboard_from_local_orders(api, pos_session):
    await fill_cart(api, "HandDrip", "eth-500", 2)
    await api.post("/api/orders/checkout", headers=AUTH, json={"payment_method": "cash"})

    response = await api.get("/api/reports/dashboard?source=local&last_days=1", headers=AUTH)

    assert response.status_code == 200
    dash = response.json()
    assert dash["total_orders"] == 1
    assert dash["order_revenue"]["amount"] == 1600
    assert dash["beans_by_type"][0]["variants_label"] == "500g × 2"
    assert dash["last_days"][0]["orders"] == 1


@pytest.mark.asyncio
async def test_health_reports_initializing_without_lifespan(api):
    response = await api.get("/health")
    assert response.status_code == 503
