import asyncio
from datetime import timedelta

import pytest

from hare_pos.models.pos_models import Shelf
from hare_pos.services import order_service
from hare_pos.services.persistence_service import AppStateKind, AppStateRow, PersistenceService
from hare_pos.services.realtime_service import RealtimeListener
from hare_pos.services.session_service import SessionService
from hare_pos.utils.exceptions import AuthenticationError, InsufficientStockError, PersistenceError


@pytest.fixture
def backend(mocker, inventory_doc):
    """Patch remote reads/writes so sessions start from inventory_doc and no orders."""
    documents = {AppStateKind.INVENTORY: inventory_doc, AppStateKind.ORDERS: []}

    async def load(kind, default):
        return AppStateRow(state=documents[kind], updated_at="v1")

    mocker.patch.object(PersistenceService, "load", side_effect=load)
    return mocker.patch.object(PersistenceService, "save", new_callable=mocker.AsyncMock, return_value="v2")


@pytest.fixture
def service(fake_cache):
    return SessionService(cache=fake_cache)


@pytest.mark.asyncio
async def test_open_loads_state_and_reuses_session(service, ctx, backend):
    session = await service.open("token-1", ctx=ctx)

    assert session.store.inventory.find(Shelf.ESPRESSO, "latte").stock == 5
    assert session.store.orders == []
    # No Redis pub/sub in tests, so the session falls back to polling
    assert session.listener.subscribed is False
    assert await service.open("token-1") is session
    assert len(service) == 1
    # Loading never writes back
    backend.assert_not_awaited()


@pytest.mark.asyncio
async def test_open_resolves_org_context(service, ctx, backend, mocker):
    resolve = mocker.patch(
        "hare_pos.services.session_service.resolve_org_context",
        new_callable=mocker.AsyncMock,
        return_value=ctx,
    )

    session = await service.open("token-1")

    resolve.assert_awaited_once_with("token-1")
    assert session.ctx.org_id == "org-1"
    assert service.get("token-1") is session
    assert service.get("other-token") is None


@pytest.mark.asyncio
async def test_slow_sign_in_does_not_block_other_tokens(service, ctx, backend, mocker):
    release = asyncio.Event()
    calls = []

    async def resolve(token):
        calls.append(token)
        if token == "token-1":
            await release.wait()
        return ctx

    mocker.patch("hare_pos.services.session_service.resolve_org_context", side_effect=resolve)

    slow = asyncio.create_task(service.open("token-1"))
    duplicate = asyncio.create_task(service.open("token-1"))
    await asyncio.sleep(0)
    other = await asyncio.wait_for(service.open("token-2"), timeout=1)

    assert service.get("token-2") is other
    assert service.get("token-1") is None

    release.set()
    first, second = await asyncio.gather(slow, duplicate)

    assert first is second
    assert calls == ["token-1", "token-2"]
    assert service._opening == {}
    await service.close_all()


@pytest.mark.asyncio
async def test_open_without_token(service):
    with pytest.raises(AuthenticationError):
        await service.open("")


@pytest.mark.asyncio
async def test_checkout_clears_cart_and_saves_in_background(service, ctx, backend):
    session = await service.open("token-1", ctx=ctx)
    session.cart.add(session.store.inventory.find(Shelf.ESPRESSO, "latte"), Shelf.ESPRESSO, 10)

    order = session.checkout(payment_method="cash")

    assert len(session.cart) == 0
    assert order.total == 1200
    assert session.store.inventory.find(Shelf.ESPRESSO, "latte").stock == pytest.approx(4.8)

    await service.close("token-1")

    saved_kinds = [call.args[0] for call in backend.await_args_list]
    assert saved_kinds == [AppStateKind.INVENTORY, AppStateKind.ORDERS]
    assert len(service) == 0


@pytest.mark.asyncio
async def test_failed_checkout_keeps_cart(service, ctx, backend):
    session = await service.open("token-1", ctx=ctx)
    session.cart.add(session.store.inventory.find(Shelf.BEANS, "eth-250"), Shelf.BEANS, 5)

    with pytest.raises(InsufficientStockError):
        session.checkout()

    assert len(session.cart) == 1
    await session.close()
    backend.assert_not_awaited()


@pytest.mark.asyncio
async def test_orders_are_mirrored_to_rpc_when_enabled(service, ctx, backend, mocker):
    mirror = mocker.patch.object(order_service, "mirror_order", new_callable=mocker.AsyncMock)
    void_remote = mocker.patch.object(order_service, "void_order_remote", new_callable=mocker.AsyncMock)
    session = await service.open("token-1", ctx=ctx)
    session.mirror_to_rpc = True

    session.cart.add(session.store.inventory.find(Shelf.ESPRESSO, "mocha"), Shelf.ESPRESSO)
    order = session.checkout()
    session.void_order(order.id, restock=True, reason="mistake")
    # Voiding again is a no-op and is not mirrored twice
    session.void_order(order.id, restock=True)
    await session.close()

    mirror.assert_awaited_once()
    void_remote.assert_awaited_once_with(ctx, order.id, reason="mistake", restock=True)


@pytest.mark.asyncio
async def test_evict_idle_sessions(service, ctx, backend):
    stale = await service.open("token-1", ctx=ctx)
    await service.open("token-2", ctx=ctx)
    stale.last_used -= timedelta(hours=5)

    evicted = await service.evict_idle(timedelta(hours=1))

    assert evicted == 1
    assert service.get("token-1") is None
    assert service.get("token-2") is not None
    await service.close_all()
    assert len(service) == 0


@pytest.mark.asyncio
async def test_poll_all_survives_failing_session(service, ctx, backend, mocker):
    await service.open("token-1", ctx=ctx)
    mocker.patch.object(RealtimeListener, "poll_once", side_effect=PersistenceError("offline"))

    assert await service.poll_all() == 0
    await service.close_all()
