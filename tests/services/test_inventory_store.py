import asyncio

import pytest

from hare_pos.models.pos_models import Shelf
from hare_pos.services.inventory_store import InventoryStore
from hare_pos.services.persistence_service import AppStateKind
from hare_pos.utils.exceptions import NotFoundError, PersistenceError, ValidationError


class RecordingPersistence:
    def __init__(self, fail=False):
        self.saved = []
        self.fail = fail

    async def save(self, kind, value, notify=True):
        await asyncio.sleep(0)
        if self.fail:
            raise PersistenceError("backend down")
        self.saved.append((kind, value))
        return "v1"


def test_add_product_assigns_id_and_defaults(store):
    latte = store.add_product(Shelf.SINGLE_ORIGIN, "  Panama Geisha ", stock=1.5, price=300)
    beans = store.add_product(Shelf.BEANS, "Colombia", stock=2, price=500)

    assert latte.id and latte.name == "Panama Geisha"
    assert latte.usage_per_cup == pytest.approx(0.02)
    assert beans.grams == 250
    assert store.inventory.find(Shelf.BEANS, beans.id) is not None


def test_add_product_rejects_empty_and_duplicate_names(store):
    with pytest.raises(ValidationError):
        store.add_product(Shelf.ESPRESSO, "   ")
    with pytest.raises(ValidationError):
        store.add_product(Shelf.ESPRESSO, "latte")
    # Same bean name in a new size is a distinct product
    store.add_product(Shelf.BEANS, "Ethiopian", grams=1000)
    assert len(store.inventory.products(Shelf.BEANS)) == 3


def test_update_product(store):
    updated = store.update_product(Shelf.ESPRESSO, "latte", price=140, usage_per_cup=0.025, name=None)

    assert updated.price == 140
    assert updated.name == "Latte"
    assert store.inventory.find(Shelf.ESPRESSO, "latte").usage_per_cup == pytest.approx(0.025)

    with pytest.raises(ValidationError):
        store.update_product(Shelf.ESPRESSO, "latte", name="Mocha")


def test_delete_unknown_product(store):
    with pytest.raises(NotFoundError):
        store.delete_product(Shelf.ESPRESSO, "nope")


def test_sell_and_adjust_clamp_at_zero(store):
    assert store.sell_item(Shelf.ESPRESSO, "mocha", 500).stock == 0
    assert store.adjust_stock(Shelf.BEANS, "eth-500", -1.5).stock == pytest.approx(2.5)
    assert store.adjust_stock(Shelf.BEANS, "eth-500", -10).stock == 0


def test_reads_are_copies(store):
    inv = store.inventory
    inv.find(Shelf.ESPRESSO, "latte").stock = 999
    assert store.inventory.find(Shelf.ESPRESSO, "latte").stock == 5


def test_set_inventory_normalizes_function_results(store):
    def add_duplicate(inv):
        wire = inv.to_wire()
        wire["store"]["drinks"]["espresso"].append({"id": "x", "name": "LATTE", "stock": 1})
        return wire

    inv = store.set_inventory(add_duplicate, persist=False)
    espresso = inv.products(Shelf.ESPRESSO)
    assert [p.id for p in espresso] == ["x", "mocha"]


def test_without_event_loop_changes_stay_local(inventory_doc):
    persistence = RecordingPersistence()
    store = InventoryStore(persistence=persistence)

    store.set_inventory(inventory_doc)

    assert store.pending_writes == 0
    assert store.inventory.find(Shelf.ESPRESSO, "latte") is not None


@pytest.mark.asyncio
async def test_changes_are_saved_in_background(inventory_doc):
    persistence = RecordingPersistence()
    store = InventoryStore(persistence=persistence)

    store.set_inventory(inventory_doc)
    store.set_orders([{"id": "o1", "createdAt": "2024-05-01T10:00:00.000Z"}])
    assert store.pending_writes == 2

    await store.flush()

    assert store.pending_writes == 0
    kinds = [kind for kind, _ in persistence.saved]
    assert kinds == [AppStateKind.INVENTORY, AppStateKind.ORDERS]
    assert persistence.saved[0][1]["store"]["HandDrip"][0]["id"] == "eth-250"
    assert persistence.saved[1][1][0]["createdAt"] == "2024-05-01T10:00:00.000Z"


@pytest.mark.asyncio
async def test_failed_save_keeps_local_state(inventory_doc):
    store = InventoryStore(persistence=RecordingPersistence(fail=True))

    store.set_inventory(inventory_doc)
    await store.flush()

    assert store.pending_writes == 0
    assert store.inventory.find(Shelf.ESPRESSO, "latte").stock == 5
