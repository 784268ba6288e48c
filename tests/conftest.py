import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from hare_pos.services.inventory_store import InventoryStore
from hare_pos.services.org_context import OrgContext
from hare_pos.services.supabase_client import SupabaseClient
from hare_pos.utils.config import settings

BACKEND_URL = "http://backend.test"


class FakeCache:
    """In-memory stand-in for the Redis cache service."""

    def __init__(self, pubsub=None):
        self.entries = {}
        self.published = []
        self.pubsub = pubsub

    async def get_json(self, key):
        return self.entries.get(key)

    async def set_json(self, key, value, ttl=None):
        self.entries[key] = json.loads(json.dumps(value))

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 1

    async def subscribe(self, channel):
        if self.pubsub is None:
            raise RedisConnectionError("redis unavailable")
        return self.pubsub


@pytest.fixture
def fake_cache():
    return FakeCache()


@pytest.fixture
def client():
    return SupabaseClient(access_token="token-1", base_url=BACKEND_URL, api_key="anon-key")


@pytest.fixture
def ctx(client):
    return OrgContext(user_id="user-1", org_id="org-1", access_token="token-1", client=client)


@pytest.fixture
def inventory_doc():
    return {
        "store": {
            "drinks": {
                "espresso": [
                    {"id": "latte", "name": "Latte", "stock": 5, "price": 120, "unit": "kg", "usagePerCup": 0.02},
                    {"id": "mocha", "name": "Mocha", "stock": 3, "price": 130, "unit": "kg", "usagePerCup": 0.02},
                ],
                "singleOrigin": [
                    {"id": "kenya", "name": "Kenya AA", "stock": 2, "price": 180, "unit": "kg", "usagePerCup": 0.018},
                ],
            },
            "HandDrip": [
                {"id": "eth-250", "name": "Ethiopian", "stock": 1, "price": 450, "unit": "kg", "grams": 250},
                {"id": "eth-500", "name": "Ethiopian", "stock": 4, "price": 800, "unit": "kg", "grams": 500},
            ],
        }
    }


@pytest.fixture
def store(inventory_doc):
    store = InventoryStore()
    store.set_inventory(inventory_doc, persist=False)
    return store


@pytest.fixture
def mock_settings(mocker):
    mocker.patch.object(settings, "SUPABASE_URL", BACKEND_URL)
    mocker.patch.object(settings, "SUPABASE_ANON_KEY", "anon-key")
    mocker.patch.object(settings, "DEFAULT_ORG_ID", None)
    return settings
