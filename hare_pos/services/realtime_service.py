"""
Realtime Service: keep a session's store in step with other devices.

Two feeds are merged, both last-writer-wins:
- push: Redis pub/sub on ``app_state:{org_id}``, published by every save
- poll: periodic read of the remote ``updated_at`` versions, for writes made
  by clients that do not publish (other backends, SQL edits)
"""
from typing import Any, List, Optional
import asyncio
import json
import logging

from redis.exceptions import RedisError

from hare_pos.services.cache_service import cache_service, state_channel
from hare_pos.services.inventory_store import InventoryStore
from hare_pos.services.org_context import OrgContext
from hare_pos.services.persistence_service import AppStateKind, PersistenceService
from hare_pos.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class RealtimeListener:
    def __init__(
        self,
        ctx: OrgContext,
        store: InventoryStore,
        persistence: PersistenceService,
        cache=None,
        origin: Optional[str] = None,
    ):
        self.ctx = ctx
        self.store = store
        self.persistence = persistence
        self.cache = cache or cache_service
        self.origin = origin
        self.channel = state_channel(ctx.org_id)
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None

    @property
    def subscribed(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> bool:
        """Subscribe to org change pushes. On failure the session keeps polling only."""
        try:
            self._pubsub = await self.cache.subscribe(self.channel)
        except (RedisError, OSError) as e:
            logger.error(f"[{self.ctx.org_id}] Realtime subscribe failed, polling only: {e}")
            self._pubsub = None
            return False

        self._task = asyncio.create_task(self._read_loop())
        logger.info(f"[{self.ctx.org_id}] Subscribed to {self.channel}")
        return True

    async def _read_loop(self):
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    payload = json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning(f"[{self.ctx.org_id}] Ignoring undecodable change message")
                    continue
                self.handle_change(payload)
        except asyncio.CancelledError:
            raise
        except (RedisError, OSError) as e:
            logger.error(f"[{self.ctx.org_id}] Realtime stream dropped, polling only: {e}")

    def handle_change(self, payload: Any) -> bool:
        """
        Apply one change notification to the local store.

        Returns:
            True when the store was replaced
        """
        if not isinstance(payload, dict):
            return False
        if self.origin and payload.get("origin") == self.origin:
            return False

        key = payload.get("key")
        state = payload.get("state")
        if key == AppStateKind.INVENTORY.value:
            kind = AppStateKind.INVENTORY
            self.store.set_inventory(state, persist=False)
        elif key == AppStateKind.ORDERS.value:
            kind = AppStateKind.ORDERS
            self.store.set_orders(state if isinstance(state, list) else [], persist=False)
        else:
            return False

        if payload.get("updated_at"):
            self.persistence.versions[kind] = payload["updated_at"]
        logger.debug(f"[{self.ctx.org_id}] Applied remote {key}")
        return True

    async def poll_once(self) -> List[AppStateKind]:
        """Apply every remote document whose version differs from the last one seen."""
        applied = []
        for kind in AppStateKind:
            try:
                row = await self.persistence.read_remote(kind)
            except PersistenceError as e:
                logger.warning(f"[{self.ctx.org_id}] Poll of {kind.value} failed: {e.message}")
                continue
            if row is None or not row.updated_at:
                continue
            if row.updated_at == self.persistence.versions.get(kind):
                continue
            self.handle_change({"key": kind.value, "state": row.state, "updated_at": row.updated_at})
            applied.append(kind)
        return applied

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except (RedisError, OSError) as e:
                logger.warning(f"[{self.ctx.org_id}] Realtime unsubscribe error: {e}")
            self._pubsub = None
