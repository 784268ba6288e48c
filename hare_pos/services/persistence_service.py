"""
Persistence Service: org-scoped app_state documents on the backend, mirrored to Redis.

Each organization owns one row per document kind in ``app_state``, addressed
by (org_id, key). Writes are select-then-update-or-insert; an ``on_conflict``
upsert is never relied on because some backend configurations reject or
mis-handle the ambiguous conflict target.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import logging

from hare_pos.services.cache_service import cache_service, state_cache_key, state_channel
from hare_pos.services.org_context import OrgContext
from hare_pos.services.supabase_client import eq
from hare_pos.utils.config import settings
from hare_pos.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class AppStateKind(str, Enum):
    INVENTORY = "pos_inventory"
    ORDERS = "pos_orders"


@dataclass
class AppStateRow:
    state: Any
    updated_at: Optional[str] = None


def to_document(value: Any) -> Any:
    """JSON-ready form of an Inventory, a list of orders, or plain data."""
    if hasattr(value, "to_wire"):
        return value.to_wire()
    if isinstance(value, list):
        return [item.to_wire() if hasattr(item, "to_wire") else item for item in value]
    return value


class PersistenceService:
    """Reads and writes one organization's POS documents."""

    def __init__(self, ctx: OrgContext, cache=None, origin: Optional[str] = None):
        self.ctx = ctx
        self.client = ctx.client
        self.cache = cache or cache_service
        self.origin = origin
        self.table = settings.APP_STATE_TABLE
        self.column = settings.APP_STATE_COLUMN
        # Last updated_at seen or written per document; used to skip self-echoes when polling
        self.versions: Dict[AppStateKind, Optional[str]] = {}

    def _filters(self, kind: AppStateKind) -> Dict[str, str]:
        return {"org_id": eq(self.ctx.org_id), "key": eq(kind.value)}

    def _cache_key(self, kind: AppStateKind) -> str:
        return state_cache_key(self.ctx.org_id, kind.value)

    async def read_remote(self, kind: AppStateKind) -> Optional[AppStateRow]:
        """Fetch the remote document, or None when the row does not exist."""
        row = await self.client.select_one(
            self.table,
            columns=f"{self.column},updated_at",
            filters=self._filters(kind),
        )
        if row is None:
            return None
        return AppStateRow(state=row.get(self.column), updated_at=row.get("updated_at"))

    async def load(self, kind: AppStateKind, default: Any) -> AppStateRow:
        """
        Load a document for session start-up.

        Remote row present: use it and refresh the cache. Remote row missing:
        fall back to the cached copy (or the default) and write that back to
        heal the missing row. Remote read failure: cached copy or default,
        without writing anything back.
        """
        try:
            row = await self.read_remote(kind)
        except PersistenceError as e:
            logger.error(f"[{self.ctx.org_id}] Remote read of {kind.value} failed, using cache: {e.message}")
            cached = await self.cache.get_json(self._cache_key(kind))
            return AppStateRow(state=cached if cached is not None else default)

        if row is not None and row.state is not None:
            self.versions[kind] = row.updated_at
            await self.cache.set_json(self._cache_key(kind), row.state, ttl=settings.STATE_CACHE_TTL)
            return row

        cached = await self.cache.get_json(self._cache_key(kind))
        fallback = cached if cached is not None else to_document(default)
        logger.info(f"[{self.ctx.org_id}] No remote {kind.value}; seeding from {'cache' if cached is not None else 'default'}")
        try:
            await self.save(kind, fallback, notify=False)
        except PersistenceError as e:
            logger.error(f"[{self.ctx.org_id}] Self-heal write of {kind.value} failed: {e.message}")
        return AppStateRow(state=fallback, updated_at=self.versions.get(kind))

    async def save(self, kind: AppStateKind, value: Any, notify: bool = True) -> Optional[str]:
        """
        Write a document: cache mirror, then select -> update or insert.

        Returns:
            The new updated_at version

        Raises:
            PersistenceError: remote read/write failed (the cache is still updated)
        """
        document = to_document(value)
        await self.cache.set_json(self._cache_key(kind), document, ttl=settings.STATE_CACHE_TTL)

        stamp = datetime.now(timezone.utc).isoformat()
        filters = self._filters(kind)
        exists = await self.client.select_one(self.table, columns="org_id,key", filters=filters)
        if exists:
            rows = await self.client.update(self.table, {self.column: document, "updated_at": stamp}, filters)
        else:
            rows = await self.client.insert(
                self.table,
                [{"org_id": self.ctx.org_id, "key": kind.value, self.column: document, "updated_at": stamp}],
            )

        version = (rows[0].get("updated_at") if rows else None) or stamp
        self.versions[kind] = version
        logger.debug(f"[{self.ctx.org_id}] Saved {kind.value} ({'update' if exists else 'insert'}) @ {version}")

        if notify:
            await self.cache.publish(
                state_channel(self.ctx.org_id),
                {"origin": self.origin, "key": kind.value, "state": document, "updated_at": version},
            )
        return version
