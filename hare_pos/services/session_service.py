"""
Session Service: one POS session per signed-in access token.

A session owns the org context, the local store, the order engine, the cart
and the realtime listener. Sessions are opened on sign-in, closed on
sign-out, and evicted after ``SESSION_IDLE_MINUTES`` of inactivity.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set
import asyncio
import logging
import uuid

from hare_pos.models.pos_models import Inventory, Order
from hare_pos.services import order_service
from hare_pos.services.cart_service import Cart
from hare_pos.services.inventory_store import InventoryStore
from hare_pos.services.order_engine import OrderEngine
from hare_pos.services.org_context import OrgContext, resolve_org_context
from hare_pos.services.persistence_service import AppStateKind, PersistenceService
from hare_pos.services.realtime_service import RealtimeListener
from hare_pos.utils.config import settings
from hare_pos.utils.exceptions import AuthenticationError, PosError
from hare_pos.utils.structured_logging import get_logger

logger = logging.getLogger(__name__)


class PosSession:
    """Everything one signed-in user works with."""

    def __init__(self, ctx: OrgContext, cache=None, mirror_to_rpc: Optional[bool] = None):
        self.session_id = uuid.uuid4().hex
        self.ctx = ctx
        self.persistence = PersistenceService(ctx, cache=cache, origin=self.session_id)
        self.store = InventoryStore(persistence=self.persistence)
        self.engine = OrderEngine(self.store)
        self.cart = Cart()
        self.listener = RealtimeListener(ctx, self.store, self.persistence, cache=cache, origin=self.session_id)
        self.mirror_to_rpc = settings.MIRROR_ORDERS_TO_RPC if mirror_to_rpc is None else mirror_to_rpc
        self.last_used = datetime.now(timezone.utc)
        self.log = get_logger(__name__).bind(org_id=ctx.org_id, user_id=ctx.user_id, session_id=self.session_id)
        self._mirrors: Set[asyncio.Task] = set()

    async def start(self):
        """Load both documents (self-healing missing rows), then subscribe to pushes."""
        inventory = await self.persistence.load(AppStateKind.INVENTORY, Inventory())
        self.store.set_inventory(inventory.state, persist=False)
        orders = await self.persistence.load(AppStateKind.ORDERS, [])
        self.store.set_orders(orders.state, persist=False)
        await self.listener.start()
        self.log.info(f"Session started with {len(self.store.orders)} orders")

    def touch(self):
        self.last_used = datetime.now(timezone.utc)

    def idle_for(self, now: Optional[datetime] = None) -> timedelta:
        return (now or datetime.now(timezone.utc)) - self.last_used

    # ========== Order operations ==========

    def checkout(self, **kwargs) -> Order:
        """Check out the session cart; the cart is cleared only on success."""
        order = self.engine.checkout(self.cart.items, **kwargs)
        self.cart.clear()
        if self.mirror_to_rpc:
            self._mirror(order_service.mirror_order(self.ctx, order))
        return order

    def void_order(self, order_id: str, restock: Optional[bool] = None, reason: Optional[str] = None) -> Optional[Order]:
        before = self.store.find_order(order_id)
        order = self.engine.void_order(order_id, restock=restock, reason=reason)
        if before is not None and not before.voided and self.mirror_to_rpc:
            self._mirror(order_service.void_order_remote(self.ctx, order_id, reason=reason, restock=order.restocked))
        return order

    def record_delivery(self, fee: Any, payment_method: Optional[str] = None, delivery: Any = None) -> Order:
        order = self.engine.record_delivery_order(fee, payment_method=payment_method, delivery=delivery)
        if self.mirror_to_rpc:
            self._mirror(order_service.place_delivery(
                self.ctx, [], payment_method, info=order.delivery, delivery_fee=order.delivery_fee
            ))
        return order

    def _mirror(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._mirrors.add(task)
        task.add_done_callback(self._on_mirrored)

    def _on_mirrored(self, task: asyncio.Task):
        self._mirrors.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.log.error(f"RPC mirror failed: {task.exception()}")

    async def close(self):
        await self.listener.stop()
        await self.store.flush()
        if self._mirrors:
            await asyncio.gather(*list(self._mirrors), return_exceptions=True)
        self.log.info("Session closed")


class SessionService:
    """Registry of open POS sessions keyed by access token."""

    def __init__(self, cache=None):
        self.cache = cache
        self._sessions: Dict[str, PosSession] = {}
        self._opening: Dict[str, asyncio.Lock] = {}
        self._waiting: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def sessions(self) -> List[PosSession]:
        return list(self._sessions.values())

    async def open(self, access_token: str, ctx: Optional[OrgContext] = None) -> PosSession:
        """
        Sign in: resolve the org and start a session (or reuse the open one).

        Raises:
            AuthenticationError: missing/expired token
            OrgResolutionError: user without an organization
        """
        if not access_token:
            raise AuthenticationError("Not authenticated")
        # One sign-in per token at a time; different tokens proceed in parallel
        lock = self._opening.setdefault(access_token, asyncio.Lock())
        self._waiting[access_token] = self._waiting.get(access_token, 0) + 1
        try:
            async with lock:
                existing = self._sessions.get(access_token)
                if existing is not None:
                    existing.touch()
                    return existing

                ctx = ctx or await resolve_org_context(access_token)
                session = PosSession(ctx, cache=self.cache)
                await session.start()
                self._sessions[access_token] = session
                return session
        finally:
            self._waiting[access_token] -= 1
            if not self._waiting[access_token]:
                del self._waiting[access_token]
                del self._opening[access_token]

    def get(self, access_token: str) -> Optional[PosSession]:
        session = self._sessions.get(access_token)
        if session is not None:
            session.touch()
        return session

    async def close(self, access_token: str) -> bool:
        session = self._sessions.pop(access_token, None)
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self):
        tokens = list(self._sessions)
        for token in tokens:
            await self.close(token)
        if tokens:
            logger.info(f"Closed {len(tokens)} session(s)")

    async def poll_all(self) -> int:
        """Poll every session for remote changes; returns how many documents were applied."""
        applied = 0
        for session in self.sessions:
            try:
                applied += len(await session.listener.poll_once())
            except PosError as e:
                session.log.warning(f"Poll failed: {e.message}")
        return applied

    async def evict_idle(self, max_idle: Optional[timedelta] = None) -> int:
        limit = max_idle or timedelta(minutes=settings.SESSION_IDLE_MINUTES)
        now = datetime.now(timezone.utc)
        stale = [token for token, s in self._sessions.items() if s.idle_for(now) > limit]
        for token in stale:
            await self.close(token)
        if stale:
            logger.info(f"Evicted {len(stale)} idle session(s)")
        return len(stale)


session_service = SessionService()
