"""
Inventory Store: the in-memory inventory and orders of one POS session.

``set_inventory`` and ``set_orders`` are the only mutation entry points. Every
committed inventory passes through normalization, and persistence is scheduled
in the background so callers never wait on the backend.
"""
from typing import Any, Callable, List, Optional, Set, Union
import asyncio
import logging
import uuid

from hare_pos.models.pos_models import (
    AnyProduct,
    BeanProduct,
    DrinkProduct,
    Inventory,
    Order,
    ProductKind,
    Shelf,
)
from hare_pos.services.normalization import (
    DedupePolicy,
    normalize_inventory,
    parse_orders,
    product_key,
)
from hare_pos.services.persistence_service import AppStateKind, to_document
from hare_pos.utils.config import settings
from hare_pos.utils.exceptions import NotFoundError, ValidationError
from hare_pos.utils.numbers import non_negative, to_number

logger = logging.getLogger(__name__)

InventoryUpdate = Union[Any, Callable[[Inventory], Any]]
OrdersUpdate = Union[Any, Callable[[List[Order]], Any]]


class InventoryStore:
    """Committed inventory/orders plus fire-and-forget persistence."""

    def __init__(self, persistence=None, policy: Optional[DedupePolicy] = None):
        self.persistence = persistence
        self.policy = policy
        self._inventory: Inventory = normalize_inventory(None, policy)
        self._orders: List[Order] = []
        self._pending: Set[asyncio.Task] = set()

    # ========== Read access ==========

    @property
    def inventory(self) -> Inventory:
        return self._inventory.model_copy(deep=True)

    @property
    def orders(self) -> List[Order]:
        return [order.model_copy(deep=True) for order in self._orders]

    def find_order(self, order_id: str) -> Optional[Order]:
        for order in self._orders:
            if order.id == order_id:
                return order.model_copy(deep=True)
        return None

    # ========== Mutation entry points ==========

    def set_inventory(self, value_or_fn: InventoryUpdate, persist: bool = True) -> Inventory:
        """
        Replace the inventory with a value, or with ``fn(previous)``.

        The result is normalized before it is committed. When ``persist`` is
        set the committed document is saved in the background.
        """
        raw = value_or_fn(self.inventory) if callable(value_or_fn) else value_or_fn
        self._inventory = normalize_inventory(raw, self.policy)
        if persist:
            self._schedule(AppStateKind.INVENTORY, self._inventory)
        return self.inventory

    def set_orders(self, value_or_fn: OrdersUpdate, persist: bool = True) -> List[Order]:
        raw = value_or_fn(self.orders) if callable(value_or_fn) else value_or_fn
        self._orders = parse_orders(raw)
        if persist:
            self._schedule(AppStateKind.ORDERS, self._orders)
        return self.orders

    # ========== Background persistence ==========

    def _schedule(self, kind: AppStateKind, value: Any):
        if self.persistence is None:
            return
        document = to_document(value)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, {kind.value} change kept locally only")
            return
        task = loop.create_task(self.persistence.save(kind, document))
        self._pending.add(task)
        task.add_done_callback(self._on_saved)

    def _on_saved(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background save failed: {error}")

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def flush(self):
        """Wait for every in-flight save (errors are already logged)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ========== Product operations ==========

    def _require(self, shelf: Shelf, product_id: str) -> AnyProduct:
        product = self._inventory.find(shelf, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found on {shelf.value}")
        return product

    def _key_taken(self, shelf: Shelf, name: str, grams: Any, ignore_id: Optional[str] = None) -> bool:
        key = product_key(shelf, name, grams)
        for product in self._inventory.products(shelf):
            if product.id == ignore_id:
                continue
            if product_key(shelf, product.name, getattr(product, "grams", 0)) == key:
                return True
        return False

    def add_product(
        self,
        shelf: Shelf,
        name: str,
        stock: Any = 0,
        price: Any = 0,
        usage_per_cup: Any = None,
        grams: Any = None,
        product_id: Optional[str] = None,
    ) -> AnyProduct:
        """
        Add a product to a shelf.

        Raises:
            ValidationError: empty name, or a product with the same name
                (and size, for beans) already exists on the shelf
        """
        clean_name = str(name or "").strip()
        if not clean_name:
            raise ValidationError("Product name is required")
        if shelf.kind is ProductKind.BEAN and grams is None:
            grams = settings.DEFAULT_BEAN_GRAMS
        if self._key_taken(shelf, clean_name, grams):
            raise ValidationError(f"'{clean_name}' already exists on {shelf.value}")

        data = {"name": clean_name, "stock": stock, "price": price}
        if product_id:
            data["id"] = product_id
        else:
            data["id"] = str(uuid.uuid4())

        if shelf.kind is ProductKind.BEAN:
            product = BeanProduct.model_validate({**data, "grams": grams})
        else:
            product = DrinkProduct.model_validate({**data, "usage_per_cup": usage_per_cup})

        self.set_inventory(lambda inv: inv.with_products(shelf, inv.products(shelf) + [product]))
        logger.info(f"Added {shelf.value} product {product.name} ({product.id})")
        return self._require(shelf, product.id).model_copy()

    def update_product(self, shelf: Shelf, product_id: str, **changes) -> AnyProduct:
        """Apply field changes (None values are ignored) to one product."""
        current = self._require(shelf, product_id)
        data = current.model_dump()
        data.update({field: value for field, value in changes.items() if value is not None})
        data["id"] = product_id

        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("Product name is required")
        if self._key_taken(shelf, name, data.get("grams", 0), ignore_id=product_id):
            raise ValidationError(f"'{name}' already exists on {shelf.value}")

        updated = type(current).model_validate(data)

        def replace(inv: Inventory):
            products = [updated if p.id == product_id else p for p in inv.products(shelf)]
            return inv.with_products(shelf, products)

        self.set_inventory(replace)
        return self._require(shelf, product_id).model_copy()

    def delete_product(self, shelf: Shelf, product_id: str):
        self._require(shelf, product_id)
        self.set_inventory(
            lambda inv: inv.with_products(shelf, [p for p in inv.products(shelf) if p.id != product_id])
        )
        logger.info(f"Deleted {shelf.value} product {product_id}")

    def sell_item(self, shelf: Shelf, product_id: str, qty: Any) -> AnyProduct:
        """Deduct one line's consumption from a product, clamping at zero."""
        product = self._require(shelf, product_id)
        deduction = product.deduction_for(qty)
        return self._set_stock(shelf, product_id, product.stock - deduction)

    def adjust_stock(self, shelf: Shelf, product_id: str, delta_kg: Any) -> AnyProduct:
        """Manual stock correction by +/- kilograms, clamping at zero."""
        product = self._require(shelf, product_id)
        return self._set_stock(shelf, product_id, product.stock + to_number(delta_kg))

    def _set_stock(self, shelf: Shelf, product_id: str, stock: float) -> AnyProduct:
        def apply(inv: Inventory):
            target = inv.find(shelf, product_id)
            if target is not None:
                target.stock = non_negative(stock)
            return inv

        self.set_inventory(apply)
        return self._require(shelf, product_id).model_copy()

    def repair_inventory(self) -> Inventory:
        """Re-run normalization on the committed inventory and save the result."""
        return self.set_inventory(self._inventory)
