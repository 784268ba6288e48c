"""
Order Engine: checkout, void and restore against the session's InventoryStore.

Checkout is all-or-nothing: every shortfall is collected before anything is
mutated, and all deductions land in a single ``set_inventory`` transition.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging
import uuid

from hare_pos.models.pos_models import (
    AnyProduct,
    CartItem,
    Channel,
    DeliveryInfo,
    Inventory,
    Order,
    OrderItem,
    ProductKind,
    Shelf,
    deduction_kg,
)
from hare_pos.services.inventory_store import InventoryStore
from hare_pos.utils.config import settings
from hare_pos.utils.exceptions import (
    InsufficientStockError,
    NotFoundError,
    Shortfall,
    ValidationError,
)
from hare_pos.utils.numbers import STOCK_EPSILON, non_negative, to_number

logger = logging.getLogger(__name__)

ProductRef = Tuple[Shelf, str]

DELIVERY_FEE_ITEM_ID = "delivery-fee"


def utc_now_iso() -> str:
    """Current UTC time as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _line_deduction(line: CartItem, product: Optional[AnyProduct]) -> float:
    precomputed = non_negative(line.deduct_kg)
    if precomputed > 0:
        return precomputed
    if product is not None:
        return product.deduction_for(line.qty)
    return deduction_kg(line.shelf.kind, line.qty, usage_per_cup=line.usage_per_cup, grams=line.grams)


def _item_deduction(item: OrderItem) -> float:
    """Stock the sale actually took: the recorded deduction, else a recompute."""
    recorded = non_negative(item.deduct_kg)
    return recorded if recorded > 0 else item.deduction_kg()


def find_shortfalls(inventory: Inventory, needs: Dict[ProductRef, float], names: Dict[ProductRef, str]) -> List[Shortfall]:
    """Every product that cannot cover its summed deduction."""
    shortfalls = []
    for (shelf, product_id), need in needs.items():
        product = inventory.find(shelf, product_id)
        if product is None:
            shortfalls.append(Shortfall(product_id, names.get((shelf, product_id), product_id), need, None))
        elif product.stock + STOCK_EPSILON < need:
            shortfalls.append(Shortfall(product_id, product.name, need, product.stock))
    return shortfalls


class OrderEngine:
    """Order lifecycle: active on checkout, then optionally voided."""

    def __init__(
        self,
        store: InventoryStore,
        restock_default: Optional[bool] = None,
        allow_restore: Optional[bool] = None,
    ):
        self.store = store
        self.restock_default = settings.VOID_RESTOCK_DEFAULT if restock_default is None else restock_default
        self.allow_restore = settings.ALLOW_ORDER_RESTORE if allow_restore is None else allow_restore

    def _deduct(self, needs: Dict[ProductRef, float]):
        def apply(inv: Inventory):
            for (shelf, product_id), need in needs.items():
                product = inv.find(shelf, product_id)
                if product is not None:
                    product.stock = max(0.0, product.stock - need)
            return inv

        self.store.set_inventory(apply)

    def _replace_order(self, updated: Order):
        self.store.set_orders(lambda prev: [updated if o.id == updated.id else o for o in prev])

    # ========== Checkout ==========

    def checkout(
        self,
        cart_items: Iterable[Any],
        total: Any = None,
        payment_method: Optional[str] = None,
        channel: Channel = Channel.IN_STORE,
        delivery: Optional[Any] = None,
        delivery_fee: Any = 0,
    ) -> Order:
        """
        Place an order from cart lines.

        Args:
            cart_items: CartItem models or their dict form
            total: Caller-supplied total; defaults to sum(qty * price) plus the delivery fee
            payment_method: Free-form payment label (e.g. "cash", "card")
            channel: IN_STORE or DELIVERY
            delivery: Customer/address details for delivery orders
            delivery_fee: Fee charged on top of the lines

        Returns:
            The new order (also prepended to the store's orders)

        Raises:
            ValidationError: empty cart
            InsufficientStockError: one or more products cannot cover the sale
        """
        lines = [CartItem.model_validate(item) if isinstance(item, dict) else item for item in cart_items]
        lines = [line for line in lines if line.qty > 0]
        if not lines:
            raise ValidationError("Cart is empty")

        inventory = self.store.inventory
        needs: Dict[ProductRef, float] = {}
        names: Dict[ProductRef, str] = {}
        items: List[OrderItem] = []

        for line in lines:
            ref = (line.shelf, line.id)
            product = inventory.find(line.shelf, line.id)
            need = _line_deduction(line, product)
            # Lines for the same product are checked against their combined need
            needs[ref] = needs.get(ref, 0.0) + need
            names.setdefault(ref, line.name)

            is_bean = line.shelf.kind is ProductKind.BEAN
            items.append(OrderItem(
                id=line.id,
                name=product.name if product else line.name,
                qty=line.qty,
                price=line.price,
                category=line.shelf.category,
                sub_key=line.shelf.sub_key,
                grams=(product.grams if product else line.grams) if is_bean else None,
                usage_per_cup=None if is_bean else (product.usage_per_cup if product else line.usage_per_cup),
                deduct_kg=need,
            ))

        shortfalls = find_shortfalls(inventory, needs, names)
        if shortfalls:
            logger.warning(f"Checkout rejected: {len(shortfalls)} product(s) short")
            raise InsufficientStockError(shortfalls)

        self._deduct(needs)

        fee = non_negative(delivery_fee)
        order_total = to_number(total) if total is not None else sum(i.qty * i.price for i in items) + fee
        order = Order(
            id=str(uuid.uuid4()),
            created_at=utc_now_iso(),
            items=items,
            total=order_total,
            payment_method=payment_method,
            channel=channel,
            delivery_fee=fee,
            delivery=DeliveryInfo.model_validate(delivery) if isinstance(delivery, dict) else delivery,
        )
        self.store.set_orders(lambda prev: [order] + prev)
        logger.info(f"Order {order.id} placed: {len(items)} line(s), total {order.total}")
        return order

    # ========== Void / restore ==========

    def void_order(self, order_id: str, restock: Optional[bool] = None, reason: Optional[str] = None) -> Optional[Order]:
        """
        Flag an order voided, optionally returning its stock.

        Unknown ids return None; an already-voided order is returned
        unchanged. Lines whose product has since been deleted are not
        restocked.
        """
        order = self.store.find_order(order_id)
        if order is None:
            logger.info(f"Void ignored, unknown order {order_id}")
            return None
        if order.voided:
            return order

        restock = self.restock_default if restock is None else bool(restock)
        if restock:
            def give_back(inv: Inventory):
                for item in order.items:
                    product = inv.find(item.shelf, item.id)
                    if product is None:
                        logger.info(f"Skipping restock of {item.name}: product no longer exists")
                        continue
                    product.stock += _item_deduction(item)
                return inv

            self.store.set_inventory(give_back)

        voided = order.model_copy(update={
            "voided": True,
            "voided_at": utc_now_iso(),
            "void_reason": reason,
            "restocked": restock,
        })
        self._replace_order(voided)
        logger.info(f"Order {order_id} voided (restock={restock})")
        return voided

    def restore_order(self, order_id: str) -> Order:
        """
        Return a voided order to active.

        Stock returned by the void is taken out again, all-or-nothing.

        Raises:
            ValidationError: restoring is disabled
            NotFoundError: unknown order id
            InsufficientStockError: stock no longer covers the order
        """
        if not self.allow_restore:
            raise ValidationError("Restoring voided orders is disabled")
        order = self.store.find_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if not order.voided:
            return order

        if order.restocked:
            needs: Dict[ProductRef, float] = {}
            names: Dict[ProductRef, str] = {}
            for item in order.items:
                if item.id == DELIVERY_FEE_ITEM_ID:
                    continue
                ref = (item.shelf, item.id)
                needs[ref] = needs.get(ref, 0.0) + _item_deduction(item)
                names.setdefault(ref, item.name)
            shortfalls = find_shortfalls(self.store.inventory, needs, names)
            if shortfalls:
                raise InsufficientStockError(shortfalls)
            self._deduct(needs)

        restored = order.model_copy(update={
            "voided": False,
            "voided_at": None,
            "void_reason": None,
            "restocked": False,
        })
        self._replace_order(restored)
        logger.info(f"Order {order_id} restored")
        return restored

    # ========== Delivery-only orders ==========

    def record_delivery_order(
        self,
        fee: Any,
        payment_method: Optional[str] = None,
        delivery: Optional[Any] = None,
    ) -> Order:
        """Record a delivery charged on its own: one fee line, no stock movement."""
        amount = to_number(fee)
        if amount <= 0:
            raise ValidationError("Delivery fee must be greater than zero")

        order = Order(
            id=str(uuid.uuid4()),
            created_at=utc_now_iso(),
            items=[OrderItem(id=DELIVERY_FEE_ITEM_ID, name="Delivery fee", qty=1, price=amount, deduct_kg=0)],
            total=amount,
            payment_method=payment_method,
            channel=Channel.DELIVERY,
            delivery_fee=amount,
            delivery=DeliveryInfo.model_validate(delivery) if isinstance(delivery, dict) else delivery,
        )
        self.store.set_orders(lambda prev: [order] + prev)
        logger.info(f"Delivery order {order.id} recorded, fee {amount}")
        return order
