"""
Inventory Normalization: reshape and deduplicate raw inventory documents.

Any stored shape (current, legacy flat, partially missing) is turned into a
well-formed Inventory in which no shelf holds two products with the same
normalized name (and, for beans, the same packaging size).
"""
from enum import Enum
from typing import Any, Dict, List, Optional
import logging
import uuid

from pydantic import ValidationError as PydanticValidationError

from hare_pos.models.pos_models import (
    BeanProduct,
    DrinkProduct,
    DrinkShelves,
    Inventory,
    Order,
    ProductKind,
    Shelf,
    Store,
)
from hare_pos.utils.config import settings
from hare_pos.utils.numbers import to_int

logger = logging.getLogger(__name__)

# Namespace for ids derived from dedup keys when a stored product has none
_ID_NAMESPACE = uuid.UUID("6f1d2c4e-8a57-4f0b-9a43-2b7c1e5d9f10")


class DedupePolicy(str, Enum):
    """Which duplicate to keep when two products share a dedup key."""

    LOWER_STOCK = "lower_stock"  # the post-sale copy usually holds less stock
    FIRST_SEEN = "first_seen"


def product_key(shelf: Shelf, name: Any, grams: Any = 0) -> str:
    """Dedup key: category|sub-category|lower(trim(name))|grams (grams is 0 for drinks)."""
    clean_name = str(name or "").strip().lower()
    size = to_int(grams) if shelf.kind is ProductKind.BEAN else 0
    sub_key = shelf.sub_key.value if shelf.sub_key else ""
    return f"{shelf.category.value}|{sub_key}|{clean_name}|{size}"


def _raw_shelves(raw: Any) -> Dict[Shelf, List[Any]]:
    """Pull the three shelf lists out of any supported document shape."""
    if isinstance(raw, Inventory):
        raw = raw.to_wire()
    if not isinstance(raw, dict):
        return {shelf: [] for shelf in Shelf}

    # Current shape nests everything under "store"; legacy documents are flat
    root = raw.get("store") if isinstance(raw.get("store"), dict) else raw
    drinks = root.get("drinks") if isinstance(root.get("drinks"), dict) else {}

    def as_list(value):
        return value if isinstance(value, list) else []

    return {
        Shelf.ESPRESSO: as_list(drinks.get("espresso")),
        Shelf.SINGLE_ORIGIN: as_list(drinks.get("singleOrigin")),
        Shelf.BEANS: as_list(root.get("HandDrip")),
    }


def _coerce_product(shelf: Shelf, entry: Any):
    if hasattr(entry, "model_dump"):
        entry = entry.model_dump(by_alias=True)
    if not isinstance(entry, dict):
        return None

    data = dict(entry)
    if not data.get("id"):
        key = product_key(shelf, data.get("name"), data.get("grams"))
        data["id"] = str(uuid.uuid5(_ID_NAMESPACE, key))
    else:
        data["id"] = str(data["id"])

    model = BeanProduct if shelf.kind is ProductKind.BEAN else DrinkProduct
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        logger.warning(f"Dropping malformed {shelf.value} entry {data.get('id')}: {e.error_count()} error(s)")
        return None


def dedupe_products(shelf: Shelf, entries: List[Any], policy: DedupePolicy = DedupePolicy.LOWER_STOCK) -> list:
    """Collapse duplicates within one shelf, keeping the first-seen position."""
    picked: Dict[str, Any] = {}
    for entry in entries:
        product = _coerce_product(shelf, entry)
        if product is None:
            continue
        key = product_key(shelf, product.name, getattr(product, "grams", 0))
        kept = picked.get(key)
        if kept is None:
            picked[key] = product
        elif policy is DedupePolicy.LOWER_STOCK and product.stock < kept.stock:
            picked[key] = product
    return list(picked.values())


def normalize_inventory(raw: Any, policy: Optional[DedupePolicy] = None) -> Inventory:
    """
    Return a well-formed, duplicate-free Inventory for any raw snapshot.

    Pure and idempotent: ``normalize_inventory(normalize_inventory(x)) ==
    normalize_inventory(x)``.

    Args:
        raw: Inventory model, stored JSON document, legacy flat dict, or junk
        policy: Duplicate tie-break; defaults to ``settings.DEDUPE_POLICY``

    Returns:
        Inventory with all three shelves present
    """
    policy = policy or DedupePolicy(settings.DEDUPE_POLICY)
    shelves = _raw_shelves(raw)

    return Inventory(
        store=Store(
            drinks=DrinkShelves(
                espresso=dedupe_products(Shelf.ESPRESSO, shelves[Shelf.ESPRESSO], policy),
                single_origin=dedupe_products(Shelf.SINGLE_ORIGIN, shelves[Shelf.SINGLE_ORIGIN], policy),
            ),
            hand_drip=dedupe_products(Shelf.BEANS, shelves[Shelf.BEANS], policy),
        )
    )


def parse_orders(raw: Any) -> List[Order]:
    """Parse an orders document; anything but a list yields an empty list."""
    if not isinstance(raw, list):
        return []

    orders: List[Order] = []
    for entry in raw:
        if isinstance(entry, Order):
            orders.append(entry.model_copy(deep=True))
            continue
        try:
            orders.append(Order.model_validate(entry))
        except PydanticValidationError as e:
            ident = entry.get("id") if isinstance(entry, dict) else None
            logger.warning(f"Dropping malformed order {ident}: {e.error_count()} error(s)")
    return orders
