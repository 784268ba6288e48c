"""
POS domain models: products, inventory shelves, cart lines and orders.

All models serialize to the camelCase JSON stored in the ``app_state``
documents (``pos_inventory`` / ``pos_orders``). Numeric fields are coerced
on the way in, so stale or hand-edited documents never produce NaN.
"""
from datetime import datetime
from enum import Enum
from typing import Iterator, List, Optional, Tuple, Union

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from hare_pos.utils.config import settings
from hare_pos.utils.numbers import non_negative, to_int, to_number


class Category(str, Enum):
    DRINKS = "drinks"
    BEANS = "HandDrip"


class DrinkSubKey(str, Enum):
    ESPRESSO = "espresso"
    SINGLE_ORIGIN = "singleOrigin"


class ProductKind(str, Enum):
    DRINK = "drink"
    BEAN = "bean"


class Channel(str, Enum):
    IN_STORE = "IN_STORE"
    DELIVERY = "DELIVERY"


class Shelf(str, Enum):
    """Category/sub-category partition of the inventory."""

    ESPRESSO = "espresso"
    SINGLE_ORIGIN = "singleOrigin"
    BEANS = "HandDrip"

    @property
    def kind(self) -> ProductKind:
        return ProductKind.BEAN if self is Shelf.BEANS else ProductKind.DRINK

    @property
    def category(self) -> Category:
        return Category.BEANS if self is Shelf.BEANS else Category.DRINKS

    @property
    def sub_key(self) -> Optional[DrinkSubKey]:
        if self is Shelf.BEANS:
            return None
        return DrinkSubKey(self.value)

    @classmethod
    def from_parts(cls, category: Category, sub_key: Optional[DrinkSubKey]) -> "Shelf":
        if category is Category.BEANS:
            return cls.BEANS
        if sub_key is DrinkSubKey.SINGLE_ORIGIN:
            return cls.SINGLE_ORIGIN
        return cls.ESPRESSO


def deduction_kg(kind: ProductKind, qty, usage_per_cup=None, grams=None) -> float:
    """
    Raw material consumed by a sale, in kilograms.

    Drinks consume ``qty * usagePerCup``; beans consume ``qty * grams / 1000``.
    """
    quantity = non_negative(qty)
    if kind is ProductKind.DRINK:
        usage = to_number(usage_per_cup)
        if usage <= 0:
            usage = settings.DEFAULT_USAGE_PER_CUP
        return quantity * usage
    if kind is ProductKind.BEAN:
        return quantity * non_negative(grams) / 1000
    raise ValueError(f"Unknown product kind: {kind!r}")


class WireModel(BaseModel):
    """Base model using camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ============ Products ============

class Product(WireModel):
    id: str
    name: str = ""
    stock: float = 0.0
    price: float = 0.0
    unit: str = "kg"

    @field_validator("stock", "price", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        return non_negative(value)

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value):
        return str(value or "").strip()

    @field_validator("unit", mode="before")
    @classmethod
    def _coerce_unit(cls, value):
        return "kg"


class DrinkProduct(Product):
    usage_per_cup: float = Field(default_factory=lambda: settings.DEFAULT_USAGE_PER_CUP)

    @field_validator("usage_per_cup", mode="before")
    @classmethod
    def _coerce_usage(cls, value):
        usage = to_number(value)
        return usage if usage > 0 else settings.DEFAULT_USAGE_PER_CUP

    def deduction_for(self, qty) -> float:
        return deduction_kg(ProductKind.DRINK, qty, usage_per_cup=self.usage_per_cup)


class BeanProduct(Product):
    grams: int = 0

    @field_validator("grams", mode="before")
    @classmethod
    def _coerce_grams(cls, value):
        return max(0, to_int(value))

    def deduction_for(self, qty) -> float:
        return deduction_kg(ProductKind.BEAN, qty, grams=self.grams)


AnyProduct = Union[DrinkProduct, BeanProduct]


# ============ Inventory ============

class DrinkShelves(WireModel):
    espresso: List[DrinkProduct] = Field(default_factory=list)
    single_origin: List[DrinkProduct] = Field(default_factory=list)


class Store(WireModel):
    drinks: DrinkShelves = Field(default_factory=DrinkShelves)
    hand_drip: List[BeanProduct] = Field(default_factory=list, alias="HandDrip")


class Inventory(WireModel):
    """Inventory document: ``{"store": {"drinks": {...}, "HandDrip": [...]}}``."""

    store: Store = Field(default_factory=Store)

    def products(self, shelf: Shelf) -> List[AnyProduct]:
        if shelf is Shelf.ESPRESSO:
            return self.store.drinks.espresso
        if shelf is Shelf.SINGLE_ORIGIN:
            return self.store.drinks.single_origin
        return self.store.hand_drip

    def with_products(self, shelf: Shelf, products: List[AnyProduct]) -> "Inventory":
        """Return a copy with one shelf replaced."""
        next_inv = self.model_copy(deep=True)
        if shelf is Shelf.ESPRESSO:
            next_inv.store.drinks.espresso = list(products)
        elif shelf is Shelf.SINGLE_ORIGIN:
            next_inv.store.drinks.single_origin = list(products)
        else:
            next_inv.store.hand_drip = list(products)
        return next_inv

    def find(self, shelf: Shelf, product_id: str) -> Optional[AnyProduct]:
        for product in self.products(shelf):
            if product.id == product_id:
                return product
        return None

    def iter_products(self) -> Iterator[Tuple[Shelf, AnyProduct]]:
        for shelf in Shelf:
            for product in self.products(shelf):
                yield shelf, product


# ============ Cart & Orders ============

class CartItem(WireModel):
    """Transient checkout line; never persisted."""

    id: str
    shelf: Shelf
    name: str = ""
    qty: float = 0.0
    price: float = 0.0
    usage_per_cup: Optional[float] = None
    grams: Optional[int] = None
    deduct_kg: Optional[float] = None

    @field_validator("qty", "price", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        return non_negative(value)

    @property
    def key(self) -> str:
        return f"{self.shelf.value}|{self.id}|{self.grams or 0}"


class OrderItem(WireModel):
    """Frozen snapshot of a sold line."""

    id: str
    name: str = ""
    qty: float = 0.0
    price: float = 0.0
    category: Category = Category.DRINKS
    sub_key: Optional[DrinkSubKey] = None
    grams: Optional[int] = None
    usage_per_cup: Optional[float] = None
    deduct_kg: Optional[float] = None
    sku: Optional[str] = None

    @field_validator("qty", "price", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        return non_negative(value)

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value):
        return Category.BEANS if value == Category.BEANS.value else Category.DRINKS

    @field_validator("sub_key", mode="before")
    @classmethod
    def _coerce_sub_key(cls, value):
        try:
            return DrinkSubKey(value) if value else None
        except ValueError:
            return None

    @property
    def shelf(self) -> Shelf:
        return Shelf.from_parts(self.category, self.sub_key)

    def deduction_kg(self) -> float:
        """Recompute the stock this line consumed from its snapshot attributes."""
        return deduction_kg(self.shelf.kind, self.qty, usage_per_cup=self.usage_per_cup, grams=self.grams)


class DeliveryInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    customer_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    note: Optional[str] = None
    scheduled_at: Optional[str] = None
    ship_status: Optional[str] = None


class Order(WireModel):
    id: str
    created_at: str
    items: List[OrderItem] = Field(default_factory=list)
    total: float = 0.0
    payment_method: Optional[str] = None
    voided: bool = False
    voided_at: Optional[str] = None
    void_reason: Optional[str] = None
    channel: Channel = Channel.IN_STORE
    delivery_fee: float = 0.0
    delivery: Optional[DeliveryInfo] = None
    restocked: bool = False

    @field_validator("total", "delivery_fee", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        return to_number(value)

    @field_validator("voided", "restocked", mode="before")
    @classmethod
    def _coerce_flag(cls, value):
        return bool(value)

    @field_validator("channel", mode="before")
    @classmethod
    def _coerce_channel(cls, value):
        return Channel.DELIVERY if value == Channel.DELIVERY.value else Channel.IN_STORE

    @property
    def created_datetime(self) -> Optional[datetime]:
        try:
            return date_parser.isoparse(self.created_at)
        except (TypeError, ValueError):
            return None
