"""API models using Pydantic.

Request/response schemas for the session, inventory, cart, order and report
endpoints. Inventory and orders are returned in their stored camelCase shape.
"""
from pydantic import BaseModel, Field
from typing import List, Optional

from hare_pos.models.pos_models import Channel, DeliveryInfo, Shelf


# --- Session ---

class SessionResponse(BaseModel):
    session_id: str
    org_id: str
    user_id: str


# --- Inventory ---

class ProductCreate(BaseModel):
    shelf: Shelf
    name: str
    stock: float = Field(0.0, ge=0)
    price: float = Field(0.0, ge=0)
    usage_per_cup: Optional[float] = Field(None, ge=0)  # drinks only
    grams: Optional[int] = Field(None, ge=0)  # beans only


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    stock: Optional[float] = Field(None, ge=0)
    price: Optional[float] = Field(None, ge=0)
    usage_per_cup: Optional[float] = Field(None, ge=0)
    grams: Optional[int] = Field(None, ge=0)


class StockAdjust(BaseModel):
    delta_kg: float


# --- Cart ---

class CartAdd(BaseModel):
    shelf: Shelf
    product_id: str
    qty: float = Field(1, gt=0)


class CartQtyChange(BaseModel):
    delta: float


# --- Orders ---

class CheckoutRequest(BaseModel):
    payment_method: Optional[str] = None
    total: Optional[float] = Field(None, ge=0)
    channel: Channel = Channel.IN_STORE
    delivery: Optional[DeliveryInfo] = None
    delivery_fee: float = Field(0.0, ge=0)


class VoidRequest(BaseModel):
    restock: Optional[bool] = None
    reason: Optional[str] = None


class DeliveryOrderRequest(BaseModel):
    fee: float = Field(..., gt=0)
    payment_method: Optional[str] = None
    delivery: Optional[DeliveryInfo] = None


class ShipStatusRequest(BaseModel):
    ship_status: str = Field(..., pattern="^(PENDING|CLOSED)$")


class OrderPageResponse(BaseModel):
    rows: List[dict] = []
    count: int = 0
    total_amount: float = 0.0


class ErrorResponse(BaseModel):
    detail: str
    shortfalls: Optional[List[dict]] = None
