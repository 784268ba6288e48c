"""
Cart Service: transient checkout lines for one session.

Lines are keyed by shelf, product id and packaging size; adding the same
product again merges into the existing line.
"""
from typing import Any, Dict, List, Optional
import math

from hare_pos.models.pos_models import AnyProduct, CartItem, Shelf, deduction_kg
from hare_pos.utils.exceptions import NotFoundError, ValidationError
from hare_pos.utils.numbers import to_number


def _positive_qty(value: Any) -> float:
    qty = to_number(value, default=-1.0)
    if qty <= 0:
        raise ValidationError(f"Quantity must be a positive number, got {value!r}")
    return qty


class Cart:
    def __init__(self):
        self._lines: Dict[str, CartItem] = {}

    def add(self, product: AnyProduct, shelf: Shelf, qty: Any = 1) -> CartItem:
        quantity = _positive_qty(qty)
        line = CartItem(
            id=product.id,
            shelf=shelf,
            name=product.name,
            qty=quantity,
            price=product.price,
            usage_per_cup=getattr(product, "usage_per_cup", None),
            grams=getattr(product, "grams", None),
            deduct_kg=product.deduction_for(quantity),
        )
        existing = self._lines.get(line.key)
        if existing is None:
            self._lines[line.key] = line
            return line.model_copy()

        existing.qty += quantity
        existing.deduct_kg = (existing.deduct_kg or 0.0) + line.deduct_kg
        return existing.model_copy()

    def change_qty(self, key: str, delta: Any) -> Optional[CartItem]:
        """Shift a line's quantity by ``delta``; the line is dropped at zero or below."""
        line = self._lines.get(key)
        if line is None:
            raise NotFoundError(f"Cart line {key} not found")
        step = to_number(delta, default=float("nan"))
        if math.isnan(step):
            raise ValidationError(f"Quantity change must be numeric, got {delta!r}")

        qty = line.qty + step
        if qty <= 0:
            del self._lines[key]
            return None
        line.qty = qty
        line.deduct_kg = deduction_kg(line.shelf.kind, qty, usage_per_cup=line.usage_per_cup, grams=line.grams)
        return line.model_copy()

    def remove(self, key: str) -> bool:
        return self._lines.pop(key, None) is not None

    def clear(self):
        self._lines.clear()

    @property
    def items(self) -> List[CartItem]:
        return [line.model_copy() for line in self._lines.values()]

    @property
    def total(self) -> float:
        return sum(line.qty * line.price for line in self._lines.values())

    def __len__(self) -> int:
        return len(self._lines)
