"""
POS error taxonomy.

Validation errors block a mutation entirely; persistence errors are logged by
the caller and never roll back local state.
"""
from typing import List, Optional


class PosError(Exception):
    """Base class for all POS errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(PosError):
    """No active session for the supplied access token."""


class OrgResolutionError(PosError):
    """The authenticated user has no bound organization."""


class ValidationError(PosError):
    """Invalid input or a rule violation (e.g. insufficient stock)."""


class InsufficientStockError(ValidationError):
    """Checkout rejected because one or more lines lack stock."""

    def __init__(self, shortfalls: List["Shortfall"]):
        self.shortfalls = shortfalls
        lines = [s.describe() for s in shortfalls]
        super().__init__("Insufficient stock:\n" + "\n".join(lines))


class PersistenceError(PosError):
    """Remote read/write against the backend failed."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class NotFoundError(PosError):
    """Operation on an unknown order or product id."""


class Shortfall:
    """One product that cannot cover its requested deduction."""

    def __init__(self, product_id: str, name: str, required_kg: float, available_kg: Optional[float]):
        self.product_id = product_id
        self.name = name
        self.required_kg = required_kg
        # None when the product no longer exists
        self.available_kg = available_kg

    def describe(self) -> str:
        if self.available_kg is None:
            return f"{self.name}: product not found (needs {self.required_kg:.3f} kg)"
        return f"{self.name}: needs {self.required_kg:.3f} kg, only {self.available_kg:.3f} kg in stock"

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "required_kg": self.required_kg,
            "available_kg": self.available_kg,
        }
