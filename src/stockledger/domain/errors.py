from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")


class InsufficientStockError(AppError):
    def __init__(
        self,
        product_id: int,
        warehouse_id: int,
        available: int,
        requested: int,
        product_name: Optional[str] = None,
    ):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.available = int(available)
        self.requested = int(requested)
        self.product_name = product_name
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {self.available}, Requested: {self.requested}"
        )


class ConcurrencyConflict(AppError):
    """A conditional write found the row changed since it was read."""


class ConcurrencyError(AppError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__("Operation failed, please retry.")


class LedgerIntegrityError(AppError):
    """Aggregate stock and lot quantities disagree; reconciliation is needed."""
