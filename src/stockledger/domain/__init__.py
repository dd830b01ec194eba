from .models import (
    Product,
    StockLot,
    StockMovement,
    LotDraw,
    PurchaseHeader,
    PurchaseLine,
    SaleInvoice,
    InvoiceLine,
)
from .errors import (
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    ConcurrencyError,
)

__all__ = [
    "Product",
    "StockLot",
    "StockMovement",
    "LotDraw",
    "PurchaseHeader",
    "PurchaseLine",
    "SaleInvoice",
    "InvoiceLine",
    "ValidationError",
    "NotFoundError",
    "InsufficientStockError",
    "ConcurrencyError",
]
