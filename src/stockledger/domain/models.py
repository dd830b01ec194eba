from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


MOVEMENT_TYPES = ("stock_in", "stock_out", "adjustment", "return", "transfer")
ADJUST_DIRECTIONS = ("up", "down")
PAYMENT_STATUSES = ("paid", "not paid")
PAYMENT_METHODS = ("cash", "aba", "aclida", "wing")


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    archived: int = 0


@dataclass(frozen=True)
class Warehouse:
    id: int
    name: str
    location: Optional[str] = None
    archived: int = 0


@dataclass(frozen=True)
class Supplier:
    id: int
    name: str
    phone: Optional[str] = None
    archived: int = 0


@dataclass(frozen=True)
class Customer:
    id: int
    name: str
    phone: Optional[str] = None
    archived: int = 0


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    barcode: str
    price: float
    category_id: Optional[int]
    image: Optional[str]
    current_stock: int
    cost_recommend: float
    archived: int = 0
    version: int = 0
    created_at: str = ""


@dataclass(frozen=True)
class StockLot:
    id: int
    product_id: int
    warehouse_id: int
    unit_cost: float
    acquired_at: str
    quantity: int
    archived: int = 0
    version: int = 0
    created_at: str = ""

    @property
    def value(self) -> float:
        return self.quantity * self.unit_cost


@dataclass(frozen=True)
class StockMovement:
    id: int
    product_id: int
    movement_type: str
    quantity: int
    unit_cost: Optional[float]
    total_cost: Optional[float]
    lot_id: Optional[int]
    from_warehouse_id: Optional[int]
    to_warehouse_id: Optional[int]
    previous_stock_level: int
    new_stock_level: int
    note: Optional[str]
    reference: Optional[str]
    actor: str
    event_date: str
    created_at: str


@dataclass(frozen=True)
class LotDraw:
    """One FIFO take from a single lot."""

    lot_id: int
    unit_cost: float
    quantity: int


@dataclass(frozen=True)
class ConsumedDraw:
    lot_id: int
    unit_cost: float
    quantity: int
    movement_id: int


@dataclass(frozen=True)
class PurchaseHeader:
    id: int
    supplier_id: int
    warehouse_id: int
    reference_no: str
    purchase_date: str
    sub_total: float
    discount: float
    tax: float
    total: float
    note: Optional[str]
    actor: str
    is_deleted: int = 0
    created_at: str = ""


@dataclass(frozen=True)
class PurchaseLine:
    id: int
    purchase_id: int
    product_id: int
    quantity: int
    unit_cost: float
    line_total: float
    movement_id: Optional[int] = None


@dataclass(frozen=True)
class PurchasePayment:
    id: int
    purchase_id: int
    amount: float
    payment_method: str
    paid_at: str
    note: Optional[str]
    actor: str
    is_deleted: int = 0


@dataclass(frozen=True)
class InvoiceLine:
    """Frozen copy of what was sold from one lot, independent of later catalog edits."""

    stock_movement_id: int
    lot_id: int
    product_id: int
    product_name: str
    product_barcode: str
    product_image: str
    cost: float
    price: float
    quantity: int
    discount: float
    total_price: float

    @property
    def margin(self) -> float:
        return self.total_price - self.cost * self.quantity

    def to_dict(self) -> dict:
        return {
            "stock_movement_id": self.stock_movement_id,
            "lot_id": self.lot_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_barcode": self.product_barcode,
            "product_image": self.product_image,
            "cost": self.cost,
            "price": self.price,
            "quantity": self.quantity,
            "discount": self.discount,
            "total_price": self.total_price,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InvoiceLine":
        return cls(
            stock_movement_id=int(data["stock_movement_id"]),
            lot_id=int(data["lot_id"]),
            product_id=int(data["product_id"]),
            product_name=str(data["product_name"]),
            product_barcode=str(data["product_barcode"]),
            product_image=str(data.get("product_image") or ""),
            cost=float(data["cost"]),
            price=float(data["price"]),
            quantity=int(data["quantity"]),
            discount=float(data["discount"]),
            total_price=float(data["total_price"]),
        )


@dataclass(frozen=True)
class SaleInvoice:
    id: int
    customer_id: int
    warehouse_id: int
    items: tuple[InvoiceLine, ...]
    sub_total: float
    discount: float
    tax: float
    total: float
    payment_status: str
    payment_method: str
    actor: str
    is_archived: int = 0
    created_at: str = ""


@dataclass(frozen=True)
class ProductStock:
    product_id: int
    current_stock: int
    cost_recommend: float
    by_warehouse: dict[int, int] = field(default_factory=dict)
    inventory_value: float = 0.0


@dataclass(frozen=True)
class StockDrift:
    product_id: int
    recorded: int
    actual: int

    @property
    def delta(self) -> int:
        return self.actual - self.recorded
