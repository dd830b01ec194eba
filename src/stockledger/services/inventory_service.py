from __future__ import annotations

import logging
from collections import defaultdict
from typing import Optional

from stockledger.domain.errors import NotFoundError, ValidationError
from stockledger.domain.models import (
    ADJUST_DIRECTIONS,
    MOVEMENT_TYPES,
    Product,
    ProductStock,
    StockDrift,
    StockLot,
    StockMovement,
)
from stockledger.services.stock_engine import StockEngine
from stockledger.services.validation import actor_id, money, positive_qty, required_id

log = logging.getLogger("stockledger.stock")


class InventoryService:
    def __init__(self, repo, engine: StockEngine | None = None):
        self.repo = repo
        self.engine = engine or StockEngine(repo)

    # ---------- Catalog ----------
    def add_product(
        self,
        name: str,
        barcode: str,
        price: float,
        category_id: Optional[int] = None,
        image: Optional[str] = None,
    ) -> int:
        name = (name or "").strip()
        barcode = (barcode or "").strip()
        if not name or not barcode:
            raise ValidationError("Name and barcode are required.")
        price = money(price, "Price")
        if category_id is not None and not self.repo.get_category(int(category_id)):
            raise NotFoundError("category", category_id)
        if self.repo.get_product_by_barcode(barcode):
            raise ValidationError(f"Barcode already in use: {barcode}")
        return self.repo.add_product(name, barcode, price, category_id, image)

    def get_product(self, product_id: int) -> Product:
        p = self.repo.get_product_by_id(int(product_id))
        if not p:
            raise NotFoundError("product", product_id)
        return p

    def get_product_by_barcode(self, barcode: str) -> Product:
        p = self.repo.get_product_by_barcode((barcode or "").strip())
        if not p:
            raise NotFoundError("product", barcode)
        return p

    def list_products(self) -> list[Product]:
        return self.repo.list_products()

    def update_product(
        self,
        product_id: int,
        name: str,
        price: float,
        category_id: Optional[int] = None,
        image: Optional[str] = None,
    ) -> None:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required.")
        price = money(price, "Price")
        updated = self.repo.update_product_details(int(product_id), name, price, category_id, image)
        if not updated:
            raise NotFoundError("product", product_id)

    def archive_product(self, product_id: int) -> None:
        if not self.repo.archive_product(int(product_id)):
            raise NotFoundError("product", product_id)

    def archive_lot(self, lot_id: int) -> None:
        lot = self.repo.get_lot(int(lot_id))
        if not lot or lot.archived:
            raise NotFoundError("stock lot", lot_id)
        if lot.quantity > 0:
            raise ValidationError(f"Only empty lots can be archived. Lot {lot_id} holds {lot.quantity}.")
        if not self.repo.archive_empty_lot(int(lot_id)):
            raise NotFoundError("stock lot", lot_id)

    # ---------- Stock operations ----------
    def receive_stock(
        self,
        product_id: int,
        warehouse_id: int,
        qty: int,
        unit_cost: float,
        note: Optional[str],
        actor: str,
    ) -> int:
        product_id = required_id(product_id, "Product")
        warehouse_id = required_id(warehouse_id, "Warehouse")
        qty = positive_qty(qty)
        unit_cost = money(unit_cost, "Unit cost")
        actor = actor_id(actor)

        movement_id = self.engine.run(
            lambda uow: self.engine.receive(uow, product_id, warehouse_id, qty, unit_cost, actor=actor, note=note),
            op="receive",
        )
        log.info(
            "stock_received product_id=%s warehouse_id=%s qty=%s unit_cost=%.4f movement_id=%s actor=%s",
            product_id, warehouse_id, qty, unit_cost, movement_id, actor,
        )
        return movement_id

    def return_stock(
        self,
        product_id: int,
        warehouse_id: int,
        qty: int,
        unit_cost: float,
        note: Optional[str],
        actor: str,
    ) -> int:
        """Put returned units back on the shelf as a lot at ``unit_cost``."""
        product_id = required_id(product_id, "Product")
        warehouse_id = required_id(warehouse_id, "Warehouse")
        qty = positive_qty(qty)
        unit_cost = money(unit_cost, "Unit cost")
        actor = actor_id(actor)

        movement_id = self.engine.run(
            lambda uow: self.engine.receive(
                uow,
                product_id,
                warehouse_id,
                qty,
                unit_cost,
                actor=actor,
                note=note or "Customer return",
                movement_type="return",
                update_cost_recommend=False,
            ),
            op="return",
        )
        log.info("stock_returned product_id=%s warehouse_id=%s qty=%s movement_id=%s actor=%s", product_id, warehouse_id, qty, movement_id, actor)
        return movement_id

    def consume_stock(
        self,
        product_id: int,
        warehouse_id: int,
        qty: int,
        note: Optional[str],
        actor: str,
    ) -> list[int]:
        product_id = required_id(product_id, "Product")
        warehouse_id = required_id(warehouse_id, "Warehouse")
        qty = positive_qty(qty)
        actor = actor_id(actor)

        draws = self.engine.run(
            lambda uow: self.engine.consume(uow, product_id, warehouse_id, qty, actor=actor, note=note),
            op="consume",
        )
        movement_ids = [d.movement_id for d in draws]
        log.info(
            "stock_consumed product_id=%s warehouse_id=%s qty=%s lots=%s actor=%s",
            product_id, warehouse_id, qty, len(draws), actor,
        )
        return movement_ids

    def transfer_stock(
        self,
        product_id: int,
        from_warehouse_id: int,
        to_warehouse_id: int,
        qty: int,
        note: Optional[str],
        actor: str,
    ) -> list[int]:
        product_id = required_id(product_id, "Product")
        from_warehouse_id = required_id(from_warehouse_id, "Source warehouse")
        to_warehouse_id = required_id(to_warehouse_id, "Destination warehouse")
        if from_warehouse_id == to_warehouse_id:
            raise ValidationError("Source and destination warehouses must differ.")
        qty = positive_qty(qty)
        actor = actor_id(actor)

        movement_ids = self.engine.run(
            lambda uow: self.engine.transfer(
                uow, product_id, from_warehouse_id, to_warehouse_id, qty, actor=actor, note=note
            ),
            op="transfer",
        )
        log.info(
            "stock_transferred product_id=%s from=%s to=%s qty=%s movements=%s actor=%s",
            product_id, from_warehouse_id, to_warehouse_id, qty, len(movement_ids), actor,
        )
        return movement_ids

    def adjust_stock(
        self,
        product_id: int,
        warehouse_id: int,
        direction: str,
        qty: int,
        unit_cost: Optional[float] = None,
        note: Optional[str] = None,
        actor: str = "",
    ) -> int:
        product_id = required_id(product_id, "Product")
        warehouse_id = required_id(warehouse_id, "Warehouse")
        if direction not in ADJUST_DIRECTIONS:
            raise ValidationError(f"Adjustment direction must be one of {ADJUST_DIRECTIONS}.")
        qty = positive_qty(qty)
        cost = None if unit_cost is None else money(unit_cost, "Unit cost")
        actor = actor_id(actor)

        movement_id = self.engine.run(
            lambda uow: self.engine.adjust(uow, product_id, warehouse_id, direction, qty, cost, actor=actor, note=note),
            op="adjust",
        )
        log.info(
            "stock_adjusted product_id=%s warehouse_id=%s direction=%s qty=%s movement_id=%s actor=%s",
            product_id, warehouse_id, direction, qty, movement_id, actor,
        )
        return int(movement_id)

    # ---------- Read accessors ----------
    def list_lots(
        self,
        product_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        include_archived: bool = False,
    ) -> list[StockLot]:
        return self.repo.list_lots(product_id, warehouse_id, include_archived)

    def list_movements(self, product_id: Optional[int] = None, movement_type: Optional[str] = None) -> list[StockMovement]:
        if movement_type is not None and movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"Unknown movement type: {movement_type}")
        return self.repo.list_movements(product_id, movement_type)

    def get_product_aggregate(self, product_id: int) -> ProductStock:
        product = self.repo.get_product_by_id(int(product_id), include_archived=True)
        if not product:
            raise NotFoundError("product", product_id)

        by_warehouse: dict[int, int] = defaultdict(int)
        value = 0.0
        for lot in self.repo.list_lots(product_id=product.id):
            by_warehouse[lot.warehouse_id] += lot.quantity
            value += lot.value
        return ProductStock(
            product_id=product.id,
            current_stock=product.current_stock,
            cost_recommend=product.cost_recommend,
            by_warehouse=dict(by_warehouse),
            inventory_value=round(value, 4),
        )

    # ---------- Reconciliation ----------
    def reconcile(self, product_id: Optional[int] = None) -> list[StockDrift]:
        return self.repo.stock_drift(product_id)

    def repair_product_stock(self, product_id: int) -> StockDrift:
        drift = self.engine.run(lambda uow: self.engine.repair(uow, int(product_id)), op="repair")
        if drift.delta:
            log.warning(
                "stock_repaired product_id=%s recorded=%s actual=%s",
                drift.product_id, drift.recorded, drift.actual,
            )
        return drift
