from __future__ import annotations

from typing import Optional

from stockledger.domain.models import StockMovement


class TransferService:
    def __init__(self, repo, inventory_service):
        self.repo = repo
        self.inventory = inventory_service

    def create_transfer(
        self,
        product_id: int,
        from_warehouse_id: int,
        to_warehouse_id: int,
        qty: int,
        note: Optional[str],
        actor: str,
    ) -> list[int]:
        return self.inventory.transfer_stock(product_id, from_warehouse_id, to_warehouse_id, qty, note, actor)

    def list_transfers(self, product_id: Optional[int] = None) -> list[StockMovement]:
        return self.repo.list_movements(product_id, "transfer")
