from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from stockledger.domain.errors import NotFoundError, ValidationError
from stockledger.domain.models import PAYMENT_METHODS, PurchaseHeader, PurchaseLine, PurchasePayment
from stockledger.repositories.unit_of_work import SqliteUnitOfWork
from stockledger.services.stock_engine import StockEngine
from stockledger.services.validation import actor_id, event_date, money, positive_qty, required_id

log = logging.getLogger("stockledger.purchases")


def coalesce_items(items: Iterable[Mapping]) -> list[tuple[int, float, int]]:
    """Validate purchase items and merge the ones sharing (product, unit cost).

    Returns ``(product_id, unit_cost, quantity)`` in first-seen order.
    """
    merged: dict[tuple[int, float], int] = {}
    for it in items:
        product_id = required_id(it.get("product_id"), "Product")
        qty = positive_qty(it.get("quantity"))
        unit_cost = money(it.get("unit_cost"), "Unit cost")
        key = (product_id, unit_cost)
        merged[key] = merged.get(key, 0) + qty
    return [(pid, cost, qty) for (pid, cost), qty in merged.items()]


class PurchaseService:
    def __init__(self, repo, engine: StockEngine | None = None):
        self.repo = repo
        self.engine = engine or StockEngine(repo)

    def create_purchase(self, header: Mapping, items: Iterable[Mapping]) -> int:
        """
        header: {supplier_id, warehouse_id, reference_no, purchase_date?, discount?, tax?, note?, actor}
        items:  [{product_id, quantity, unit_cost}]

        Every item is received into the destination warehouse; header, items,
        lots, movements and product aggregates commit together or not at all.
        """
        lines = coalesce_items(list(items))
        if not lines:
            raise ValidationError("Purchase has no items.")

        supplier_id = required_id(header.get("supplier_id"), "Supplier")
        warehouse_id = required_id(header.get("warehouse_id"), "Warehouse")
        reference_no = str(header.get("reference_no") or "").strip()
        if not reference_no:
            raise ValidationError("Reference number is required.")
        discount = money(header.get("discount", 0), "Discount")
        tax = money(header.get("tax", 0), "Tax")
        note = header.get("note")
        actor = actor_id(header.get("actor"))
        dated = event_date(header.get("purchase_date"), "Purchase date")

        sub_total = round(sum(cost * qty for _pid, cost, qty in lines), 4)
        total = round(sub_total - discount + tax, 4)
        if total < 0:
            raise ValidationError("Discount cannot exceed sub total plus tax.")

        def apply(uow: SqliteUnitOfWork) -> int:
            if not uow.supplier_exists(supplier_id):
                raise NotFoundError("supplier", supplier_id)
            now = self.engine.timestamp()
            purchase_date = dated or now

            purchase_id = uow.insert_purchase(
                supplier_id=supplier_id,
                warehouse_id=warehouse_id,
                reference_no=reference_no,
                purchase_date=purchase_date,
                sub_total=sub_total,
                discount=discount,
                tax=tax,
                total=total,
                note=note,
                actor=actor,
                created_at=now,
            )
            for product_id, unit_cost, qty in lines:
                movement_id = self.engine.receive(
                    uow,
                    product_id,
                    warehouse_id,
                    qty,
                    unit_cost,
                    actor=actor,
                    note=f"Purchase from PO: {reference_no}",
                    reference=reference_no,
                    event_date=purchase_date,
                    acquired_at=purchase_date,
                )
                uow.insert_purchase_item(purchase_id, product_id, qty, unit_cost, movement_id)
            return purchase_id

        purchase_id = self.engine.run(apply, op="create_purchase")
        log.info(
            "purchase_created purchase_id=%s ref=%s items=%s total=%.2f actor=%s",
            purchase_id, reference_no, len(lines), total, actor,
        )
        return int(purchase_id)

    def get_purchase(self, purchase_id: int) -> PurchaseHeader:
        p = self.repo.get_purchase(int(purchase_id))
        if not p:
            raise NotFoundError("purchase", purchase_id)
        return p

    def list_purchases(self, include_deleted: bool = False) -> list[PurchaseHeader]:
        return self.repo.list_purchases(include_deleted)

    def purchase_items_for_purchase(self, purchase_id: int) -> list[PurchaseLine]:
        return self.repo.purchase_items_for_purchase(int(purchase_id))

    def delete_purchase(self, purchase_id: int, actor: str) -> None:
        """Soft delete. Lots and movements created by the purchase stay as they are."""
        actor = actor_id(actor)
        if not self.repo.soft_delete_purchase(int(purchase_id)):
            raise NotFoundError("purchase", purchase_id)
        log.warning("purchase_deleted purchase_id=%s actor=%s stock_reversed=no", purchase_id, actor)

    # ---------- Payments ----------
    def add_payment(
        self,
        purchase_id: int,
        amount: float,
        payment_method: str,
        actor: str,
        paid_at: Optional[str] = None,
        note: Optional[str] = None,
    ) -> int:
        purchase_id = required_id(purchase_id, "Purchase")
        amount = money(amount, "Amount", allow_zero=False)
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Payment method must be one of {PAYMENT_METHODS}.")
        actor = actor_id(actor)
        paid_at = event_date(paid_at, "Payment date")

        # balance is read and the payment written under the same write lock
        def apply(uow: SqliteUnitOfWork) -> int:
            purchase = uow.get_purchase(purchase_id)
            if purchase is None:
                raise NotFoundError("purchase", purchase_id)
            if purchase.is_deleted:
                raise ValidationError("Cannot pay a deleted purchase.")
            balance = round(purchase.total - uow.paid_total(purchase_id), 4)
            if amount > balance + 1e-9:
                raise ValidationError(f"Payment exceeds outstanding balance. Balance: {balance:.2f}")
            return uow.insert_purchase_payment(
                purchase_id, amount, payment_method, paid_at or self.engine.timestamp(), note, actor
            )

        pay_id = self.engine.run(apply, op="add_payment")
        log.info("purchase_payment_added purchase_id=%s amount=%.2f method=%s actor=%s", purchase_id, amount, payment_method, actor)
        return int(pay_id)

    def list_payments(self, purchase_id: Optional[int] = None) -> list[PurchasePayment]:
        return self.repo.list_purchase_payments(purchase_id)

    def purchase_balance(self, purchase_id: int) -> float:
        purchase = self.get_purchase(purchase_id)
        paid = sum(p.amount for p in self.repo.list_purchase_payments(purchase.id))
        return round(purchase.total - paid, 4)
