from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from stockledger.domain.errors import NotFoundError, ValidationError
from stockledger.domain.models import PAYMENT_METHODS, PAYMENT_STATUSES, InvoiceLine, SaleInvoice
from stockledger.repositories.unit_of_work import SqliteUnitOfWork
from stockledger.services.stock_engine import StockEngine
from stockledger.services.validation import actor_id, money, positive_qty, required_id

log = logging.getLogger("stockledger.sales")


class SalesService:
    def __init__(self, repo, engine: StockEngine | None = None):
        self.repo = repo
        self.engine = engine or StockEngine(repo)

    def create_sale(
        self,
        customer_id: int,
        warehouse_id: int,
        lines: Iterable[Mapping],
        discount: float = 0.0,
        tax: float = 0.0,
        payment_status: str = "paid",
        payment_method: str = "cash",
        actor: str = "",
    ) -> int:
        """
        lines: [{product_id, quantity, price, discount?}]  (discount is per unit)

        Each line is drawn FIFO from the warehouse; every lot draw becomes one
        invoice line carrying that lot's cost. Nothing is written unless every
        line can be fulfilled.
        """
        lines = list(lines)
        if not lines:
            raise ValidationError("Cart is empty.")

        customer_id = required_id(customer_id, "Customer")
        warehouse_id = required_id(warehouse_id, "Warehouse")
        discount = money(discount, "Discount")
        tax = money(tax, "Tax")
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"Payment status must be one of {PAYMENT_STATUSES}.")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Payment method must be one of {PAYMENT_METHODS}.")
        actor = actor_id(actor)

        requests = []
        for ln in lines:
            product_id = required_id(ln.get("product_id"), "Product")
            qty = positive_qty(ln.get("quantity"))
            price = money(ln.get("price"), "Unit price", allow_zero=False)
            unit_discount = money(ln.get("discount", 0), "Line discount")
            if unit_discount > price:
                raise ValidationError("Line discount cannot exceed unit price.")
            requests.append((product_id, qty, price, unit_discount))

        def apply(uow: SqliteUnitOfWork) -> tuple[int, float, int]:
            if not uow.customer_exists(customer_id):
                raise NotFoundError("customer", customer_id)

            invoice_lines: list[InvoiceLine] = []
            sub_total = 0.0
            for product_id, qty, price, unit_discount in requests:
                draws = self.engine.consume(
                    uow,
                    product_id,
                    warehouse_id,
                    qty,
                    actor=actor,
                    note=f"Sale to customer {customer_id}",
                )
                # snapshot taken after the draw; only descriptive fields are used
                product = uow.get_product(product_id)
                for d in draws:
                    invoice_lines.append(
                        InvoiceLine(
                            stock_movement_id=d.movement_id,
                            lot_id=d.lot_id,
                            product_id=product.id,
                            product_name=product.name,
                            product_barcode=product.barcode,
                            product_image=product.image or "",
                            cost=d.unit_cost,
                            price=price,
                            quantity=d.quantity,
                            discount=unit_discount,
                            total_price=round(price * d.quantity - unit_discount * d.quantity, 4),
                        )
                    )
                    sub_total += price * d.quantity

            sub_total = round(sub_total, 4)
            total = round(sub_total - discount + tax, 4)
            if total < 0:
                raise ValidationError("Discount cannot exceed sub total plus tax.")
            invoice_id = uow.insert_sale_invoice(
                customer_id=customer_id,
                warehouse_id=warehouse_id,
                items=invoice_lines,
                sub_total=sub_total,
                discount=discount,
                tax=tax,
                total=total,
                payment_status=payment_status,
                payment_method=payment_method,
                actor=actor,
                created_at=self.engine.timestamp(),
            )
            return invoice_id, total, len(invoice_lines)

        invoice_id, total, n_lines = self.engine.run(apply, op="create_sale")
        log.info(
            "sale_created invoice_id=%s lines=%s draws=%s total=%.2f actor=%s",
            invoice_id, len(requests), n_lines, total, actor,
        )
        return int(invoice_id)

    def get_invoice(self, invoice_id: int) -> SaleInvoice:
        inv = self.repo.get_sale_invoice(int(invoice_id))
        if not inv:
            raise NotFoundError("sale invoice", invoice_id)
        return inv

    def list_invoices(self, include_archived: bool = False) -> list[SaleInvoice]:
        return self.repo.list_sale_invoices(include_archived)

    def invoices_between(self, start_iso: str, end_iso: str) -> list[SaleInvoice]:
        return self.repo.sale_invoices_between(start_iso, end_iso)

    def archive_invoice(self, invoice_id: int, actor: Optional[str] = None) -> None:
        """Hide the invoice. Lots and movements drawn by the sale are not restored."""
        if not self.repo.archive_sale_invoice(int(invoice_id)):
            raise NotFoundError("sale invoice", invoice_id)
        log.warning("sale_archived invoice_id=%s actor=%s stock_reversed=no", invoice_id, actor)
