from __future__ import annotations

import json
import sqlite3
from typing import Iterable, Optional, Protocol

from stockledger.domain.errors import ConcurrencyConflict
from stockledger.domain.models import InvoiceLine, Product, PurchaseHeader, StockLot
from stockledger.repositories.sqlite_repo import (
    LOT_COLUMNS,
    PRODUCT_COLUMNS,
    PURCHASE_COLUMNS,
    SqliteRepository,
    lot_from_row,
    product_from_row,
    purchase_from_row,
)


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def get_product(self, product_id: int) -> Optional[Product]: ...
    def warehouse_exists(self, warehouse_id: int) -> bool: ...
    def supplier_exists(self, supplier_id: int) -> bool: ...
    def customer_exists(self, customer_id: int) -> bool: ...
    def open_lots(self, product_id: int, warehouse_id: int) -> list[StockLot]: ...
    def find_lot(self, product_id: int, warehouse_id: int, unit_cost: float) -> Optional[StockLot]: ...
    def lot_total(self, product_id: int) -> int: ...
    def insert_lot(self, product_id: int, warehouse_id: int, unit_cost: float, acquired_at: str, quantity: int, created_at: str) -> int: ...
    def set_lot_quantity(self, lot: StockLot, quantity: int) -> StockLot: ...
    def set_product_stock(self, product: Product, current_stock: int, cost_recommend: Optional[float] = None) -> Product: ...
    def insert_movement(self, **fields) -> int: ...


class SqliteUnitOfWork:
    """One write transaction on one connection.

    ``BEGIN IMMEDIATE`` takes SQLite's reserved lock up front, so two units of
    work never interleave their read-then-write on the same rows. Product and
    lot writes are additionally conditioned on the ``version`` read earlier in
    the same transaction; a miss raises ``ConcurrencyConflict``.
    """

    def __init__(self, repo: SqliteRepository):
        self.repo = repo
        self._conn: Optional[sqlite3.Connection] = None
        self._cur: Optional[sqlite3.Cursor] = None

    def __enter__(self) -> "SqliteUnitOfWork":
        conn = self.repo._tx_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error:
            conn.close()
            raise
        self._conn = conn
        self._cur = conn.cursor()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn = self._conn
        self._conn = None
        self._cur = None
        if conn is None:
            return None
        try:
            if exc_type is None:
                conn.execute("COMMIT")
            elif conn.in_transaction:
                conn.execute("ROLLBACK")
        finally:
            conn.close()
        return None

    @property
    def cur(self) -> sqlite3.Cursor:
        if self._cur is None:
            raise RuntimeError("Unit of work is not active.")
        return self._cur

    # ---------- Reads ----------
    def get_product(self, product_id: int) -> Optional[Product]:
        self.cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id=?", (int(product_id),))
        r = self.cur.fetchone()
        return product_from_row(r) if r else None

    def _live_row_exists(self, table: str, row_id: int) -> bool:
        self.cur.execute(f"SELECT 1 FROM {table} WHERE id=? AND archived=0", (int(row_id),))
        return self.cur.fetchone() is not None

    def warehouse_exists(self, warehouse_id: int) -> bool:
        return self._live_row_exists("warehouses", warehouse_id)

    def supplier_exists(self, supplier_id: int) -> bool:
        return self._live_row_exists("suppliers", supplier_id)

    def customer_exists(self, customer_id: int) -> bool:
        return self._live_row_exists("customers", customer_id)

    def open_lots(self, product_id: int, warehouse_id: int) -> list[StockLot]:
        self.cur.execute(
            f"""
            SELECT {LOT_COLUMNS}
            FROM stock_lots
            WHERE product_id=? AND warehouse_id=? AND archived=0
            ORDER BY acquired_at, id
            """,
            (int(product_id), int(warehouse_id)),
        )
        return [lot_from_row(r) for r in self.cur.fetchall()]

    def find_lot(self, product_id: int, warehouse_id: int, unit_cost: float) -> Optional[StockLot]:
        self.cur.execute(
            f"""
            SELECT {LOT_COLUMNS}
            FROM stock_lots
            WHERE product_id=? AND warehouse_id=? AND unit_cost=? AND archived=0
            """,
            (int(product_id), int(warehouse_id), float(unit_cost)),
        )
        r = self.cur.fetchone()
        return lot_from_row(r) if r else None

    def lot_total(self, product_id: int) -> int:
        self.cur.execute(
            "SELECT COALESCE(SUM(quantity), 0) FROM stock_lots WHERE product_id=? AND archived=0",
            (int(product_id),),
        )
        return int(self.cur.fetchone()[0])

    def get_purchase(self, purchase_id: int) -> Optional[PurchaseHeader]:
        self.cur.execute(f"SELECT {PURCHASE_COLUMNS} FROM purchases WHERE id=?", (int(purchase_id),))
        r = self.cur.fetchone()
        return purchase_from_row(r) if r else None

    def paid_total(self, purchase_id: int) -> float:
        self.cur.execute(
            "SELECT COALESCE(SUM(amount), 0) FROM purchase_payments WHERE purchase_id=? AND is_deleted=0",
            (int(purchase_id),),
        )
        return float(self.cur.fetchone()[0])

    # ---------- Conditional writes ----------
    def insert_lot(
        self,
        product_id: int,
        warehouse_id: int,
        unit_cost: float,
        acquired_at: str,
        quantity: int,
        created_at: str,
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO stock_lots (product_id, warehouse_id, unit_cost, acquired_at, quantity, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (int(product_id), int(warehouse_id), float(unit_cost), acquired_at, int(quantity), created_at),
        )
        return int(self.cur.lastrowid)

    def set_lot_quantity(self, lot: StockLot, quantity: int) -> StockLot:
        self.cur.execute(
            """
            UPDATE stock_lots
            SET quantity=?, version=version+1
            WHERE id=? AND version=? AND archived=0
            """,
            (int(quantity), lot.id, lot.version),
        )
        if self.cur.rowcount != 1:
            raise ConcurrencyConflict(f"Stock lot {lot.id} changed since it was read.")
        return StockLot(
            id=lot.id,
            product_id=lot.product_id,
            warehouse_id=lot.warehouse_id,
            unit_cost=lot.unit_cost,
            acquired_at=lot.acquired_at,
            quantity=int(quantity),
            archived=lot.archived,
            version=lot.version + 1,
            created_at=lot.created_at,
        )

    def set_product_stock(
        self,
        product: Product,
        current_stock: int,
        cost_recommend: Optional[float] = None,
    ) -> Product:
        cost = product.cost_recommend if cost_recommend is None else float(cost_recommend)
        self.cur.execute(
            """
            UPDATE products
            SET current_stock=?, cost_recommend=?, version=version+1
            WHERE id=? AND version=?
            """,
            (int(current_stock), cost, product.id, product.version),
        )
        if self.cur.rowcount != 1:
            raise ConcurrencyConflict(f"Product {product.id} changed since it was read.")
        return Product(
            id=product.id,
            name=product.name,
            barcode=product.barcode,
            price=product.price,
            category_id=product.category_id,
            image=product.image,
            current_stock=int(current_stock),
            cost_recommend=cost,
            archived=product.archived,
            version=product.version + 1,
            created_at=product.created_at,
        )

    def insert_movement(
        self,
        *,
        product_id: int,
        movement_type: str,
        quantity: int,
        previous_stock_level: int,
        new_stock_level: int,
        actor: str,
        event_date: str,
        created_at: str,
        unit_cost: Optional[float] = None,
        total_cost: Optional[float] = None,
        lot_id: Optional[int] = None,
        from_warehouse_id: Optional[int] = None,
        to_warehouse_id: Optional[int] = None,
        note: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO stock_movements (
                product_id, movement_type, quantity, unit_cost, total_cost, lot_id,
                from_warehouse_id, to_warehouse_id, previous_stock_level, new_stock_level,
                note, reference, actor, event_date, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(product_id),
                movement_type,
                int(quantity),
                unit_cost,
                total_cost,
                lot_id,
                from_warehouse_id,
                to_warehouse_id,
                int(previous_stock_level),
                int(new_stock_level),
                note,
                reference,
                actor,
                event_date,
                created_at,
            ),
        )
        return int(self.cur.lastrowid)

    # ---------- Documents ----------
    def insert_purchase(
        self,
        *,
        supplier_id: int,
        warehouse_id: int,
        reference_no: str,
        purchase_date: str,
        sub_total: float,
        discount: float,
        tax: float,
        total: float,
        note: Optional[str],
        actor: str,
        created_at: str,
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO purchases (
                supplier_id, warehouse_id, reference_no, purchase_date, sub_total, discount, tax, total,
                note, actor, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(supplier_id),
                int(warehouse_id),
                reference_no,
                purchase_date,
                float(sub_total),
                float(discount),
                float(tax),
                float(total),
                note,
                actor,
                created_at,
                created_at,
            ),
        )
        return int(self.cur.lastrowid)

    def insert_purchase_item(
        self,
        purchase_id: int,
        product_id: int,
        quantity: int,
        unit_cost: float,
        movement_id: int,
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO purchase_items (purchase_id, product_id, quantity, unit_cost, line_total, movement_id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (int(purchase_id), int(product_id), int(quantity), float(unit_cost), float(unit_cost) * int(quantity), int(movement_id)),
        )
        return int(self.cur.lastrowid)

    def insert_sale_invoice(
        self,
        *,
        customer_id: int,
        warehouse_id: int,
        items: Iterable[InvoiceLine],
        sub_total: float,
        discount: float,
        tax: float,
        total: float,
        payment_status: str,
        payment_method: str,
        actor: str,
        created_at: str,
    ) -> int:
        items_json = json.dumps([it.to_dict() for it in items], ensure_ascii=False)
        self.cur.execute(
            """
            INSERT INTO sale_invoices (
                customer_id, warehouse_id, items_json, sub_total, discount, tax, total,
                payment_status, payment_method, actor, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(customer_id),
                int(warehouse_id),
                items_json,
                float(sub_total),
                float(discount),
                float(tax),
                float(total),
                payment_status,
                payment_method,
                actor,
                created_at,
            ),
        )
        return int(self.cur.lastrowid)

    def insert_purchase_payment(
        self,
        purchase_id: int,
        amount: float,
        payment_method: str,
        paid_at: str,
        note: Optional[str],
        actor: str,
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO purchase_payments (purchase_id, amount, payment_method, paid_at, note, actor)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (int(purchase_id), float(amount), payment_method, paid_at, note, actor),
        )
        return int(self.cur.lastrowid)
