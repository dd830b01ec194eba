from __future__ import annotations

import json
import shutil
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from stockledger.domain.models import (
    Category,
    Customer,
    InvoiceLine,
    Product,
    PurchaseHeader,
    PurchaseLine,
    PurchasePayment,
    SaleInvoice,
    StockDrift,
    StockLot,
    StockMovement,
    Supplier,
    Warehouse,
)


PRODUCT_COLUMNS = (
    "id, name, barcode, price, category_id, image, current_stock, cost_recommend, archived, version, created_at"
)
LOT_COLUMNS = "id, product_id, warehouse_id, unit_cost, acquired_at, quantity, archived, version, created_at"
MOVEMENT_COLUMNS = (
    "id, product_id, movement_type, quantity, unit_cost, total_cost, lot_id, from_warehouse_id, "
    "to_warehouse_id, previous_stock_level, new_stock_level, note, reference, actor, event_date, created_at"
)
PURCHASE_COLUMNS = (
    "id, supplier_id, warehouse_id, reference_no, purchase_date, sub_total, discount, tax, total, "
    "note, actor, is_deleted, created_at"
)
INVOICE_COLUMNS = (
    "id, customer_id, warehouse_id, items_json, sub_total, discount, tax, total, payment_status, "
    "payment_method, actor, is_archived, created_at"
)


def product_from_row(r) -> Product:
    return Product(
        id=int(r[0]),
        name=str(r[1]),
        barcode=str(r[2]),
        price=float(r[3]),
        category_id=(int(r[4]) if r[4] is not None else None),
        image=(r[5] if r[5] is not None else None),
        current_stock=int(r[6]),
        cost_recommend=float(r[7]),
        archived=int(r[8]),
        version=int(r[9]),
        created_at=str(r[10]),
    )


def lot_from_row(r) -> StockLot:
    return StockLot(
        id=int(r[0]),
        product_id=int(r[1]),
        warehouse_id=int(r[2]),
        unit_cost=float(r[3]),
        acquired_at=str(r[4]),
        quantity=int(r[5]),
        archived=int(r[6]),
        version=int(r[7]),
        created_at=str(r[8]),
    )


def movement_from_row(r) -> StockMovement:
    return StockMovement(
        id=int(r[0]),
        product_id=int(r[1]),
        movement_type=str(r[2]),
        quantity=int(r[3]),
        unit_cost=(float(r[4]) if r[4] is not None else None),
        total_cost=(float(r[5]) if r[5] is not None else None),
        lot_id=(int(r[6]) if r[6] is not None else None),
        from_warehouse_id=(int(r[7]) if r[7] is not None else None),
        to_warehouse_id=(int(r[8]) if r[8] is not None else None),
        previous_stock_level=int(r[9]),
        new_stock_level=int(r[10]),
        note=r[11],
        reference=r[12],
        actor=str(r[13]),
        event_date=str(r[14]),
        created_at=str(r[15]),
    )


def purchase_from_row(r) -> PurchaseHeader:
    return PurchaseHeader(
        id=int(r[0]),
        supplier_id=int(r[1]),
        warehouse_id=int(r[2]),
        reference_no=str(r[3]),
        purchase_date=str(r[4]),
        sub_total=float(r[5]),
        discount=float(r[6]),
        tax=float(r[7]),
        total=float(r[8]),
        note=r[9],
        actor=str(r[10]),
        is_deleted=int(r[11]),
        created_at=str(r[12]),
    )


def invoice_from_row(r) -> SaleInvoice:
    items = tuple(InvoiceLine.from_dict(d) for d in json.loads(r[3]))
    return SaleInvoice(
        id=int(r[0]),
        customer_id=int(r[1]),
        warehouse_id=int(r[2]),
        items=items,
        sub_total=float(r[4]),
        discount=float(r[5]),
        tax=float(r[6]),
        total=float(r[7]),
        payment_status=str(r[8]),
        payment_method=str(r[9]),
        actor=str(r[10]),
        is_archived=int(r[11]),
        created_at=str(r[12]),
    )


class SqliteRepository:
    def __init__(self, db_path: Path | str, busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.busy_timeout = float(busy_timeout)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _tx_conn(self) -> sqlite3.Connection:
        """Connection in manual-transaction mode, for the unit of work."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_ledger_guards),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()
        if backup_path is not None:
            backup_path.unlink(missing_ok=True)

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                archived INTEGER NOT NULL DEFAULT 0 CHECK(archived IN (0,1)),
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        for table, extra in (("warehouses", "location TEXT,"), ("suppliers", "phone TEXT,"), ("customers", "phone TEXT,")):
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    {extra}
                    archived INTEGER NOT NULL DEFAULT 0 CHECK(archived IN (0,1)),
                    created_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
                """
            )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                barcode TEXT UNIQUE NOT NULL,
                price REAL NOT NULL CHECK(price >= 0),
                category_id INTEGER REFERENCES categories(id),
                image TEXT,
                current_stock INTEGER NOT NULL DEFAULT 0 CHECK(current_stock >= 0),
                cost_recommend REAL NOT NULL DEFAULT 0 CHECK(cost_recommend >= 0),
                archived INTEGER NOT NULL DEFAULT 0 CHECK(archived IN (0,1)),
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stock_lots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id INTEGER NOT NULL REFERENCES products(id),
                warehouse_id INTEGER NOT NULL REFERENCES warehouses(id),
                unit_cost REAL NOT NULL CHECK(unit_cost >= 0),
                acquired_at TEXT NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity >= 0),
                archived INTEGER NOT NULL DEFAULT 0 CHECK(archived IN (0,1)),
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stock_movements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id INTEGER NOT NULL REFERENCES products(id),
                movement_type TEXT NOT NULL
                    CHECK(movement_type IN ('stock_in','stock_out','adjustment','return','transfer')),
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                unit_cost REAL,
                total_cost REAL,
                lot_id INTEGER REFERENCES stock_lots(id),
                from_warehouse_id INTEGER REFERENCES warehouses(id),
                to_warehouse_id INTEGER REFERENCES warehouses(id),
                previous_stock_level INTEGER NOT NULL CHECK(previous_stock_level >= 0),
                new_stock_level INTEGER NOT NULL CHECK(new_stock_level >= 0),
                note TEXT,
                reference TEXT,
                actor TEXT NOT NULL,
                event_date TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS purchases (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                supplier_id INTEGER NOT NULL REFERENCES suppliers(id),
                warehouse_id INTEGER NOT NULL REFERENCES warehouses(id),
                reference_no TEXT NOT NULL,
                purchase_date TEXT NOT NULL,
                sub_total REAL NOT NULL CHECK(sub_total >= 0),
                discount REAL NOT NULL DEFAULT 0 CHECK(discount >= 0),
                tax REAL NOT NULL DEFAULT 0 CHECK(tax >= 0),
                total REAL NOT NULL,
                note TEXT,
                actor TEXT NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0 CHECK(is_deleted IN (0,1)),
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS purchase_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                purchase_id INTEGER NOT NULL REFERENCES purchases(id),
                product_id INTEGER NOT NULL REFERENCES products(id),
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                unit_cost REAL NOT NULL CHECK(unit_cost >= 0),
                line_total REAL NOT NULL,
                movement_id INTEGER REFERENCES stock_movements(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS purchase_payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                purchase_id INTEGER NOT NULL REFERENCES purchases(id),
                amount REAL NOT NULL CHECK(amount > 0),
                payment_method TEXT NOT NULL,
                paid_at TEXT NOT NULL,
                note TEXT,
                actor TEXT NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0 CHECK(is_deleted IN (0,1)),
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sale_invoices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                customer_id INTEGER NOT NULL REFERENCES customers(id),
                warehouse_id INTEGER NOT NULL REFERENCES warehouses(id),
                items_json TEXT NOT NULL,
                sub_total REAL NOT NULL,
                discount REAL NOT NULL DEFAULT 0 CHECK(discount >= 0),
                tax REAL NOT NULL DEFAULT 0 CHECK(tax >= 0),
                total REAL NOT NULL,
                payment_status TEXT NOT NULL CHECK(payment_status IN ('paid','not paid')),
                payment_method TEXT NOT NULL,
                actor TEXT NOT NULL,
                is_archived INTEGER NOT NULL DEFAULT 0 CHECK(is_archived IN (0,1)),
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

    def _migration_v2_ledger_guards(self, cur: sqlite3.Cursor) -> None:
        # one live lot per (product, warehouse, cost)
        cur.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS ux_stock_lots_live_key
            ON stock_lots(product_id, warehouse_id, unit_cost)
            WHERE archived = 0
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS ix_stock_lots_fifo ON stock_lots(product_id, warehouse_id, acquired_at, id)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_stock_movements_product ON stock_movements(product_id, movement_type)")
        cur.execute("CREATE INDEX IF NOT EXISTS ix_purchase_items_purchase ON purchase_items(purchase_id)")

        for table in ("stock_movements", "purchase_items"):
            for action in ("UPDATE", "DELETE"):
                cur.execute(
                    f"""
                    CREATE TRIGGER IF NOT EXISTS trg_{table}_no_{action.lower()}
                    BEFORE {action} ON {table}
                    BEGIN
                        SELECT RAISE(ABORT, '{table} rows are immutable');
                    END
                    """
                )

    # ---------- Master data ----------
    def _insert_named(self, table: str, name: str, extra_col: Optional[str] = None, extra_val: Optional[str] = None) -> int:
        conn = self._conn()
        cur = conn.cursor()
        if extra_col:
            cur.execute(f"INSERT INTO {table} (name, {extra_col}) VALUES (?, ?)", (name, extra_val))
        else:
            cur.execute(f"INSERT INTO {table} (name) VALUES (?)", (name,))
        new_id = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return new_id

    def _fetch_named(self, table: str, columns: str, row_id: int, include_archived: bool):
        conn = self._conn()
        cur = conn.cursor()
        sql = f"SELECT {columns} FROM {table} WHERE id=?"
        if not include_archived:
            sql += " AND archived=0"
        cur.execute(sql, (int(row_id),))
        r = cur.fetchone()
        conn.close()
        return r

    def _archive(self, table: str, row_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"UPDATE {table} SET archived=1 WHERE id=? AND archived=0", (int(row_id),))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def add_category(self, name: str) -> int:
        return self._insert_named("categories", name)

    def get_category(self, category_id: int) -> Optional[Category]:
        r = self._fetch_named("categories", "id, name, archived", category_id, include_archived=False)
        return Category(id=int(r[0]), name=str(r[1]), archived=int(r[2])) if r else None

    def add_warehouse(self, name: str, location: Optional[str] = None) -> int:
        return self._insert_named("warehouses", name, "location", location)

    def get_warehouse(self, warehouse_id: int, include_archived: bool = False) -> Optional[Warehouse]:
        r = self._fetch_named("warehouses", "id, name, location, archived", warehouse_id, include_archived)
        return Warehouse(id=int(r[0]), name=str(r[1]), location=r[2], archived=int(r[3])) if r else None

    def list_warehouses(self) -> list[Warehouse]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name, location, archived FROM warehouses WHERE archived=0 ORDER BY name")
        rows = cur.fetchall()
        conn.close()
        return [Warehouse(id=int(r[0]), name=str(r[1]), location=r[2], archived=int(r[3])) for r in rows]

    def archive_warehouse(self, warehouse_id: int) -> bool:
        return self._archive("warehouses", warehouse_id)

    def add_supplier(self, name: str, phone: Optional[str] = None) -> int:
        return self._insert_named("suppliers", name, "phone", phone)

    def get_supplier(self, supplier_id: int) -> Optional[Supplier]:
        r = self._fetch_named("suppliers", "id, name, phone, archived", supplier_id, include_archived=False)
        return Supplier(id=int(r[0]), name=str(r[1]), phone=r[2], archived=int(r[3])) if r else None

    def add_customer(self, name: str, phone: Optional[str] = None) -> int:
        return self._insert_named("customers", name, "phone", phone)

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        r = self._fetch_named("customers", "id, name, phone, archived", customer_id, include_archived=False)
        return Customer(id=int(r[0]), name=str(r[1]), phone=r[2], archived=int(r[3])) if r else None

    # ---------- Products ----------
    def add_product(
        self,
        name: str,
        barcode: str,
        price: float,
        category_id: Optional[int] = None,
        image: Optional[str] = None,
    ) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO products (name, barcode, price, category_id, image, current_stock, cost_recommend)
            VALUES (?, ?, ?, ?, ?, 0, 0)
            """,
            (name, barcode, float(price), category_id, image),
        )
        pid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return pid

    def get_product_by_id(self, product_id: int, include_archived: bool = False) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        sql = f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id=?"
        if not include_archived:
            sql += " AND archived=0"
        cur.execute(sql, (int(product_id),))
        r = cur.fetchone()
        conn.close()
        return product_from_row(r) if r else None

    def get_product_by_barcode(self, barcode: str) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE archived=0 AND barcode=?", (barcode,))
        r = cur.fetchone()
        conn.close()
        return product_from_row(r) if r else None

    def list_products(self) -> list[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE archived=0 ORDER BY name")
        rows = cur.fetchall()
        conn.close()
        return [product_from_row(r) for r in rows]

    def update_product_details(
        self,
        product_id: int,
        name: str,
        price: float,
        category_id: Optional[int],
        image: Optional[str],
    ) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE products
            SET name=?, price=?, category_id=?, image=?, version=version+1
            WHERE id=? AND archived=0
            """,
            (name, float(price), category_id, image, int(product_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def archive_product(self, product_id: int) -> bool:
        return self._archive("products", product_id)

    # ---------- Lots ----------
    def list_lots(
        self,
        product_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        include_archived: bool = False,
    ) -> list[StockLot]:
        clauses, params = [], []
        if product_id is not None:
            clauses.append("product_id=?")
            params.append(int(product_id))
        if warehouse_id is not None:
            clauses.append("warehouse_id=?")
            params.append(int(warehouse_id))
        if not include_archived:
            clauses.append("archived=0")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {LOT_COLUMNS} FROM stock_lots {where} ORDER BY acquired_at, id", params)
        rows = cur.fetchall()
        conn.close()
        return [lot_from_row(r) for r in rows]

    def get_lot(self, lot_id: int) -> Optional[StockLot]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {LOT_COLUMNS} FROM stock_lots WHERE id=?", (int(lot_id),))
        r = cur.fetchone()
        conn.close()
        return lot_from_row(r) if r else None

    def archive_empty_lot(self, lot_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE stock_lots SET archived=1, version=version+1 WHERE id=? AND archived=0 AND quantity=0",
            (int(lot_id),),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    # ---------- Movements ----------
    def list_movements(
        self,
        product_id: Optional[int] = None,
        movement_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[StockMovement]:
        clauses, params = [], []
        if product_id is not None:
            clauses.append("product_id=?")
            params.append(int(product_id))
        if movement_type is not None:
            clauses.append("movement_type=?")
            params.append(movement_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT {MOVEMENT_COLUMNS} FROM stock_movements {where} ORDER BY id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        conn.close()
        return [movement_from_row(r) for r in rows]

    def get_movements_by_ids(self, movement_ids: list[int]) -> list[StockMovement]:
        if not movement_ids:
            return []
        marks = ",".join("?" for _ in movement_ids)
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {MOVEMENT_COLUMNS} FROM stock_movements WHERE id IN ({marks}) ORDER BY id",
            [int(m) for m in movement_ids],
        )
        rows = cur.fetchall()
        conn.close()
        return [movement_from_row(r) for r in rows]

    # ---------- Reconciliation ----------
    def stock_drift(self, product_id: Optional[int] = None) -> list[StockDrift]:
        sql = """
            SELECT p.id, p.current_stock, COALESCE(SUM(l.quantity), 0) AS lot_total
            FROM products p
            LEFT JOIN stock_lots l ON l.product_id = p.id AND l.archived = 0
        """
        params: list = []
        if product_id is not None:
            sql += " WHERE p.id = ?"
            params.append(int(product_id))
        sql += " GROUP BY p.id HAVING p.current_stock != lot_total ORDER BY p.id"

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        conn.close()
        return [StockDrift(product_id=int(r[0]), recorded=int(r[1]), actual=int(r[2])) for r in rows]

    def integrity_check(self) -> str:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("PRAGMA integrity_check")
        row = cur.fetchone()
        conn.close()
        return str(row[0]) if row else "unknown"

    # ---------- Purchases ----------
    def get_purchase(self, purchase_id: int) -> Optional[PurchaseHeader]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {PURCHASE_COLUMNS} FROM purchases WHERE id=?", (int(purchase_id),))
        r = cur.fetchone()
        conn.close()
        return purchase_from_row(r) if r else None

    def list_purchases(self, include_deleted: bool = False) -> list[PurchaseHeader]:
        conn = self._conn()
        cur = conn.cursor()
        where = "" if include_deleted else "WHERE is_deleted=0"
        cur.execute(f"SELECT {PURCHASE_COLUMNS} FROM purchases {where} ORDER BY purchase_date DESC, id DESC")
        rows = cur.fetchall()
        conn.close()
        return [purchase_from_row(r) for r in rows]

    def purchase_items_for_purchase(self, purchase_id: int) -> list[PurchaseLine]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, purchase_id, product_id, quantity, unit_cost, line_total, movement_id
            FROM purchase_items
            WHERE purchase_id=?
            ORDER BY id
            """,
            (int(purchase_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [
            PurchaseLine(
                id=int(r[0]),
                purchase_id=int(r[1]),
                product_id=int(r[2]),
                quantity=int(r[3]),
                unit_cost=float(r[4]),
                line_total=float(r[5]),
                movement_id=(int(r[6]) if r[6] is not None else None),
            )
            for r in rows
        ]

    def soft_delete_purchase(self, purchase_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE purchases SET is_deleted=1, updated_at=datetime('now') WHERE id=? AND is_deleted=0",
            (int(purchase_id),),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def list_purchase_payments(self, purchase_id: Optional[int] = None) -> list[PurchasePayment]:
        conn = self._conn()
        cur = conn.cursor()
        sql = """
            SELECT id, purchase_id, amount, payment_method, paid_at, note, actor, is_deleted
            FROM purchase_payments
            WHERE is_deleted=0
        """
        params: list = []
        if purchase_id is not None:
            sql += " AND purchase_id=?"
            params.append(int(purchase_id))
        cur.execute(sql + " ORDER BY paid_at, id", params)
        rows = cur.fetchall()
        conn.close()
        return [
            PurchasePayment(
                id=int(r[0]),
                purchase_id=int(r[1]),
                amount=float(r[2]),
                payment_method=str(r[3]),
                paid_at=str(r[4]),
                note=r[5],
                actor=str(r[6]),
                is_deleted=int(r[7]),
            )
            for r in rows
        ]

    # ---------- Sales ----------
    def get_sale_invoice(self, invoice_id: int) -> Optional[SaleInvoice]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {INVOICE_COLUMNS} FROM sale_invoices WHERE id=?", (int(invoice_id),))
        r = cur.fetchone()
        conn.close()
        return invoice_from_row(r) if r else None

    def list_sale_invoices(self, include_archived: bool = False) -> list[SaleInvoice]:
        conn = self._conn()
        cur = conn.cursor()
        where = "" if include_archived else "WHERE is_archived=0"
        cur.execute(f"SELECT {INVOICE_COLUMNS} FROM sale_invoices {where} ORDER BY created_at DESC, id DESC")
        rows = cur.fetchall()
        conn.close()
        return [invoice_from_row(r) for r in rows]

    def sale_invoices_between(self, start_iso: str, end_iso: str) -> list[SaleInvoice]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {INVOICE_COLUMNS}
            FROM sale_invoices
            WHERE is_archived=0 AND created_at >= ? AND created_at < ?
            ORDER BY created_at, id
            """,
            (start_iso, end_iso),
        )
        rows = cur.fetchall()
        conn.close()
        return [invoice_from_row(r) for r in rows]

    def archive_sale_invoice(self, invoice_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("UPDATE sale_invoices SET is_archived=1 WHERE id=? AND is_archived=0", (int(invoice_id),))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)
