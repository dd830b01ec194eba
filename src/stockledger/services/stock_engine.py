from __future__ import annotations

import logging
import sqlite3
import time
from datetime import datetime
from typing import Callable, Optional, TypeVar

from stockledger.config import LedgerSettings
from stockledger.domain.errors import (
    ConcurrencyConflict,
    ConcurrencyError,
    LedgerIntegrityError,
    NotFoundError,
    ValidationError,
)
from stockledger.domain.models import ADJUST_DIRECTIONS, ConsumedDraw, LotDraw, Product, StockDrift
from stockledger.repositories.sqlite_repo import SqliteRepository
from stockledger.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork
from stockledger.services.fifo import resolve_fifo

log = logging.getLogger("stockledger.stock")

T = TypeVar("T")

_TRANSIENT_SQLITE = ("database is locked", "database is busy", "database table is locked")


def _is_transient(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return any(m in msg for m in _TRANSIENT_SQLITE)


class StockEngine:
    """Applies stock changes to products, lots and movements as one transaction.

    Every primitive (``receive``, ``consume``, ``transfer``, ``adjust``) takes
    an open unit of work and does its reads and writes through it, so FIFO
    resolution always sees the same state it mutates. ``run`` owns the
    transaction boundary and the bounded retry.
    """

    def __init__(
        self,
        repo: SqliteRepository,
        settings: LedgerSettings | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repo = repo
        self.settings = settings or LedgerSettings()
        self.uow_factory = uow_factory or (lambda: SqliteUnitOfWork(repo))
        self.clock = clock or datetime.now
        self._sleep = sleep

    def timestamp(self) -> str:
        return self.clock().replace(microsecond=0).isoformat(sep=" ")

    # ---------- Transaction boundary ----------
    def run(self, fn: Callable[[SqliteUnitOfWork], T], op: str = "ledger_tx") -> T:
        attempts = self.settings.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                with self.uow_factory() as uow:
                    return fn(uow)
            except ConcurrencyConflict as e:
                reason = str(e)
            except sqlite3.OperationalError as e:
                if not _is_transient(e):
                    raise
                reason = str(e)
            log.warning("tx_retry op=%s attempt=%s/%s reason=%s", op, attempt, attempts, reason)
            if attempt < attempts:
                self._sleep(self.settings.retry_backoff_seconds * attempt)
        log.error("tx_gave_up op=%s attempts=%s", op, attempts)
        raise ConcurrencyError(attempts)

    # ---------- Preconditions ----------
    def require_product(self, uow: SqliteUnitOfWork, product_id: int) -> Product:
        product = uow.get_product(product_id)
        if product is None or product.archived:
            raise NotFoundError("product", product_id)
        return product

    def require_warehouse(self, uow: SqliteUnitOfWork, warehouse_id: int) -> None:
        if not uow.warehouse_exists(warehouse_id):
            raise NotFoundError("warehouse", warehouse_id)

    # ---------- Primitives ----------
    def _put_into_lot(
        self,
        uow: SqliteUnitOfWork,
        product_id: int,
        warehouse_id: int,
        unit_cost: float,
        qty: int,
        acquired_at: str,
        created_at: str,
    ) -> int:
        lot = uow.find_lot(product_id, warehouse_id, unit_cost)
        if lot is not None:
            uow.set_lot_quantity(lot, lot.quantity + qty)
            return lot.id
        return uow.insert_lot(product_id, warehouse_id, unit_cost, acquired_at, qty, created_at)

    def receive(
        self,
        uow: SqliteUnitOfWork,
        product_id: int,
        warehouse_id: int,
        qty: int,
        unit_cost: float,
        *,
        actor: str,
        note: Optional[str] = None,
        reference: Optional[str] = None,
        event_date: Optional[str] = None,
        acquired_at: Optional[str] = None,
        movement_type: str = "stock_in",
        update_cost_recommend: bool = True,
    ) -> int:
        product = self.require_product(uow, product_id)
        self.require_warehouse(uow, warehouse_id)

        now = self.timestamp()
        event_date = event_date or now
        lot_id = self._put_into_lot(uow, product_id, warehouse_id, unit_cost, qty, acquired_at or event_date, now)

        before = product.current_stock
        after = before + qty
        uow.set_product_stock(product, after, cost_recommend=unit_cost if update_cost_recommend else None)

        return uow.insert_movement(
            product_id=product_id,
            movement_type=movement_type,
            quantity=qty,
            unit_cost=unit_cost,
            total_cost=unit_cost * qty,
            lot_id=lot_id,
            to_warehouse_id=warehouse_id,
            previous_stock_level=before,
            new_stock_level=after,
            note=note,
            reference=reference,
            actor=actor,
            event_date=event_date,
            created_at=now,
        )

    def _draw_down(
        self, uow: SqliteUnitOfWork, product: Product, warehouse_id: int, qty: int
    ) -> list[LotDraw]:
        """Decrement lots FIFO; movements and the aggregate are left to the caller."""
        lots = uow.open_lots(product.id, warehouse_id)
        draws = resolve_fifo(lots, qty, product_id=product.id, warehouse_id=warehouse_id, product_name=product.name)
        if product.current_stock < qty:
            raise LedgerIntegrityError(
                f"Product {product.id} aggregate stock ({product.current_stock}) is below its lot total."
            )
        by_id = {lot.id: lot for lot in lots}
        for draw in draws:
            lot = by_id[draw.lot_id]
            uow.set_lot_quantity(lot, lot.quantity - draw.quantity)
        return draws

    def consume(
        self,
        uow: SqliteUnitOfWork,
        product_id: int,
        warehouse_id: int,
        qty: int,
        *,
        actor: str,
        note: Optional[str] = None,
        reference: Optional[str] = None,
        event_date: Optional[str] = None,
        movement_type: str = "stock_out",
    ) -> list[ConsumedDraw]:
        product = self.require_product(uow, product_id)
        self.require_warehouse(uow, warehouse_id)
        draws = self._draw_down(uow, product, warehouse_id, qty)

        now = self.timestamp()
        event_date = event_date or now
        level = product.current_stock
        consumed: list[ConsumedDraw] = []

        for draw in draws:
            movement_id = uow.insert_movement(
                product_id=product_id,
                movement_type=movement_type,
                quantity=draw.quantity,
                unit_cost=draw.unit_cost,
                total_cost=draw.unit_cost * draw.quantity,
                lot_id=draw.lot_id,
                from_warehouse_id=warehouse_id,
                previous_stock_level=level,
                new_stock_level=level - draw.quantity,
                note=note,
                reference=reference,
                actor=actor,
                event_date=event_date,
                created_at=now,
            )
            level -= draw.quantity
            consumed.append(ConsumedDraw(lot_id=draw.lot_id, unit_cost=draw.unit_cost, quantity=draw.quantity, movement_id=movement_id))

        uow.set_product_stock(product, level)
        return consumed

    def transfer(
        self,
        uow: SqliteUnitOfWork,
        product_id: int,
        from_warehouse_id: int,
        to_warehouse_id: int,
        qty: int,
        *,
        actor: str,
        note: Optional[str] = None,
        reference: Optional[str] = None,
        event_date: Optional[str] = None,
    ) -> list[int]:
        if int(from_warehouse_id) == int(to_warehouse_id):
            raise ValidationError("Source and destination warehouses must differ.")
        product = self.require_product(uow, product_id)
        self.require_warehouse(uow, from_warehouse_id)
        self.require_warehouse(uow, to_warehouse_id)

        lots = uow.open_lots(product_id, from_warehouse_id)
        draws = resolve_fifo(lots, qty, product_id=product_id, warehouse_id=from_warehouse_id, product_name=product.name)

        now = self.timestamp()
        event_date = event_date or now
        by_id = {lot.id: lot for lot in lots}
        # aggregate is unchanged; both levels are the snapshot at transfer time
        level = product.current_stock
        movement_ids: list[int] = []

        for draw in draws:
            source = by_id[draw.lot_id]
            uow.set_lot_quantity(source, source.quantity - draw.quantity)
            self._put_into_lot(uow, product_id, to_warehouse_id, draw.unit_cost, draw.quantity, now, now)
            movement_ids.append(
                uow.insert_movement(
                    product_id=product_id,
                    movement_type="transfer",
                    quantity=draw.quantity,
                    unit_cost=draw.unit_cost,
                    total_cost=draw.unit_cost * draw.quantity,
                    lot_id=source.id,
                    from_warehouse_id=from_warehouse_id,
                    to_warehouse_id=to_warehouse_id,
                    previous_stock_level=level,
                    new_stock_level=level,
                    note=note or "Stock transfer",
                    reference=reference,
                    actor=actor,
                    event_date=event_date,
                    created_at=now,
                )
            )
        return movement_ids

    def adjust(
        self,
        uow: SqliteUnitOfWork,
        product_id: int,
        warehouse_id: int,
        direction: str,
        qty: int,
        unit_cost: Optional[float] = None,
        *,
        actor: str,
        note: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> int:
        """Correct stock up or down; always exactly one ``adjustment`` movement."""
        if direction not in ADJUST_DIRECTIONS:
            raise ValidationError(f"Adjustment direction must be one of {ADJUST_DIRECTIONS}.")

        if direction == "up":
            product = self.require_product(uow, product_id)
            cost = product.cost_recommend if unit_cost is None else float(unit_cost)
            return self.receive(
                uow,
                product_id,
                warehouse_id,
                qty,
                cost,
                actor=actor,
                note=note or "Adjustment Up",
                reference=reference,
                movement_type="adjustment",
                update_cost_recommend=False,
            )

        product = self.require_product(uow, product_id)
        self.require_warehouse(uow, warehouse_id)
        draws = self._draw_down(uow, product, warehouse_id, qty)

        now = self.timestamp()
        before = product.current_stock
        after = before - qty
        # a single-lot draw keeps its lot and cost; a spread draw records only the total
        single = draws[0] if len(draws) == 1 else None
        movement_id = uow.insert_movement(
            product_id=product_id,
            movement_type="adjustment",
            quantity=qty,
            unit_cost=single.unit_cost if single else None,
            total_cost=round(sum(d.unit_cost * d.quantity for d in draws), 4),
            lot_id=single.lot_id if single else None,
            from_warehouse_id=warehouse_id,
            previous_stock_level=before,
            new_stock_level=after,
            note=note or "Adjustment Down",
            reference=reference,
            actor=actor,
            event_date=now,
            created_at=now,
        )
        uow.set_product_stock(product, after)
        return movement_id

    def repair(self, uow: SqliteUnitOfWork, product_id: int) -> StockDrift:
        product = uow.get_product(product_id)
        if product is None:
            raise NotFoundError("product", product_id)
        actual = uow.lot_total(product_id)
        drift = StockDrift(product_id=product.id, recorded=product.current_stock, actual=actual)
        if drift.delta:
            uow.set_product_stock(product, actual)
        return drift
