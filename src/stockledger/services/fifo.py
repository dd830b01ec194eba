from __future__ import annotations

from typing import Iterable, Optional

from stockledger.domain.errors import InsufficientStockError, ValidationError
from stockledger.domain.models import LotDraw, StockLot


def resolve_fifo(
    lots: Iterable[StockLot],
    requested: int,
    *,
    product_id: int,
    warehouse_id: int,
    product_name: Optional[str] = None,
) -> list[LotDraw]:
    """Plan which lots to draw ``requested`` units from, oldest first.

    Archived and empty lots are ignored. Lots are ordered by acquisition date,
    then by id (creation order). Each draw keeps its own lot's unit cost.

    Raises InsufficientStockError when the usable lots hold less than requested.
    The lots are not touched; applying the plan is up to the caller.
    """
    if isinstance(requested, bool) or not isinstance(requested, int) or requested <= 0:
        raise ValidationError("Quantity must be a positive integer.")

    usable = sorted(
        (lot for lot in lots if not lot.archived and lot.quantity > 0),
        key=lambda lot: (lot.acquired_at, lot.id),
    )
    available = sum(lot.quantity for lot in usable)
    if available < requested:
        raise InsufficientStockError(product_id, warehouse_id, available, requested, product_name=product_name)

    draws: list[LotDraw] = []
    remaining = requested
    for lot in usable:
        if remaining <= 0:
            break
        take = min(lot.quantity, remaining)
        draws.append(LotDraw(lot_id=lot.id, unit_cost=lot.unit_cost, quantity=take))
        remaining -= take
    return draws
