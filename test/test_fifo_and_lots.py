from datetime import datetime
from pathlib import Path

import pytest
from conftest import buy, make_ledger

from stockledger.domain.errors import InsufficientStockError, ValidationError
from stockledger.domain.models import StockLot
from stockledger.services.fifo import resolve_fifo


def _lot(lot_id, acquired_at, qty, cost=1.0, archived=0):
    return StockLot(
        id=lot_id,
        product_id=1,
        warehouse_id=1,
        unit_cost=cost,
        acquired_at=acquired_at,
        quantity=qty,
        archived=archived,
    )


def test_resolve_fifo_takes_oldest_lots_first():
    lots = [
        _lot(3, "2024-01-03 00:00:00", 5, 12.0),
        _lot(1, "2024-01-01 00:00:00", 5, 10.0),
        _lot(2, "2024-01-02 00:00:00", 5, 11.0),
    ]
    draws = resolve_fifo(lots, 8, product_id=1, warehouse_id=1)

    assert [(d.lot_id, d.quantity, d.unit_cost) for d in draws] == [(1, 5, 10.0), (2, 3, 11.0)]


def test_resolve_fifo_breaks_ties_by_lot_id_and_skips_empty_and_archived():
    lots = [
        _lot(7, "2024-01-01 00:00:00", 4),
        _lot(5, "2024-01-01 00:00:00", 0),
        _lot(6, "2024-01-01 00:00:00", 2),
        _lot(4, "2023-12-01 00:00:00", 9, archived=1),
    ]
    draws = resolve_fifo(lots, 3, product_id=1, warehouse_id=1)

    assert [(d.lot_id, d.quantity) for d in draws] == [(6, 2), (7, 1)]


def test_resolve_fifo_reports_available_and_requested():
    lots = [_lot(1, "2024-01-01 00:00:00", 5), _lot(2, "2024-01-02 00:00:00", 10)]

    with pytest.raises(InsufficientStockError) as exc:
        resolve_fifo(lots, 100, product_id=1, warehouse_id=1, product_name="Widget")

    assert exc.value.available == 15
    assert exc.value.requested == 100
    assert str(exc.value) == "Insufficient stock for Widget. Available: 15, Requested: 100"


@pytest.mark.parametrize("bad", [0, -3, 2.5, True])
def test_resolve_fifo_rejects_non_positive_quantities(bad):
    with pytest.raises(ValidationError):
        resolve_fifo([_lot(1, "2024-01-01 00:00:00", 5)], bad, product_id=1, warehouse_id=1)


def test_sale_consumes_lots_in_acquisition_order(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    c = ledger.container
    pid = ledger.product_id

    buy(ledger, "PO-1", [{"product_id": pid, "quantity": 5, "unit_cost": 10.0}], purchase_date="2024-01-01 08:00:00")
    buy(ledger, "PO-2", [{"product_id": pid, "quantity": 5, "unit_cost": 11.0}], purchase_date="2024-01-02 08:00:00")
    buy(ledger, "PO-3", [{"product_id": pid, "quantity": 5, "unit_cost": 12.0}], purchase_date="2024-01-03 08:00:00")

    invoice_id = c.sales.create_sale(
        ledger.customer_id, ledger.main_wh, [{"product_id": pid, "quantity": 8, "price": 15.0}], actor="cashier"
    )
    invoice = c.sales.get_invoice(invoice_id)

    assert [(ln.quantity, ln.cost) for ln in invoice.items] == [(5, 10.0), (3, 11.0)]
    assert [lot.quantity for lot in c.inventory.list_lots(pid)] == [0, 2, 5]
    assert c.inventory.get_product(pid).current_stock == 7

    outs = sorted(c.inventory.list_movements(pid, "stock_out"), key=lambda m: m.id)
    assert [(m.previous_stock_level, m.new_stock_level) for m in outs] == [(15, 10), (10, 7)]
    assert [m.id for m in outs] == [ln.stock_movement_id for ln in invoice.items]


def test_backdated_purchase_is_consumed_first(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    c = ledger.container
    pid = ledger.product_id

    buy(ledger, "PO-LATE", [{"product_id": pid, "quantity": 5, "unit_cost": 12.0}], purchase_date="2024-03-01 08:00:00")
    buy(ledger, "PO-EARLY", [{"product_id": pid, "quantity": 5, "unit_cost": 10.0}], purchase_date="2024-02-01 08:00:00")

    c.inventory.consume_stock(pid, ledger.main_wh, 3, "damaged", "clerk")

    by_cost = {lot.unit_cost: lot.quantity for lot in c.inventory.list_lots(pid)}
    assert by_cost == {10.0: 2, 12.0: 5}


def test_purchase_dates_are_stored_in_one_format(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    c = ledger.container
    pid = ledger.product_id

    buy(ledger, "PO-LATER", [{"product_id": pid, "quantity": 5, "unit_cost": 12.0}], purchase_date="2024-01-10 09:00:00")
    earlier = buy(ledger, "PO-EARLIER", [{"product_id": pid, "quantity": 5, "unit_cost": 10.0}], purchase_date="2024-01-10T08:00:00")
    assert c.purchases.get_purchase(earlier).purchase_date == "2024-01-10 08:00:00"

    c.inventory.consume_stock(pid, ledger.main_wh, 3, "damaged", "clerk")
    assert {lot.unit_cost: lot.quantity for lot in c.inventory.list_lots(pid)} == {10.0: 2, 12.0: 5}

    bare = buy(ledger, "PO-BARE", [{"product_id": pid, "quantity": 2, "unit_cost": 9.0}], purchase_date="2024-01-09")
    assert c.purchases.get_purchase(bare).purchase_date == "2024-01-09 00:00:00"
    dated = buy(ledger, "PO-DT", [{"product_id": pid, "quantity": 1, "unit_cost": 8.0}], purchase_date=datetime(2024, 1, 8, 7, 30))
    assert c.purchases.get_purchase(dated).purchase_date == "2024-01-08 07:30:00"

    c.inventory.consume_stock(pid, ledger.main_wh, 4, "damaged", "clerk")
    lots = {lot.unit_cost: (lot.acquired_at, lot.quantity) for lot in c.inventory.list_lots(pid)}
    assert lots == {
        8.0: ("2024-01-08 07:30:00", 0),
        9.0: ("2024-01-09 00:00:00", 0),
        10.0: ("2024-01-10 08:00:00", 1),
        12.0: ("2024-01-10 09:00:00", 5),
    }


@pytest.mark.parametrize("bad", ["01/05/2024", "yesterday", 20240105])
def test_unparseable_purchase_date_is_rejected(tmp_path: Path, bad):
    ledger = make_ledger(tmp_path)
    c = ledger.container

    with pytest.raises(ValidationError):
        buy(ledger, "PO-BAD", [{"product_id": ledger.product_id, "quantity": 1, "unit_cost": 10.0}], purchase_date=bad)

    assert c.purchases.list_purchases(include_deleted=True) == []
    assert c.inventory.list_lots() == []



def test_receipts_at_same_cost_share_one_lot(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    c = ledger.container
    pid = ledger.product_id

    buy(ledger, "PO-1", [{"product_id": pid, "quantity": 4, "unit_cost": 10.0}], purchase_date="2024-01-01 08:00:00")
    c.inventory.receive_stock(pid, ledger.main_wh, 6, 10.0, None, "clerk")
    c.inventory.receive_stock(pid, ledger.branch_wh, 1, 10.0, None, "clerk")

    main_lots = c.inventory.list_lots(pid, ledger.main_wh)
    assert len(main_lots) == 1
    assert main_lots[0].quantity == 10
    assert main_lots[0].acquired_at == "2024-01-01 08:00:00"
    assert len(c.inventory.list_lots(pid, ledger.branch_wh)) == 1
    assert len(c.inventory.list_movements(pid, "stock_in")) == 3


def test_receive_at_new_cost_opens_lot_and_updates_recommended_cost(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    c = ledger.container
    pid = ledger.product_id

    buy(ledger, "PO-1", [{"product_id": pid, "quantity": 20, "unit_cost": 10.0}])
    c.inventory.receive_stock(pid, ledger.main_wh, 10, 12.0, "restock", "clerk")

    lots = c.inventory.list_lots(pid, ledger.main_wh)
    assert sorted((lot.unit_cost, lot.quantity) for lot in lots) == [(10.0, 20), (12.0, 10)]
    product = c.inventory.get_product(pid)
    assert product.current_stock == 30
    assert product.cost_recommend == 12.0


def test_only_empty_lots_can_be_archived(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    c = ledger.container
    pid = ledger.product_id

    c.inventory.receive_stock(pid, ledger.main_wh, 3, 10.0, None, "clerk")
    lot = c.inventory.list_lots(pid)[0]

    with pytest.raises(ValidationError):
        c.inventory.archive_lot(lot.id)

    c.inventory.consume_stock(pid, ledger.main_wh, 3, None, "clerk")
    c.inventory.archive_lot(lot.id)
    assert c.inventory.list_lots(pid) == []

    # a new live lot at the same cost is allowed once the old one is archived
    c.inventory.receive_stock(pid, ledger.main_wh, 2, 10.0, None, "clerk")
    live = c.inventory.list_lots(pid)
    assert len(live) == 1
    assert live[0].id != lot.id
    assert c.inventory.reconcile() == []
