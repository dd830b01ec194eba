from pathlib import Path

import pytest
from conftest import buy, make_ledger

from stockledger.domain.errors import InsufficientStockError, NotFoundError, ValidationError


def _ledger_with_stock(tmp_path: Path, qty: int = 20, cost: float = 10.0):
    ledger = make_ledger(tmp_path)
    buy(ledger, "PO-1", [{"product_id": ledger.product_id, "quantity": qty, "unit_cost": cost}])
    return ledger


def test_sale_records_lines_with_lot_cost(tmp_path: Path):
    ledger = _ledger_with_stock(tmp_path)
    c = ledger.container
    pid = ledger.product_id

    invoice_id = c.sales.create_sale(
        ledger.customer_id, ledger.main_wh, [{"product_id": pid, "quantity": 5, "price": 15.0}], actor="cashier"
    )
    invoice = c.sales.get_invoice(invoice_id)

    assert invoice.sub_total == 75.0
    assert invoice.total == 75.0
    assert invoice.payment_status == "paid"
    assert invoice.payment_method == "cash"
    (line,) = invoice.items
    assert (line.quantity, line.cost, line.price, line.total_price) == (5, 10.0, 15.0, 75.0)
    assert line.margin == 25.0
    assert line.product_name == "Widget"
    assert line.product_barcode == "WID-001"
    assert c.inventory.get_product(pid).current_stock == 15
    assert [lot.quantity for lot in c.inventory.list_lots(pid, ledger.main_wh)] == [15]

    (movement,) = c.inventory.list_movements(pid, "stock_out")
    assert (movement.quantity, movement.unit_cost, movement.total_cost) == (5, 10.0, 50.0)
    assert movement.id == line.stock_movement_id


def test_oversell_reports_available_and_requested(tmp_path: Path):
    ledger = _ledger_with_stock(tmp_path)
    c = ledger.container
    pid = ledger.product_id

    c.sales.create_sale(ledger.customer_id, ledger.main_wh, [{"product_id": pid, "quantity": 5, "price": 15.0}], actor="cashier")

    with pytest.raises(InsufficientStockError) as exc:
        c.sales.create_sale(
            ledger.customer_id, ledger.main_wh, [{"product_id": pid, "quantity": 100, "price": 15.0}], actor="cashier"
        )

    assert (exc.value.available, exc.value.requested) == (15, 100)
    assert "Available: 15, Requested: 100" in str(exc.value)
    assert c.inventory.get_product(pid).current_stock == 15
    assert len(c.sales.list_invoices()) == 1


def test_stock_in_other_warehouse_does_not_count(tmp_path: Path):
    ledger = _ledger_with_stock(tmp_path)
    c = ledger.container

    with pytest.raises(InsufficientStockError) as exc:
        c.sales.create_sale(
            ledger.customer_id, ledger.branch_wh, [{"product_id": ledger.product_id, "quantity": 1, "price": 15.0}], actor="cashier"
        )
    assert exc.value.available == 0


def test_multi_line_sale_is_all_or_nothing(tmp_path: Path):
    ledger = _ledger_with_stock(tmp_path, qty=10)
    c = ledger.container
    pid = ledger.product_id
    other = c.inventory.add_product("Gadget", "GAD-001", 30.0)
    c.inventory.receive_stock(other, ledger.main_wh, 1, 20.0, None, "clerk")

    with pytest.raises(InsufficientStockError):
        c.sales.create_sale(
            ledger.customer_id,
            ledger.main_wh,
            [
                {"product_id": pid, "quantity": 5, "price": 15.0},
                {"product_id": other, "quantity": 3, "price": 30.0},
            ],
            actor="cashier",
        )

    assert c.inventory.get_product(pid).current_stock == 10
    assert [lot.quantity for lot in c.inventory.list_lots(pid)] == [10]
    assert c.inventory.list_movements(movement_type="stock_out") == []
    assert c.sales.list_invoices(include_archived=True) == []


def test_same_product_on_two_lines_draws_sequentially(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    c = ledger.container
    pid = ledger.product_id
    buy(ledger, "PO-1", [{"product_id": pid, "quantity": 3, "unit_cost": 10.0}], purchase_date="2024-01-01 08:00:00")
    buy(ledger, "PO-2", [{"product_id": pid, "quantity": 3, "unit_cost": 12.0}], purchase_date="2024-01-02 08:00:00")

    invoice_id = c.sales.create_sale(
        ledger.customer_id,
        ledger.main_wh,
        [
            {"product_id": pid, "quantity": 2, "price": 15.0},
            {"product_id": pid, "quantity": 2, "price": 16.0},
        ],
        actor="cashier",
    )
    invoice = c.sales.get_invoice(invoice_id)

    assert [(ln.quantity, ln.cost, ln.price) for ln in invoice.items] == [(2, 10.0, 15.0), (1, 10.0, 16.0), (1, 12.0, 16.0)]
    assert invoice.sub_total == 62.0
    assert c.inventory.get_product(pid).current_stock == 2


def test_invoice_totals_with_discounts_and_tax(tmp_path: Path):
    ledger = _ledger_with_stock(tmp_path)
    c = ledger.container

    invoice_id = c.sales.create_sale(
        ledger.customer_id,
        ledger.main_wh,
        [{"product_id": ledger.product_id, "quantity": 2, "price": 20.0, "discount": 1.0}],
        discount=3.0,
        tax=2.0,
        payment_status="not paid",
        payment_method="aba",
        actor="cashier",
    )
    invoice = c.sales.get_invoice(invoice_id)

    assert invoice.sub_total == 40.0
    assert invoice.total == 39.0
    assert invoice.items[0].total_price == 38.0
    assert invoice.payment_status == "not paid"


def test_invoice_lines_survive_catalog_changes(tmp_path: Path):
    ledger = _ledger_with_stock(tmp_path)
    c = ledger.container
    pid = ledger.product_id

    invoice_id = c.sales.create_sale(ledger.customer_id, ledger.main_wh, [{"product_id": pid, "quantity": 1, "price": 15.0}], actor="cashier")
    c.inventory.update_product(pid, "Widget Deluxe", 99.0)

    assert c.sales.get_invoice(invoice_id).items[0].product_name == "Widget"


def test_archiving_invoice_does_not_restore_stock(tmp_path: Path):
    ledger = _ledger_with_stock(tmp_path)
    c = ledger.container
    pid = ledger.product_id

    invoice_id = c.sales.create_sale(ledger.customer_id, ledger.main_wh, [{"product_id": pid, "quantity": 4, "price": 15.0}], actor="cashier")
    c.sales.archive_invoice(invoice_id, actor="manager")

    assert c.sales.list_invoices() == []
    assert len(c.sales.list_invoices(include_archived=True)) == 1
    assert c.inventory.get_product(pid).current_stock == 16

    with pytest.raises(NotFoundError):
        c.sales.archive_invoice(invoice_id)


@pytest.mark.parametrize(
    "lines, kwargs",
    [
        ([], {}),
        ([{"product_id": 1, "quantity": 0, "price": 15.0}], {}),
        ([{"product_id": 1, "quantity": 1.5, "price": 15.0}], {}),
        ([{"product_id": 1, "quantity": 1, "price": 0}], {}),
        ([{"product_id": 1, "quantity": 1, "price": 15.0, "discount": 16.0}], {}),
        ([{"product_id": None, "quantity": 1, "price": 15.0}], {}),
        ([{"product_id": 1, "quantity": 1, "price": 15.0}], {"payment_status": "partial"}),
        ([{"product_id": 1, "quantity": 1, "price": 15.0}], {"payment_method": "visa"}),
        ([{"product_id": 1, "quantity": 1, "price": 15.0}], {"discount": 100.0}),
        ([{"product_id": 1, "quantity": 1, "price": 15.0}], {"actor": ""}),
        ([{"product_id": 1, "quantity": 1, "price": float("nan")}], {}),
        ([{"product_id": 1, "quantity": 1, "price": float("inf")}], {}),
        ([{"product_id": 1, "quantity": 1, "price": 15.0}], {"tax": float("inf")}),
        ([{"product_id": 1, "quantity": 1, "price": 15.0}], {"discount": float("-inf")}),
    ],
)
def test_sale_validation_leaves_stock_untouched(tmp_path: Path, lines, kwargs):
    ledger = _ledger_with_stock(tmp_path)
    c = ledger.container
    kwargs = {"actor": "cashier", **kwargs}

    with pytest.raises(ValidationError):
        c.sales.create_sale(ledger.customer_id, ledger.main_wh, lines, **kwargs)

    assert c.inventory.get_product(ledger.product_id).current_stock == 20
    assert c.sales.list_invoices(include_archived=True) == []


def test_sale_to_unknown_customer(tmp_path: Path):
    ledger = _ledger_with_stock(tmp_path)
    c = ledger.container

    with pytest.raises(NotFoundError):
        c.sales.create_sale(999, ledger.main_wh, [{"product_id": ledger.product_id, "quantity": 1, "price": 15.0}], actor="cashier")

    assert c.inventory.get_product(ledger.product_id).current_stock == 20


def test_sale_accepts_aclida_payment(tmp_path: Path):
    ledger = _ledger_with_stock(tmp_path)
    c = ledger.container

    invoice_id = c.sales.create_sale(
        ledger.customer_id,
        ledger.main_wh,
        [{"product_id": ledger.product_id, "quantity": 1, "price": 15.0}],
        payment_method="aclida",
        actor="cashier",
    )

    assert c.sales.get_invoice(invoice_id).payment_method == "aclida"
