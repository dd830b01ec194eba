from pathlib import Path

import pytest
from conftest import buy, make_ledger
from openpyxl import Workbook, load_workbook

from stockledger.domain.errors import ValidationError


def _sheet(path: Path, rows):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


def test_sales_margin_uses_fifo_cost(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    c = ledger.container
    pid = ledger.product_id
    buy(ledger, "PO-1", [{"product_id": pid, "quantity": 2, "unit_cost": 8.0}], purchase_date="2024-01-01 08:00:00")
    buy(ledger, "PO-2", [{"product_id": pid, "quantity": 8, "unit_cost": 11.0}], purchase_date="2024-01-02 08:00:00")

    c.sales.create_sale(ledger.customer_id, ledger.main_wh, [{"product_id": pid, "quantity": 4, "price": 15.0}], actor="cashier")

    summary = c.reporting.sales_margin_between("2024-01-01 00:00:00", "2025-01-01 00:00:00")
    assert summary.invoices == 1
    assert summary.units == 4
    assert summary.revenue == 60.0
    assert summary.cost == 38.0
    assert summary.margin == pytest.approx(22.0)

    empty = c.reporting.sales_margin_between("2023-01-01 00:00:00", "2023-12-31 00:00:00")
    assert (empty.invoices, empty.revenue) == (0, 0.0)


def test_excel_import_creates_one_purchase(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    c = ledger.container
    pid = ledger.product_id

    path = _sheet(
        tmp_path / "import.xlsx",
        [
            ["Barcode", "Quantity", "Unit_Cost"],
            ["WID-001", 4, 9.5],
            ["UNKNOWN", 1, 1.0],
            ["WID-001", "x", 2.0],
            ["WID-001", 2.5, 1.0],
        ],
    )

    purchase_id, ok, skipped = c.excel.import_purchase_excel(
        str(path), ledger.supplier_id, ledger.main_wh, actor="clerk", reference_no="PO-XL"
    )

    assert (ok, skipped) == (1, 3)
    header = c.purchases.get_purchase(purchase_id)
    assert header.reference_no == "PO-XL"
    assert header.note == "Excel import"
    assert [(ln.quantity, ln.unit_cost) for ln in c.purchases.purchase_items_for_purchase(purchase_id)] == [(4, 9.5)]
    assert c.inventory.get_product(pid).current_stock == 4


def test_excel_import_without_valid_rows_writes_nothing(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    c = ledger.container
    path = _sheet(tmp_path / "bad.xlsx", [["barcode", "quantity", "unit_cost"], ["NOPE", 1, 1.0]])

    assert c.excel.import_purchase_excel(str(path), ledger.supplier_id, ledger.main_wh, actor="clerk") == (None, 0, 1)
    assert c.purchases.list_purchases(include_deleted=True) == []


def test_excel_import_requires_headers(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    path = _sheet(tmp_path / "headers.xlsx", [["sku", "qty"], ["WID-001", 1]])

    with pytest.raises(ValidationError, match="unit_cost|barcode"):
        ledger.container.excel.import_purchase_excel(str(path), ledger.supplier_id, ledger.main_wh, actor="clerk")


def test_stock_report_workbook(tmp_path: Path):
    ledger = make_ledger(tmp_path)
    c = ledger.container
    pid = ledger.product_id
    buy(ledger, "PO-1", [{"product_id": pid, "quantity": 5, "unit_cost": 10.0}], purchase_date="2024-01-01 08:00:00")
    buy(ledger, "PO-2", [{"product_id": pid, "quantity": 5, "unit_cost": 12.0}], purchase_date="2024-01-02 08:00:00")
    c.inventory.transfer_stock(pid, ledger.main_wh, ledger.branch_wh, 6, None, "clerk")

    out = tmp_path / "report.xlsx"
    c.reporting.export_stock_report_excel(str(out))

    wb = load_workbook(out)
    assert wb.sheetnames == ["Summary", "Lots", "Movements"]
    summary = {wb["Summary"][f"A{r}"].value: wb["Summary"][f"B{r}"].value for r in range(3, 8)}
    assert summary["Units on hand"] == 10
    assert summary["Inventory value (FIFO)"] == pytest.approx(110.0)
    assert summary["Products out of sync"] == 0
    # header + 3 lots with stock (the emptied main lot is left out)
    assert wb["Lots"].max_row == 4
    assert wb["Movements"].max_row == 1 + 4
