from __future__ import annotations

from dataclasses import dataclass

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo


@dataclass(frozen=True)
class MarginSummary:
    invoices: int
    units: int
    revenue: float
    cost: float

    @property
    def margin(self) -> float:
        return self.revenue - self.cost


class ReportingService:
    def __init__(self, repo):
        self.repo = repo

    def sales_margin_between(self, start_iso: str, end_iso: str) -> MarginSummary:
        """Revenue against the FIFO cost recorded on each invoice line."""
        invoices = self.repo.sale_invoices_between(start_iso, end_iso)
        units = 0
        revenue = 0.0
        cost = 0.0
        for inv in invoices:
            for ln in inv.items:
                units += ln.quantity
                revenue += ln.total_price
                cost += ln.cost * ln.quantity
        return MarginSummary(invoices=len(invoices), units=units, revenue=round(revenue, 4), cost=round(cost, 4))

    def export_stock_report_excel(self, path: str, movements_limit: int = 5000) -> None:
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        products = {p.id: p for p in self.repo.list_products()}
        warehouses = {w.id: w.name for w in self.repo.list_warehouses()}
        lots = [lot for lot in self.repo.list_lots() if lot.quantity > 0]
        movements = self.repo.list_movements(limit=movements_limit)
        drift = self.repo.stock_drift()

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Stock Summary"
        ws["A1"].font = Font(bold=True, size=14)

        total_units = sum(lot.quantity for lot in lots)
        total_value = sum(lot.value for lot in lots)
        rows = [
            ("Active products", len(products), "int"),
            ("Open lots", len(lots), "int"),
            ("Units on hand", total_units, "int"),
            ("Inventory value (FIFO)", float(total_value), "money"),
            ("Products out of sync", len(drift), "int"),
        ]
        for i, (label, val, kind) in enumerate(rows):
            r = 3 + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                money(ws[f"B{r}"])
        set_widths(ws, {"A": 28, "B": 20})

        # -------- 2) Lots --------
        ws2 = wb.create_sheet("Lots")
        ws2.append(["Lot ID", "Barcode", "Product", "Warehouse", "Acquired", "Qty", "Unit Cost", "Value"])
        bold_row(ws2, 1)
        out_row = 2
        for lot in lots:
            p = products.get(lot.product_id)
            ws2.append([
                lot.id,
                p.barcode if p else "",
                p.name if p else f"#{lot.product_id}",
                warehouses.get(lot.warehouse_id, f"#{lot.warehouse_id}"),
                lot.acquired_at,
                lot.quantity,
                float(lot.unit_cost),
                float(lot.value),
            ])
            money(ws2[f"G{out_row}"])
            money(ws2[f"H{out_row}"])
            out_row += 1
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 8, "B": 16, "C": 32, "D": 18, "E": 20, "F": 8, "G": 12, "H": 14})
        if ws2.max_row >= 2:
            add_table(ws2, "LotsTable", 1, 1, ws2.max_row, 8)

        # -------- 3) Movements --------
        ws3 = wb.create_sheet("Movements")
        ws3.append(["ID", "Date", "Type", "Product", "Qty", "Unit Cost", "From", "To", "Before", "After", "Actor", "Note"])
        bold_row(ws3, 1)
        for m in movements:
            p = products.get(m.product_id)
            ws3.append([
                m.id,
                m.event_date,
                m.movement_type,
                p.name if p else f"#{m.product_id}",
                m.quantity,
                m.unit_cost,
                warehouses.get(m.from_warehouse_id, "") if m.from_warehouse_id else "",
                warehouses.get(m.to_warehouse_id, "") if m.to_warehouse_id else "",
                m.previous_stock_level,
                m.new_stock_level,
                m.actor,
                m.note or "",
            ])
        ws3.freeze_panes = "A2"
        set_widths(ws3, {"A": 8, "B": 20, "C": 12, "D": 32, "E": 8, "F": 12, "G": 16, "H": 16, "L": 30})
        if ws3.max_row >= 2:
            add_table(ws3, "MovementsTable", 1, 1, ws3.max_row, 12)

        wb.save(path)
