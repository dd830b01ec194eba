from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from openpyxl import load_workbook

from stockledger.domain.errors import ValidationError

log = logging.getLogger(__name__)


REQUIRED_HEADERS = ("barcode", "quantity", "unit_cost")


class ExcelService:
    def __init__(self, repo, purchase_service):
        self.repo = repo
        self.purchases = purchase_service

    def import_purchase_excel(
        self,
        path: str,
        supplier_id: int,
        warehouse_id: int,
        actor: str,
        reference_no: Optional[str] = None,
    ) -> tuple[Optional[int], int, int]:
        """
        Each row is a received line, not an absolute stock level.
        Headers:
          barcode | quantity | unit_cost

        Valid rows become a single purchase; unknown barcodes and malformed
        rows are skipped. Returns (purchase_id or None, ok, skipped).
        """
        wb = load_workbook(path, read_only=True, data_only=True)
        try:
            ws = wb.active
            rows = ws.iter_rows(values_only=True)
            header_row = next(rows, None)
            if header_row is None:
                raise ValidationError("Sheet is empty.")

            headers = {}
            for idx, v in enumerate(header_row):
                if isinstance(v, str):
                    headers[v.strip().lower()] = idx
            for h in REQUIRED_HEADERS:
                if h not in headers:
                    raise ValidationError(f"Missing column header: {h}")

            items = []
            skipped = 0
            for row_no, row in enumerate(rows, start=2):
                try:
                    barcode = row[headers["barcode"]]
                    qty = row[headers["quantity"]]
                    cost = row[headers["unit_cost"]]
                    if barcode is None or qty is None or cost is None:
                        skipped += 1
                        continue

                    product = self.repo.get_product_by_barcode(str(barcode).strip())
                    if not product:
                        log.warning("Excel import skipped row %s: unknown barcode %s", row_no, barcode)
                        skipped += 1
                        continue

                    qty_f = float(qty)
                    cost_f = float(cost)
                    if qty_f <= 0 or not qty_f.is_integer() or cost_f < 0:
                        skipped += 1
                        continue
                    items.append({"product_id": product.id, "quantity": int(qty_f), "unit_cost": cost_f})
                except (TypeError, ValueError, IndexError) as e:
                    log.warning("Excel import skipped row %s: %s", row_no, e)
                    skipped += 1
        finally:
            wb.close()

        if not items:
            return None, 0, skipped

        purchase_id = self.purchases.create_purchase(
            {
                "supplier_id": supplier_id,
                "warehouse_id": warehouse_id,
                "reference_no": reference_no or f"XLSX-{datetime.now().strftime('%Y%m%d%H%M%S')}",
                "note": "Excel import",
                "actor": actor,
            },
            items,
        )
        return purchase_id, len(items), skipped
