import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class StepClock:
    """Deterministic clock: every call is one minute after the previous one."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 9, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(minutes=1)
        return value


@dataclass
class Ledger:
    container: object
    main_wh: int
    branch_wh: int
    supplier_id: int
    customer_id: int
    product_id: int


def make_ledger(tmp_path: Path, name: str = "ledger.db", settings=None, clock=None) -> Ledger:
    from stockledger.application.container import build_container

    container = build_container(tmp_path / name, settings=settings, clock=clock or StepClock())
    repo = container.repo
    main_wh = repo.add_warehouse("Main", "Phnom Penh")
    branch_wh = repo.add_warehouse("Branch", "Siem Reap")
    supplier_id = repo.add_supplier("Acme Wholesale", "012 345 678")
    customer_id = repo.add_customer("Walk-in")
    product_id = container.inventory.add_product("Widget", "WID-001", 15.0)
    return Ledger(
        container=container,
        main_wh=main_wh,
        branch_wh=branch_wh,
        supplier_id=supplier_id,
        customer_id=customer_id,
        product_id=product_id,
    )


def buy(ledger: Ledger, ref: str, items, warehouse_id=None, purchase_date=None) -> int:
    header = {
        "supplier_id": ledger.supplier_id,
        "warehouse_id": warehouse_id or ledger.main_wh,
        "reference_no": ref,
        "actor": "clerk",
    }
    if purchase_date:
        header["purchase_date"] = purchase_date
    return ledger.container.purchases.create_purchase(header, items)
