from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from stockledger.config import LedgerSettings
from stockledger.repositories.sqlite_repo import SqliteRepository
from stockledger.services.excel_service import ExcelService
from stockledger.services.inventory_service import InventoryService
from stockledger.services.operations_service import OperationsService
from stockledger.services.purchase_service import PurchaseService
from stockledger.services.reporting_service import ReportingService
from stockledger.services.sales_service import SalesService
from stockledger.services.stock_engine import StockEngine
from stockledger.services.transfer_service import TransferService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    engine: StockEngine
    inventory: InventoryService
    purchases: PurchaseService
    sales: SalesService
    transfers: TransferService
    excel: ExcelService
    reporting: ReportingService
    operations: OperationsService


def build_container(
    db_path: Path | str,
    settings: LedgerSettings | None = None,
    clock: Callable[[], datetime] | None = None,
) -> AppContainer:
    settings = settings or LedgerSettings()
    repo = SqliteRepository(db_path, busy_timeout=settings.busy_timeout_seconds)
    repo.init_db()

    engine = StockEngine(repo, settings=settings, clock=clock)
    inventory = InventoryService(repo, engine)
    purchases = PurchaseService(repo, engine)
    sales = SalesService(repo, engine)
    transfers = TransferService(repo, inventory)
    excel = ExcelService(repo, purchases)
    reporting = ReportingService(repo)
    operations = OperationsService(repo, db_path=db_path)

    return AppContainer(
        repo=repo,
        engine=engine,
        inventory=inventory,
        purchases=purchases,
        sales=sales,
        transfers=transfers,
        excel=excel,
        reporting=reporting,
        operations=operations,
    )
