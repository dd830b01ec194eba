from .stock_engine import StockEngine
from .inventory_service import InventoryService
from .purchase_service import PurchaseService
from .sales_service import SalesService
from .transfer_service import TransferService
from .excel_service import ExcelService
from .reporting_service import ReportingService
from .operations_service import OperationsService

__all__ = [
    "StockEngine",
    "InventoryService",
    "PurchaseService",
    "SalesService",
    "TransferService",
    "ExcelService",
    "ReportingService",
    "OperationsService",
]
