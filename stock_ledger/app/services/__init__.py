"""
Services package initialization.
Business logic layer for the lot-based stock ledger.
"""

from .exceptions import (
    InventoryError,
    InsufficientStockError,
    NotFoundError,
    LotNotFoundError,
    WarehouseNotFoundError,
    ProductNotFoundError,
    SupplierNotFoundError,
    TransferNotFoundError,
    IssueTransactionNotFoundError,
    DuplicateTransactionNumberError,
    InvalidTransferStateError,
    UnauthorizedError,
    AlreadyCancelledError,
    InvalidOperationError,
)
from .sequence_service import get_next_sequence
from .lot_store import LotStore
from .fefo import FefoAllocator, allocate
from .activity import ActivitySink
from .stock_service import StockOperationService
from .transfer_service import TransferService
from .query_service import StockQueryService

__all__ = [
    'InventoryError',
    'InsufficientStockError',
    'NotFoundError',
    'LotNotFoundError',
    'WarehouseNotFoundError',
    'ProductNotFoundError',
    'SupplierNotFoundError',
    'TransferNotFoundError',
    'IssueTransactionNotFoundError',
    'DuplicateTransactionNumberError',
    'InvalidTransferStateError',
    'UnauthorizedError',
    'AlreadyCancelledError',
    'InvalidOperationError',
    'get_next_sequence',
    'LotStore',
    'FefoAllocator',
    'allocate',
    'ActivitySink',
    'StockOperationService',
    'TransferService',
    'StockQueryService',
]
