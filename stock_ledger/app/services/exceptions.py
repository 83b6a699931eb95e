"""
Typed errors raised by the stock ledger.

Every error aborts the enclosing unit of work. The HTTP layer turns them
into JSON responses using ``status_code`` and ``to_dict()``.
"""


class InventoryError(Exception):
    """Base exception for inventory operations"""
    status_code = 400

    def __init__(self, message, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self):
        rv = dict(self.context)
        rv['message'] = self.message
        rv['error'] = type(self).__name__
        rv['success'] = False
        return rv


class InsufficientStockError(InventoryError):
    """Raised when trying to take more than is available"""
    status_code = 409

    def __init__(self, message, requested=None, available=None, lot_id=None):
        context = {'requested': requested, 'available': available}
        if lot_id is not None:
            context['lot_id'] = lot_id
        super().__init__(message, **context)
        self.requested = requested
        self.available = available
        self.lot_id = lot_id


class NotFoundError(InventoryError):
    status_code = 404


class LotNotFoundError(NotFoundError):
    pass


class WarehouseNotFoundError(NotFoundError):
    pass


class ProductNotFoundError(NotFoundError):
    pass


class SupplierNotFoundError(NotFoundError):
    pass


class TransferNotFoundError(NotFoundError):
    pass


class IssueTransactionNotFoundError(NotFoundError):
    pass


class DuplicateTransactionNumberError(InventoryError):
    """Generated number collided with an existing one; should be unreachable"""
    status_code = 500


class InvalidTransferStateError(InventoryError):
    """Transfer is no longer Pending"""
    status_code = 409


class UnauthorizedError(InventoryError):
    """Caller's warehouse or role does not allow the operation"""
    status_code = 403


class AlreadyCancelledError(InventoryError):
    status_code = 409


class InvalidOperationError(InventoryError):
    """Raised when operation is not allowed in current state"""
    pass
