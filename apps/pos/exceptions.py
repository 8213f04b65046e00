"""
Exceptions raised by the POS cart and checkout engine.
Each error carries a machine readable `code` that the API layer returns as-is.
"""


class PosError(Exception):
    """Base class for all POS engine errors."""
    code = 'POS_ERROR'

    def __init__(self, message='', code=None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self):
        return {
            'error': self.message,
            'code': self.code,
        }


class StockLimitError(PosError):
    """A cart mutation would exceed the stock snapshot. The cart is unchanged."""
    code = 'STOCK_LIMIT'

    def __init__(self, product_id, requested, available, message=''):
        super().__init__(
            message or f"Cannot exceed available stock ({available}) for product {product_id}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ValidationError(PosError):
    """Discount, tender or quantity input out of range. Raised before any network call."""
    code = 'VALIDATION_ERROR'


class CheckoutStateError(PosError):
    """The requested checkout transition is not allowed from the current state."""
    code = 'INVALID_STATE'


class CheckoutInProgressError(CheckoutStateError):
    """A submission is already in flight for this checkout."""
    code = 'CHECKOUT_IN_PROGRESS'


class SubmissionError(PosError):
    """
    The sales service could not record the sale (network error, timeout,
    non-2xx response). Recoverable: retrying reuses the checkout snapshot.
    """
    code = 'SUBMISSION_FAILED'

    def __init__(self, message='', code=None, status_code=None, data=None):
        super().__init__(message, code)
        self.status_code = status_code
        self.data = data or {}


class StockConflictError(SubmissionError):
    """
    The sales service rejected the sale because stock moved since the local
    snapshot. The cart should be re-synced against the catalog before retrying.
    """
    code = 'STOCK_CONFLICT'


class AuthExpiredError(PosError):
    """The bearer credential was rejected. Re-authentication is required."""
    code = 'TOKEN_EXPIRED'


class CatalogError(PosError):
    """The catalog service could not be reached or returned garbage."""
    code = 'CATALOG_UNAVAILABLE'
