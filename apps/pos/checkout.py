"""
Checkout lifecycle for the POS terminal.

    idle -> reviewing -> awaiting_payment -> submitting -> completed
                                  ^              |
                                  +-- failed <---+
    cancelled: from any state except submitting/completed

Only one submission may be in flight at a time. A failed submission keeps the
cart, the discount, the checkout snapshot and the payment selection so the
cashier can retry without re-entering anything.
"""
import logging
import threading

from .discounts import apply_discount
from .exceptions import (
    AuthExpiredError,
    CheckoutInProgressError,
    CheckoutStateError,
    PosError,
    StockConflictError,
    StockLimitError,
    SubmissionError,
    ValidationError,
)
from .money import quantize, to_decimal
from .services.base import CheckoutResult
from .tender import resolve_cash

logger = logging.getLogger(__name__)

IDLE = 'idle'
REVIEWING = 'reviewing'
AWAITING_PAYMENT = 'awaiting_payment'
SUBMITTING = 'submitting'
COMPLETED = 'completed'
FAILED = 'failed'
CANCELLED = 'cancelled'

TRANSITIONS = {
    IDLE: {REVIEWING, CANCELLED},
    REVIEWING: {AWAITING_PAYMENT, CANCELLED},
    AWAITING_PAYMENT: {SUBMITTING, CANCELLED},
    SUBMITTING: {COMPLETED, FAILED},
    FAILED: {AWAITING_PAYMENT, CANCELLED},
    COMPLETED: {IDLE},
    CANCELLED: {IDLE},
}

CASH = 'cash'
CARD = 'card'
BANK_TRANSFER = 'bank_transfer'
E_WALLET = 'e_wallet'

PAYMENT_METHODS = [
    (CASH, 'Cash'),
    (CARD, 'Card'),
    (BANK_TRANSFER, 'Bank Transfer'),
    (E_WALLET, 'E-Wallet'),
]


class PaymentSelection:
    """Payment method, cash tendered and optional customer details for one checkout."""

    CUSTOMER_FIELDS = ('name', 'phone', 'notes')

    def __init__(self, method, tendered_amount=None, customer=None):
        if method not in dict(PAYMENT_METHODS):
            raise ValidationError(f"Invalid payment method: {method!r}")
        self.method = method

        if tendered_amount in (None, ''):
            self.tendered_amount = None
        else:
            self.tendered_amount = to_decimal(tendered_amount, 'tendered amount')
            if self.tendered_amount < 0:
                raise ValidationError("Tendered amount cannot be negative")

        if method == CASH and self.tendered_amount is None:
            raise ValidationError("Cash received is required for cash payments")

        customer = customer or {}
        self.customer = {
            field: (customer.get(field) or '').strip()
            for field in self.CUSTOMER_FIELDS
        }

    @property
    def is_cash(self):
        return self.method == CASH

    def to_dict(self):
        return {
            'method': self.method,
            'tendered_amount': str(self.tendered_amount) if self.tendered_amount is not None else None,
            'customer': dict(self.customer),
        }

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(data['method'], data.get('tendered_amount'), data.get('customer'))


class CheckoutSnapshot:
    """
    Frozen copy of the cart taken when checkout begins.
    Later cart edits do not change what gets submitted.
    """

    def __init__(self, store_id, lines, discount, subtotal, discount_amount, total, items_count):
        self.store_id = store_id
        self.lines = [dict(line) for line in lines]
        self.discount = dict(discount) if discount else None
        self.subtotal = quantize(subtotal)
        self.discount_amount = quantize(discount_amount)
        self.total = quantize(total)
        self.items_count = items_count

    @classmethod
    def capture(cls, cart, store_id=None):
        """
        Freeze `cart`. The stored discount is re-validated against the current
        subtotal first.

        Raises:
            ValidationError: the cart is empty or its discount no longer fits
            StockLimitError: a line holds more than its refreshed stock snapshot
        """
        if cart.is_empty():
            raise ValidationError("Cart is empty")
        for line in cart.lines:
            if line.quantity > line.available_stock:
                raise StockLimitError(line.product_id, line.quantity, line.available_stock)

        subtotal = cart.subtotal()
        if cart.discount is not None:
            result = apply_discount(subtotal, cart.discount.type, cart.discount.value)
        else:
            result = apply_discount(subtotal)

        subtotal = quantize(subtotal)
        total = max(subtotal - result.discount_amount, quantize(0))

        return cls(
            store_id=store_id,
            lines=[line.to_dict() for line in cart.lines],
            discount=cart.discount.to_dict() if cart.discount else None,
            subtotal=subtotal,
            discount_amount=result.discount_amount,
            total=total,
            items_count=cart.items_count(),
        )

    @property
    def discount_type(self):
        return self.discount['type'] if self.discount else None

    def line_items_payload(self):
        return [
            {
                'product_id': line['product_id'],
                'quantity': line['quantity'],
                'unit_price': str(quantize(line['unit_price'])),
                'line_discount_amount': str(quantize(line.get('line_discount_amount', 0))),
            }
            for line in self.lines
        ]

    def to_payload(self, selection):
        """Build the sales service request body."""
        return {
            'store_id': self.store_id,
            'line_items': self.line_items_payload(),
            'payment_method': selection.method,
            'subtotal': str(self.subtotal),
            'discount_amount': str(self.discount_amount),
            'discount_type': self.discount_type,
            'total_amount': str(self.total),
            'customer': dict(selection.customer),
        }

    def to_dict(self):
        return {
            'store_id': self.store_id,
            'lines': self.lines,
            'discount': self.discount,
            'subtotal': str(self.subtotal),
            'discount_amount': str(self.discount_amount),
            'total': str(self.total),
            'items_count': self.items_count,
        }

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(**data)


class CheckoutOrchestrator:
    """
    Drives one checkout from review to a recorded sale.

    Args:
        cart: The Cart being checked out
        sales_service: BaseSalesService used to record the sale
        store_id: Store the sale is recorded against
        credentials: Optional CredentialProvider; consulted before retrying
            after the backend rejected the token
    """

    def __init__(self, cart, sales_service, store_id=None, credentials=None):
        self.cart = cart
        self.sales_service = sales_service
        self.store_id = store_id
        self.credentials = credentials

        self.state = IDLE
        self.snapshot = None
        self.selection = None
        self.tender = None
        self.last_result = None
        self.last_error = None
        self.requires_reauth = False
        self.rejected_credential = ''
        self.history = []

        self._lock = threading.Lock()

    # ---------- helpers ----------

    @property
    def is_submitting(self):
        return self.state == SUBMITTING

    def can_transition(self, to_state):
        return to_state in TRANSITIONS.get(self.state, set())

    def _transition(self, to_state):
        if not self.can_transition(to_state):
            raise CheckoutStateError(f"Cannot move checkout from {self.state} to {to_state}")
        logger.info(f"Checkout {self.state} -> {to_state}")
        self.history.append((self.state, to_state))
        self.state = to_state

    def ensure_cart_editable(self):
        """Reject cart edits while a submission is in flight."""
        if self.state == SUBMITTING:
            raise CheckoutInProgressError("Cart cannot change while a sale is being submitted")

    # ---------- transitions ----------

    def review(self):
        """
        idle -> reviewing. Returns the cart totals shown to the cashier.

        Raises:
            ValidationError: the cart is empty
        """
        with self._lock:
            if self.state != IDLE:
                raise CheckoutStateError(f"Cannot review checkout in {self.state} state")
            if self.cart.is_empty():
                raise ValidationError("Cart is empty")
            totals = self.cart.totals()
            self._transition(REVIEWING)
        return totals

    def begin_checkout(self):
        """
        reviewing -> awaiting_payment. Freezes the cart into a checkout snapshot.

        Raises:
            ValidationError: the order discount no longer fits the subtotal
        """
        with self._lock:
            if self.state != REVIEWING:
                raise CheckoutStateError(f"Cannot begin checkout in {self.state} state")
            snapshot = CheckoutSnapshot.capture(self.cart, self.store_id)
            self.snapshot = snapshot
            self._transition(AWAITING_PAYMENT)
        return snapshot

    def submit(self, selection=None):
        """
        awaiting_payment -> submitting -> completed | failed.

        Args:
            selection: PaymentSelection; the previous selection is reused when omitted

        Returns:
            CheckoutResult from the sales service

        Raises:
            CheckoutInProgressError: another submission is in flight (no network call)
            ValidationError: missing selection or insufficient cash (no network call)
            StockConflictError / AuthExpiredError / SubmissionError: submission failed
        """
        with self._lock:
            if self.state == SUBMITTING:
                logger.warning("Rejected checkout submission: another submission is in flight")
                raise CheckoutInProgressError("A sale is already being submitted")
            if self.state != AWAITING_PAYMENT:
                raise CheckoutStateError(f"Cannot submit checkout in {self.state} state")

            selection = selection or self.selection
            if selection is None:
                raise ValidationError("Please select a payment method")

            tender = None
            if selection.is_cash:
                tender = resolve_cash(self.snapshot.total, selection.tendered_amount)
                if not tender.sufficient:
                    raise ValidationError(
                        f"Insufficient cash: {tender.shortfall} short of {tender.total}"
                    )

            self.selection = selection
            self.tender = tender
            self.last_error = None
            payload = self.snapshot.to_payload(selection)
            self._transition(SUBMITTING)

        try:
            result = self.sales_service.submit_sale(payload)
        except AuthExpiredError as e:
            self._fail(e, requires_reauth=True)
            raise
        except Exception as e:
            self._fail(e)
            raise

        with self._lock:
            self.last_result = result
            self._transition(COMPLETED)
            self.cart.clear()
            self.snapshot = None
            self.selection = None
        logger.info(f"Checkout completed: receipt {result.receipt_number}")
        return result

    def _fail(self, error, requires_reauth=False):
        with self._lock:
            self.last_error = error
            self.requires_reauth = requires_reauth
            if requires_reauth and self.credentials is not None:
                self.rejected_credential = self.credentials.fingerprint()
            self._transition(FAILED)
        if isinstance(error, StockConflictError):
            logger.warning(f"Checkout failed on stock conflict, catalog re-sync needed: {error}")
        elif isinstance(error, PosError):
            logger.warning(f"Checkout failed ({error.code}): {error}")
        else:
            logger.exception(f"Checkout failed with unexpected error: {error}")

    def _has_fresh_credentials(self):
        """True when a token other than the one the backend rejected is available."""
        if self.credentials is None or self.credentials.is_expired:
            return False
        return self.credentials.fingerprint() != self.rejected_credential

    def retry(self, recapture=False):
        """
        failed -> awaiting_payment, keeping the snapshot and payment selection.

        Args:
            recapture: Re-freeze the snapshot from the current cart, e.g. after
                the cart was re-synced following a stock conflict

        Raises:
            AuthExpiredError: the last attempt was rejected for an expired
                token and no fresh credential is available yet
        """
        with self._lock:
            if self.state != FAILED:
                raise CheckoutStateError(f"Cannot retry checkout in {self.state} state")
            if self.requires_reauth and not self._has_fresh_credentials():
                raise AuthExpiredError("Session expired. Please login again.")
            if recapture:
                self.snapshot = CheckoutSnapshot.capture(self.cart, self.store_id)
            self.requires_reauth = False
            self.rejected_credential = ''
            self._transition(AWAITING_PAYMENT)
        return self.snapshot

    def cancel(self):
        """Abandon the checkout attempt. The cart is left as it is."""
        with self._lock:
            if self.state == CANCELLED:
                return
            if self.state in (SUBMITTING, COMPLETED):
                raise CheckoutStateError(f"Cannot cancel checkout in {self.state} state")
            self._transition(CANCELLED)
            self.snapshot = None
            self.selection = None
            self.tender = None

    def reset(self):
        """completed/cancelled -> idle so the next sale can start."""
        with self._lock:
            if self.state == IDLE:
                return
            self._transition(IDLE)
            self.snapshot = None
            self.selection = None
            self.tender = None
            self.last_error = None
            self.requires_reauth = False
            self.rejected_credential = ''

    # ---------- persistence ----------

    def to_dict(self):
        return {
            'state': self.state,
            'store_id': self.store_id,
            'snapshot': self.snapshot.to_dict() if self.snapshot else None,
            'selection': self.selection.to_dict() if self.selection else None,
            'last_result': self.last_result.to_dict() if self.last_result else None,
            'last_error': self.last_error.to_dict() if isinstance(self.last_error, PosError) else None,
            'requires_reauth': self.requires_reauth,
            'rejected_credential': self.rejected_credential,
        }

    @classmethod
    def from_dict(cls, data, cart, sales_service, credentials=None):
        data = data or {}
        orchestrator = cls(cart, sales_service, data.get('store_id'), credentials)
        orchestrator.state = data.get('state', IDLE)
        orchestrator.snapshot = CheckoutSnapshot.from_dict(data.get('snapshot'))
        orchestrator.selection = PaymentSelection.from_dict(data.get('selection'))
        orchestrator.last_result = CheckoutResult.from_dict(data.get('last_result'))
        orchestrator.requires_reauth = data.get('requires_reauth', False)
        orchestrator.rejected_credential = data.get('rejected_credential', '')

        error = data.get('last_error')
        if error:
            orchestrator.last_error = _restore_error(error)

        if orchestrator.state == SUBMITTING:
            # A saved terminal is only ever written after the submission resolved.
            orchestrator.state = FAILED
            orchestrator.last_error = SubmissionError("Previous submission was interrupted")
        return orchestrator


def _restore_error(data):
    code = data.get('code')
    message = data.get('error', '')
    if code == StockConflictError.code:
        return StockConflictError(message)
    if code == AuthExpiredError.code or code == 'INVALID_TOKEN':
        return AuthExpiredError(message, code=code)
    return SubmissionError(message, code=code)
