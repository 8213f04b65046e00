"""
A cashier's POS terminal: one store, its stock snapshot, the cart and the
checkout in progress.
"""
import logging

from django.conf import settings

from .cart import Cart
from .checkout import (
    AWAITING_PAYMENT,
    CANCELLED,
    COMPLETED,
    FAILED,
    IDLE,
    REVIEWING,
    CheckoutOrchestrator,
)
from .exceptions import ValidationError
from .stock import StockLedgerView

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_MIN_LENGTH = 2


class PosTerminal:
    """
    Glue between the catalog, the cart and the checkout state machine.

    Every cart mutation goes through the orchestrator's in-flight check, so
    nothing can change the cart while a sale is being submitted.
    """

    def __init__(self, catalog_service, sales_service, credentials=None, store_id=None,
                 category_id='all', ledger=None, cart=None, orchestrator=None):
        self.catalog_service = catalog_service
        self.sales_service = sales_service
        self.credentials = credentials
        self.store_id = store_id
        self.category_id = category_id or 'all'
        self.ledger = ledger or StockLedgerView(store_id=store_id)
        self.cart = cart or Cart()
        self.orchestrator = orchestrator or CheckoutOrchestrator(
            self.cart, sales_service, store_id=store_id, credentials=credentials
        )

    @property
    def state(self):
        return self.orchestrator.state

    # ---------- catalog ----------

    def select_store(self, store_id, category_id='all'):
        """
        Switch the terminal to `store_id`. Changing store drops the cart, the
        discount and any unfinished checkout, then reloads the stock snapshot.
        """
        self.orchestrator.ensure_cart_editable()
        store_id = str(store_id)

        if store_id != self.store_id:
            logger.info(f"Terminal switching store {self.store_id} -> {store_id}; clearing cart")
            self.cart.clear()
            self._abandon_checkout()
            self.store_id = store_id
            self.orchestrator.store_id = store_id

        return self.refresh_stock(category_id)

    def refresh_stock(self, category_id=None):
        """
        Re-read the catalog for the active store and category. Cart lines for
        the listed products pick up the fresh stock figures.
        """
        if not self.store_id:
            raise ValidationError("Please select a store first")
        if category_id is not None:
            self.category_id = category_id or 'all'

        products = self.catalog_service.list_products(self.store_id, self.category_id)
        self.ledger = StockLedgerView(products, store_id=self.store_id)
        self.cart.sync_stock(self.ledger.products())
        logger.debug(f"Loaded {len(self.ledger)} products for store {self.store_id}")
        return self.ledger.products()

    def search(self, query):
        """
        Search the catalog. Short queries fall back to the category listing.
        Results are merged into the stock snapshot so they can be added to the cart.
        """
        if not self.store_id:
            raise ValidationError("Please select a store first")

        query = (query or '').strip()
        min_length = getattr(settings, 'POS_SEARCH_MIN_LENGTH', DEFAULT_SEARCH_MIN_LENGTH)
        if len(query) < min_length:
            return self.refresh_stock()

        products = self.catalog_service.search_products(self.store_id, query)
        self.ledger.merge(products)
        results = [self.ledger.get(p.get('product_id', p.get('id'))) for p in products]
        self.cart.sync_stock(results)
        return results

    def today_summary(self):
        if not self.store_id:
            raise ValidationError("Please select a store first")
        return self.sales_service.today_summary(self.store_id)

    # ---------- cart ----------

    def add_item(self, product_id):
        self.orchestrator.ensure_cart_editable()
        product = self.ledger.get(product_id)
        if product is None:
            raise ValidationError(f"Product {product_id} is not available in this store")
        return self.cart.add_item(product)

    def update_quantity(self, product_id, quantity):
        self.orchestrator.ensure_cart_editable()
        return self.cart.update_quantity(product_id, quantity)

    def remove_item(self, product_id):
        self.orchestrator.ensure_cart_editable()
        self.cart.remove_item(product_id)

    def clear(self):
        self.orchestrator.ensure_cart_editable()
        self.cart.clear()

    def apply_discount(self, type, value):
        self.orchestrator.ensure_cart_editable()
        return self.cart.apply_discount(type, value)

    def remove_discount(self):
        self.orchestrator.ensure_cart_editable()
        self.cart.remove_discount()

    def totals(self):
        return self.cart.totals()

    # ---------- checkout ----------

    def checkout(self, selection, recapture=False):
        """
        Run the checkout from wherever it currently is up to a recorded sale.

        Args:
            selection: PaymentSelection for this attempt
            recapture: When retrying a failed checkout, re-freeze the snapshot
                from the current cart instead of resubmitting the old one
        """
        orchestrator = self.orchestrator

        if orchestrator.state in (COMPLETED, CANCELLED):
            orchestrator.reset()
        if orchestrator.state == IDLE:
            orchestrator.review()
        if orchestrator.state == REVIEWING:
            orchestrator.begin_checkout()
        if orchestrator.state == FAILED:
            orchestrator.retry(recapture=recapture)
        elif recapture and orchestrator.state == AWAITING_PAYMENT:
            orchestrator.cancel()
            orchestrator.reset()
            orchestrator.review()
            orchestrator.begin_checkout()

        return orchestrator.submit(selection)

    def retry_checkout(self, recapture=False):
        return self.orchestrator.retry(recapture=recapture)

    def cancel_checkout(self):
        self.orchestrator.cancel()

    def _abandon_checkout(self):
        orchestrator = self.orchestrator
        if orchestrator.state in (REVIEWING, AWAITING_PAYMENT, FAILED):
            orchestrator.cancel()
        if orchestrator.state != IDLE:
            orchestrator.reset()

    # ---------- persistence ----------

    def to_dict(self):
        return {
            'store_id': self.store_id,
            'category_id': self.category_id,
            'ledger': self.ledger.to_dict(),
            'cart': self.cart.to_dict(),
            'checkout': self.orchestrator.to_dict(),
        }

    @classmethod
    def from_dict(cls, data, catalog_service, sales_service, credentials=None):
        data = data or {}
        cart = Cart.from_dict(data.get('cart'))
        orchestrator = CheckoutOrchestrator.from_dict(
            data.get('checkout'), cart, sales_service, credentials
        )
        store_id = data.get('store_id')
        orchestrator.store_id = store_id
        return cls(
            catalog_service,
            sales_service,
            credentials=credentials,
            store_id=store_id,
            category_id=data.get('category_id', 'all'),
            ledger=StockLedgerView.from_dict(data.get('ledger') or {}),
            cart=cart,
            orchestrator=orchestrator,
        )
