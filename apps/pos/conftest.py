"""
Shared fixtures for the POS engine tests.
"""
from decimal import Decimal

import pytest

from apps.pos.cart import Cart
from apps.pos.services.auth import CredentialProvider
from apps.pos.services.base import BaseCatalogService, BaseSalesService, CheckoutResult
from apps.pos.stock import StockLedgerView

CATALOG = [
    {'id': 'p-1', 'name': 'Espresso Beans 1kg', 'default_price': '10.00', 'stock_quantity': 4},
    {'id': 'p-2', 'name': 'Paper Filters', 'default_price': '2.50', 'stock_quantity': 10},
    {'id': 'p-3', 'name': 'Milk Jug', 'default_price': '15.99', 'stock_quantity': 1},
    {'id': 'p-4', 'name': 'Sold Out Grinder', 'default_price': '89.00', 'stock_quantity': 0},
]


class FakeCatalogService(BaseCatalogService):
    """In-memory catalog; records the calls it receives."""

    def __init__(self, products=None):
        self.products = list(products if products is not None else CATALOG)
        self.calls = []

    def list_products(self, store_id, category_id='all'):
        self.calls.append(('list', store_id, category_id))
        return list(self.products)

    def search_products(self, store_id, query):
        self.calls.append(('search', store_id, query))
        return [p for p in self.products if query.lower() in p['name'].lower()]

    def list_stores(self):
        return [{'id': 'store-1', 'name': 'Main Street'}]


class FakeSalesService(BaseSalesService):
    """
    Records submitted payloads. Set `error` to make the next submission raise,
    or `on_submit` to run code while the orchestrator is submitting.
    """

    def __init__(self):
        self.payloads = []
        self.error = None
        self.on_submit = None
        self.receipt_counter = 0

    def submit_sale(self, payload):
        self.payloads.append(payload)
        if self.on_submit:
            self.on_submit(payload)
        if self.error:
            error, self.error = self.error, None
            raise error
        self.receipt_counter += 1
        return CheckoutResult(
            receipt_number=f"R-{self.receipt_counter:04d}",
            subtotal=Decimal(payload['subtotal']),
            discount_amount=Decimal(payload['discount_amount']),
            total=Decimal(payload['total_amount']),
            payment_method=payload['payment_method'],
            line_items=payload['line_items'],
            created_at='2026-10-19T10:00:00Z',
        )

    def today_summary(self, store_id):
        return {'sales': self.receipt_counter, 'total': Decimal('0'), 'items': 0}


@pytest.fixture
def catalog():
    return FakeCatalogService()


@pytest.fixture
def sales_service():
    return FakeSalesService()


@pytest.fixture
def credentials():
    return CredentialProvider('token-abc')


@pytest.fixture
def ledger():
    return StockLedgerView(CATALOG, store_id='store-1')


@pytest.fixture
def cart():
    return Cart()


@pytest.fixture
def cart_with_beans(cart, ledger):
    """One line: unit price 10.00, quantity 3, stock 4."""
    for _ in range(3):
        cart.add_item(ledger.get('p-1'))
    return cart
