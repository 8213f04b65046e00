"""
Base interfaces for the services the POS engine depends on.
The catalog and the sales service live on the backend; implement these
classes to plug in a different transport.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional

from ..money import quantize


class CheckoutResult:
    """A recorded sale as returned by the sales service. Read-only once built."""

    _frozen = False

    def __init__(
        self,
        receipt_number: str,
        subtotal: Decimal,
        discount_amount: Decimal,
        total: Decimal,
        payment_method: str,
        line_items: Optional[List[Dict]] = None,
        created_at: str = '',
        sale: Optional[Dict] = None
    ):
        self.receipt_number = receipt_number
        self.subtotal = quantize(subtotal)
        self.discount_amount = quantize(discount_amount)
        self.total = quantize(total)
        self.payment_method = payment_method
        self.line_items = tuple(dict(item) for item in (line_items or []))
        self.created_at = created_at
        self.sale = dict(sale or {})
        self._frozen = True

    def __setattr__(self, name, value):
        if self._frozen:
            raise AttributeError(f"CheckoutResult is read-only (tried to set {name!r})")
        super().__setattr__(name, value)

    @classmethod
    def from_response(cls, data: Dict, payload: Optional[Dict] = None) -> 'CheckoutResult':
        """
        Build a result from the sales service response `{receipt_number, sale}`.

        Args:
            data: Decoded response body
            payload: The submitted sale; fills in anything the response leaves out
        """
        sale = data.get('sale') or {}
        payload = payload or {}
        receipt_number = data.get('receipt_number') or sale.get('receipt_number', '')

        def pick(*keys, default=None):
            for key in keys:
                if sale.get(key) not in (None, ''):
                    return sale[key]
            return default

        return cls(
            receipt_number=receipt_number,
            subtotal=pick('subtotal', default=payload.get('subtotal', 0)),
            discount_amount=pick('discount_amount', default=payload.get('discount_amount', 0)),
            total=pick('total_amount', 'total', default=payload.get('total_amount', 0)),
            payment_method=pick('payment_method', default=payload.get('payment_method', '')),
            line_items=pick('sales_items', 'line_items', 'items', default=payload.get('line_items', [])),
            created_at=pick('created_at', default=''),
            sale=sale,
        )

    def to_dict(self):
        return {
            'receipt_number': self.receipt_number,
            'subtotal': str(self.subtotal),
            'discount_amount': str(self.discount_amount),
            'total': str(self.total),
            'payment_method': self.payment_method,
            'line_items': [dict(item) for item in self.line_items],
            'created_at': self.created_at,
            'sale': self.sale,
        }

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            receipt_number=data['receipt_number'],
            subtotal=data['subtotal'],
            discount_amount=data['discount_amount'],
            total=data['total'],
            payment_method=data.get('payment_method', ''),
            line_items=data.get('line_items', []),
            created_at=data.get('created_at', ''),
            sale=data.get('sale'),
        )


class BaseCatalogService(ABC):
    """Read-only product catalog for a store."""

    @abstractmethod
    def list_products(self, store_id, category_id='all') -> List[Dict]:
        """
        List products for a store, optionally filtered by category.

        Returns:
            List of `{product_id, name, unit_price, available_stock, image_ref}` dicts
        """
        pass

    @abstractmethod
    def search_products(self, store_id, query: str) -> List[Dict]:
        """Free-text product search within a store."""
        pass

    def list_stores(self) -> List[Dict]:
        return []

    def list_categories(self) -> List[Dict]:
        return []


class BaseSalesService(ABC):
    """The remote service that records completed sales."""

    @abstractmethod
    def submit_sale(self, payload: Dict) -> CheckoutResult:
        """
        Record a sale.

        Args:
            payload: Checkout submission body (see CheckoutSnapshot.to_payload)

        Returns:
            CheckoutResult on success

        Raises:
            StockConflictError: stock moved since the cart snapshot
            AuthExpiredError: the bearer credential was rejected
            SubmissionError: any other failure
        """
        pass

    def today_summary(self, store_id) -> Dict:
        return {'sales': 0, 'total': Decimal('0'), 'items': 0}
