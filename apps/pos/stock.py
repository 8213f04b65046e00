"""
Read-only stock snapshot used to constrain cart quantities.
"""
from .exceptions import ValidationError
from .money import to_decimal


class ProductSnapshot:
    """A product as the catalog reported it when the ledger was loaded."""

    def __init__(self, product_id, name, unit_price, available_stock, image_ref=''):
        self.product_id = str(product_id)
        self.name = name
        self.unit_price = to_decimal(unit_price, 'unit price')
        self.available_stock = int(available_stock)
        self.image_ref = image_ref or ''

        if self.unit_price < 0:
            raise ValidationError(f"Unit price cannot be negative for product {product_id}")
        if self.available_stock < 0:
            self.available_stock = 0

    @classmethod
    def from_dict(cls, data):
        """
        Build a snapshot from a catalog row.

        The catalog has used both `id`/`default_price`/`stock_quantity`/`image_url`
        and `product_id`/`unit_price`/`available_stock`/`image_ref`; accept either.
        """
        product_id = data.get('product_id', data.get('id'))
        if product_id in (None, ''):
            raise ValidationError("Catalog product is missing an id")

        unit_price = data.get('unit_price', data.get('default_price', 0))
        stock = data.get('available_stock', data.get('stock_quantity', 0))
        try:
            stock = int(float(stock or 0))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid stock quantity for product {product_id}: {stock!r}")

        return cls(
            product_id=product_id,
            name=data.get('name', ''),
            unit_price=unit_price if unit_price is not None else 0,
            available_stock=stock,
            image_ref=data.get('image_ref', data.get('image_url', '')),
        )

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'name': self.name,
            'unit_price': str(self.unit_price),
            'available_stock': self.available_stock,
            'image_ref': self.image_ref,
        }

    def __repr__(self):
        return f"<ProductSnapshot {self.product_id} {self.name!r} @ {self.unit_price} x{self.available_stock}>"


class StockLedgerView:
    """
    Snapshot of `{product_id -> (available_stock, unit_price)}` for one store.

    The cart reads from it but never writes to it; `refresh()` swaps the whole
    snapshot when the catalog is re-read.
    """

    def __init__(self, products=None, store_id=None):
        self.store_id = store_id
        self._products = {}
        if products:
            self.refresh(products)

    def refresh(self, products):
        """Replace the snapshot with a fresh catalog listing."""
        snapshot = {}
        for product in products:
            if not isinstance(product, ProductSnapshot):
                product = ProductSnapshot.from_dict(product)
            snapshot[product.product_id] = product
        self._products = snapshot

    def merge(self, products):
        """Add or overwrite individual products, e.g. from a search result."""
        for product in products:
            if not isinstance(product, ProductSnapshot):
                product = ProductSnapshot.from_dict(product)
            self._products[product.product_id] = product

    def get(self, product_id):
        return self._products.get(str(product_id))

    def available_stock(self, product_id):
        product = self.get(product_id)
        return product.available_stock if product else 0

    def unit_price(self, product_id):
        product = self.get(product_id)
        return product.unit_price if product else None

    def products(self):
        return list(self._products.values())

    def __contains__(self, product_id):
        return str(product_id) in self._products

    def __len__(self):
        return len(self._products)

    def to_dict(self):
        return {
            'store_id': self.store_id,
            'products': [p.to_dict() for p in self._products.values()],
        }

    @classmethod
    def from_dict(cls, data):
        return cls(products=data.get('products', []), store_id=data.get('store_id'))
