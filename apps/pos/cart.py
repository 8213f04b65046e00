"""
Cart store for the POS terminal.
Owns the line items and the order discount; totals are derived on demand.
"""
import logging
from decimal import Decimal

from .discounts import Discount, apply_discount
from .exceptions import StockLimitError, ValidationError
from .money import ZERO, quantize, to_decimal
from .stock import ProductSnapshot

logger = logging.getLogger(__name__)


class CartLine:
    """
    One product in the cart.
    `unit_price` is a snapshot taken when the line was created; `available_stock`
    is refreshed on every add and catalog re-sync.
    """

    def __init__(self, product_id, name, unit_price, available_stock, quantity=1,
                 line_discount_amount=ZERO, image_ref=''):
        self.product_id = str(product_id)
        self.name = name
        self._unit_price = to_decimal(unit_price, 'unit price')
        self.available_stock = int(available_stock)
        self.quantity = int(quantity)
        self.line_discount_amount = to_decimal(line_discount_amount, 'line discount')
        self.image_ref = image_ref or ''

    @property
    def unit_price(self):
        return self._unit_price

    @property
    def gross_amount(self):
        return self._unit_price * self.quantity

    @property
    def line_total(self):
        return self.gross_amount - self.line_discount_amount

    def copy(self):
        return CartLine(
            product_id=self.product_id,
            name=self.name,
            unit_price=self._unit_price,
            available_stock=self.available_stock,
            quantity=self.quantity,
            line_discount_amount=self.line_discount_amount,
            image_ref=self.image_ref,
        )

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'name': self.name,
            'unit_price': str(self._unit_price),
            'quantity': self.quantity,
            'available_stock': self.available_stock,
            'line_discount_amount': str(self.line_discount_amount),
            'image_ref': self.image_ref,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            product_id=data['product_id'],
            name=data.get('name', ''),
            unit_price=data['unit_price'],
            available_stock=data.get('available_stock', 0),
            quantity=data.get('quantity', 1),
            line_discount_amount=data.get('line_discount_amount', ZERO),
            image_ref=data.get('image_ref', ''),
        )

    def __eq__(self, other):
        if not isinstance(other, CartLine):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"<CartLine {self.product_id} x{self.quantity} @ {self._unit_price}>"


class CartTotals:
    """Derived totals for a cart. Amounts are rounded to the cent."""

    def __init__(self, subtotal, discount_amount, items_count, discount=None, discount_error=''):
        self.subtotal = quantize(subtotal)
        self.discount_amount = quantize(discount_amount)
        self.total = max(self.subtotal - self.discount_amount, ZERO)
        self.items_count = items_count
        self.discount = discount
        self.discount_error = discount_error

    @property
    def discount_type(self):
        return self.discount.type if self.discount else None

    @property
    def discount_valid(self):
        return not self.discount_error

    def to_dict(self):
        return {
            'subtotal': str(self.subtotal),
            'discount_amount': str(self.discount_amount),
            'discount_type': self.discount_type,
            'discount_value': str(self.discount.value) if self.discount else None,
            'discount_error': self.discount_error,
            'total': str(self.total),
            'items_count': self.items_count,
        }


class Cart:
    """
    Ordered collection of CartLines keyed by product id, plus one order discount.

    Mutators either succeed completely or raise and leave the cart untouched.
    """

    def __init__(self, lines=None, discount=None):
        self._lines = {}
        for line in lines or []:
            self._lines[line.product_id] = line
        self.discount = discount

    # ---------- read access ----------

    @property
    def lines(self):
        return list(self._lines.values())

    def get_line(self, product_id):
        return self._lines.get(str(product_id))

    def is_empty(self):
        return not self._lines

    def __len__(self):
        return len(self._lines)

    def __contains__(self, product_id):
        return str(product_id) in self._lines

    # ---------- mutators ----------

    def add_item(self, product):
        """
        Add one unit of `product` (a ProductSnapshot or catalog dict).

        Raises:
            StockLimitError: one more unit would exceed the stock snapshot
        """
        if not isinstance(product, ProductSnapshot):
            product = ProductSnapshot.from_dict(product)

        line = self._lines.get(product.product_id)
        if line is None:
            if product.available_stock < 1:
                raise StockLimitError(product.product_id, 1, product.available_stock)
            self._lines[product.product_id] = CartLine(
                product_id=product.product_id,
                name=product.name,
                unit_price=product.unit_price,
                available_stock=product.available_stock,
                quantity=1,
                image_ref=product.image_ref,
            )
            logger.debug(f"Added product {product.product_id} to cart")
            return self._lines[product.product_id]

        line.available_stock = product.available_stock
        if line.quantity + 1 > line.available_stock:
            raise StockLimitError(line.product_id, line.quantity + 1, line.available_stock)

        line.quantity += 1
        return line

    def update_quantity(self, product_id, new_quantity):
        """
        Set the quantity of a line. Zero removes the line, and is a no-op when
        the product is not in the cart.

        Raises:
            ValidationError: negative or non-integer quantity, or a non-zero
                quantity for a product not in the cart
            StockLimitError: quantity above the stock snapshot
        """
        product_id = str(product_id)
        line = self._lines.get(product_id)

        if isinstance(new_quantity, bool):
            raise ValidationError(f"Invalid quantity: {new_quantity!r}")
        try:
            quantity = int(new_quantity)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid quantity: {new_quantity!r}")
        if quantity != new_quantity and str(quantity) != str(new_quantity):
            raise ValidationError(f"Quantity must be a whole number: {new_quantity!r}")
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative")

        if quantity == 0:
            self._lines.pop(product_id, None)
            return None

        if line is None:
            raise ValidationError(f"Product {product_id} is not in the cart")
        if quantity > line.available_stock:
            raise StockLimitError(product_id, quantity, line.available_stock)
        if line.line_discount_amount > line.unit_price * quantity:
            raise ValidationError("Line discount would exceed the line amount")

        line.quantity = quantity
        return line

    def sync_stock(self, products):
        """
        Refresh the stock snapshot of lines from fresh catalog rows. Quantities
        are left as they are, so a line may now exceed its stock; checkout
        rejects such a cart until it is corrected.
        """
        for product in products:
            if not isinstance(product, ProductSnapshot):
                product = ProductSnapshot.from_dict(product)
            line = self._lines.get(product.product_id)
            if line is not None:
                line.available_stock = product.available_stock

    def remove_item(self, product_id):
        """Remove a line. No-op when the product is not in the cart."""
        self._lines.pop(str(product_id), None)

    def set_line_discount(self, product_id, amount):
        """Set the per-line discount, bounded by the line's gross amount."""
        line = self._lines.get(str(product_id))
        if line is None:
            raise ValidationError(f"Product {product_id} is not in the cart")
        amount = to_decimal(amount, 'line discount')
        if amount < 0 or amount > line.gross_amount:
            raise ValidationError("Line discount must be between 0 and the line amount")
        line.line_discount_amount = quantize(amount)
        return line

    def clear(self):
        """Empty the cart and drop the order discount."""
        self._lines = {}
        self.discount = None

    # ---------- discount ----------

    def apply_discount(self, type, value):
        """
        Validate a discount against the current subtotal and store it.
        A type of None removes the discount.
        """
        result = apply_discount(self.subtotal(), type, value)
        self.discount = result.discount
        return result

    def remove_discount(self):
        self.discount = None

    def validate_discount(self):
        """
        Re-check the stored discount against the current subtotal.

        Raises:
            ValidationError: the discount no longer fits (e.g. the cart shrank)
        """
        if self.discount is None:
            return apply_discount(self.subtotal())
        return apply_discount(self.subtotal(), self.discount.type, self.discount.value)

    # ---------- derived ----------

    def subtotal(self):
        return sum((line.line_total for line in self._lines.values()), Decimal('0'))

    def items_count(self):
        return sum(line.quantity for line in self._lines.values())

    def totals(self):
        """
        Compute subtotal, discount, total and item count.
        Pure: never mutates the cart. A stored discount that no longer fits the
        subtotal is reported through `discount_error` and not applied.
        """
        subtotal = self.subtotal()
        discount_amount = ZERO
        discount_error = ''
        try:
            discount_amount = self.validate_discount().discount_amount
        except ValidationError as e:
            discount_error = e.message

        return CartTotals(
            subtotal=subtotal,
            discount_amount=discount_amount,
            items_count=self.items_count(),
            discount=self.discount,
            discount_error=discount_error,
        )

    # ---------- persistence ----------

    def copy(self):
        return Cart(lines=[line.copy() for line in self._lines.values()], discount=self.discount)

    def to_dict(self):
        return {
            'lines': [line.to_dict() for line in self._lines.values()],
            'discount': self.discount.to_dict() if self.discount else None,
        }

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            lines=[CartLine.from_dict(line) for line in data.get('lines', [])],
            discount=Discount.from_dict(data.get('discount')),
        )
