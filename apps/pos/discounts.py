"""
Order-level discount rules.

`apply_discount` is a pure function of a point-in-time subtotal: it does not
watch the cart. Callers re-validate a stored discount before checkout.
"""
from decimal import Decimal

from .exceptions import ValidationError
from .money import ZERO, quantize, to_decimal

PERCENTAGE = 'percentage'
FIXED = 'fixed'

DISCOUNT_TYPES = [
    (PERCENTAGE, 'Percentage'),
    (FIXED, 'Fixed Amount'),
]

HUNDRED = Decimal('100')


class Discount:
    """An order discount as entered by the cashier."""

    def __init__(self, type, value):
        if type not in dict(DISCOUNT_TYPES):
            raise ValidationError(f"Invalid discount type: {type!r}")
        self.type = type
        self.value = to_decimal(value, 'discount value')

    def __eq__(self, other):
        if not isinstance(other, Discount):
            return NotImplemented
        return self.type == other.type and self.value == other.value

    def __repr__(self):
        return f"<Discount {self.type} {self.value}>"

    def to_dict(self):
        return {'type': self.type, 'value': str(self.value)}

    @classmethod
    def from_dict(cls, data):
        if not data or not data.get('type'):
            return None
        return cls(data['type'], data['value'])


class DiscountResult:
    """Outcome of applying a discount to a subtotal."""

    def __init__(self, discount_amount, discount=None):
        self.discount_amount = discount_amount
        self.discount = discount

    @property
    def discount_type(self):
        return self.discount.type if self.discount else None

    def to_dict(self):
        return {
            'discount_amount': str(self.discount_amount),
            'discount_type': self.discount_type,
        }


def apply_discount(subtotal, type=None, value=0):
    """
    Compute the discount amount for `subtotal`.

    Args:
        subtotal: Current cart subtotal
        type: 'percentage', 'fixed', or None/'none' to remove the discount
        value: Percentage (0-100) or fixed amount (0-subtotal)

    Returns:
        DiscountResult with the rounded discount amount

    Raises:
        ValidationError: value out of range or unknown type
    """
    subtotal = to_decimal(subtotal, 'subtotal')

    if type in (None, '', 'none'):
        return DiscountResult(ZERO)

    discount = Discount(type, value)

    if discount.type == PERCENTAGE:
        if discount.value < 0 or discount.value > HUNDRED:
            raise ValidationError("Percentage cannot exceed 100% or be negative")
        amount = quantize(subtotal * discount.value / HUNDRED)
    else:
        if discount.value < 0:
            raise ValidationError("Fixed discount cannot be negative")
        if discount.value > subtotal:
            raise ValidationError("Discount cannot exceed subtotal")
        amount = quantize(discount.value)

    return DiscountResult(amount, discount)
