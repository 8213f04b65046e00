"""
Cash tender calculation.
"""
from .exceptions import ValidationError
from .money import ZERO, quantize, to_decimal


class TenderResult:
    """Change due for a cash payment."""

    def __init__(self, total, tendered, change):
        self.total = total
        self.tendered = tendered
        self.change = change

    @property
    def sufficient(self):
        return self.change >= ZERO

    @property
    def shortfall(self):
        return -self.change if self.change < ZERO else ZERO

    def __bool__(self):
        return self.sufficient

    def to_dict(self):
        return {
            'total': str(self.total),
            'tendered': str(self.tendered),
            'change': str(self.change),
            'sufficient': self.sufficient,
        }


def resolve_cash(total, tendered):
    """
    Compute the change due when `tendered` cash is handed over for `total`.

    Raises:
        ValidationError: negative or non-numeric amounts
    """
    total = to_decimal(total, 'total')
    tendered = to_decimal(tendered, 'tendered amount')

    if tendered < 0:
        raise ValidationError("Tendered amount cannot be negative")
    if total < 0:
        raise ValidationError("Total cannot be negative")

    return TenderResult(
        total=quantize(total),
        tendered=quantize(tendered),
        change=quantize(tendered - total),
    )
