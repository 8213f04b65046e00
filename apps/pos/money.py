"""
Currency helpers. All amounts are Decimal; rounding happens only when a value
leaves the engine (checkout snapshot, API output).
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .exceptions import ValidationError

CENT = Decimal('0.01')
ZERO = Decimal('0')


def to_decimal(value, field='amount'):
    """Coerce an int, str or Decimal into a Decimal. Floats go through str()."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f"Invalid {field}: {value!r}")
    if not result.is_finite():
        raise ValidationError(f"Invalid {field}: {value!r}")
    return result


def quantize(value):
    """Round to the cent."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
