"""
Money Helpers Module

Decimal conversion, cent rounding and the category sign convention.
NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Optional
import re

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0')

INCOME = "INCOME"
EXPENSE = "EXPENSE"
DEBT = "DEBT"


def to_decimal(value: Any) -> Decimal:
    """
    Convert user or storage input to Decimal

    Accepts Decimal, int and numeric strings (currency symbols, spaces and
    thousands separators are stripped). Floats go through str() so binary
    noise never leaks into amounts.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError(f"Cannot convert {value!r} to Decimal")
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str) and value.strip():
        clean_value = re.sub(r'[^\d.,\-+eE]', '', value.strip())
        if ',' in clean_value and '.' in clean_value:
            clean_value = clean_value.replace(',', '')
        elif clean_value.count(',') == 1 and len(clean_value.split(',')[1]) <= 2:
            clean_value = clean_value.replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')
        try:
            result = Decimal(clean_value)
        except InvalidOperation:
            raise ValidationError(f"Cannot convert '{value}' to Decimal")
    else:
        raise ValidationError(f"Cannot convert {value!r} to Decimal")

    if not result.is_finite():
        raise ValidationError(f"Amount must be finite, got {value!r}")
    return result


def quantize(value: Decimal) -> Decimal:
    """Round to cents using ROUND_HALF_UP"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def optional_decimal(value: Optional[str]) -> Optional[Decimal]:
    """Decode an optional stored decimal string"""
    if value is None or value == "":
        return None
    return Decimal(value)


def normalize_category(category: str) -> str:
    """Categories are stored upper-case (INCOME, EXPENSE, DEBT, ...)"""
    if not category or not str(category).strip():
        raise ValidationError("Category is required")
    return str(category).strip().upper()


def signed_amount(category: str, magnitude: Decimal) -> Decimal:
    """
    Apply the ledger sign convention.

    INCOME is the only positive category; everything else (expenses, debt
    payments, savings transfers out) reduces the balance. Every posting and
    reversal goes through this function.
    """
    amount = abs(to_decimal(magnitude))
    if normalize_category(category) == INCOME:
        return amount
    return -amount


def flip_category(category: str) -> str:
    """Category whose sign is opposite to the given one"""
    return EXPENSE if normalize_category(category) == INCOME else INCOME
