#!/usr/bin/env python3
"""
Decimal Precision Utilities for Ledger Calculations
Enforces consistent Decimal usage across all balance, stake and deposit amounts
"""

import logging
import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Union

logger = logging.getLogger(__name__)

# Set global decimal precision for financial calculations
getcontext().prec = 28

Number = Union[str, int, float, Decimal]


class MonetaryDecimal:
    """Enforces Decimal-only monetary operations with minor-unit precision"""

    MINOR_UNIT = Decimal("0.01")  # 2 decimal places for the unit of account
    MAX_AMOUNT = Decimal("999999999999")  # 999 billion limit

    @classmethod
    def to_decimal(cls, value: Number, context: str = "monetary") -> Decimal:
        """
        Convert a caller or gateway supplied number to Decimal.

        Unlike a lenient cast this raises ValueError for anything that is not a
        finite number, so a malformed amount can never become a silent zero.
        """
        if value is None or isinstance(value, bool):
            raise ValueError(f"{context}: amount is required")

        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"{context}: amount must be finite")

        try:
            # Convert to string first to avoid float precision issues
            decimal_value = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"{context}: {value!r} is not a number") from e

        if not decimal_value.is_finite():
            raise ValueError(f"{context}: amount must be finite")

        if abs(decimal_value) > cls.MAX_AMOUNT:
            logger.warning(f"Unusually large monetary value: {decimal_value} in context: {context}")
            raise ValueError(f"{context}: amount out of range")

        return decimal_value

    @classmethod
    def quantize(cls, amount: Number) -> Decimal:
        """Quantize amount to minor-unit precision (2 decimal places, half up)"""
        return cls.to_decimal(amount).quantize(cls.MINOR_UNIT, rounding=ROUND_HALF_UP)

    @classmethod
    def has_minor_unit_precision(cls, amount: Decimal) -> bool:
        """True when the amount carries no more than 2 decimal places"""
        return amount == amount.quantize(cls.MINOR_UNIT, rounding=ROUND_HALF_UP)

    @classmethod
    def multiply_precise(cls, amount: Number, multiplier: Number) -> Decimal:
        """Multiply with full precision, then round once to minor units"""
        result = cls.to_decimal(amount, "amount") * cls.to_decimal(multiplier, "multiplier")
        return result.quantize(cls.MINOR_UNIT, rounding=ROUND_HALF_UP)

    @classmethod
    def format_amount(cls, amount: Number) -> str:
        """Render an amount with exactly two decimals, e.g. for gateway payloads"""
        return f"{cls.quantize(amount):.2f}"


def to_money(value: Number, context: str = "amount") -> Decimal:
    """Parse a positive amount with at most two decimal places"""
    decimal_value = MonetaryDecimal.to_decimal(value, context)
    if decimal_value <= 0:
        raise ValueError(f"{context} must be greater than zero")
    if not MonetaryDecimal.has_minor_unit_precision(decimal_value):
        raise ValueError(f"{context} must have at most two decimal places")
    return decimal_value.quantize(MonetaryDecimal.MINOR_UNIT)


def quantize_money(value: Number) -> Decimal:
    """Round to two decimals, half up"""
    return MonetaryDecimal.quantize(value)
