"""
credit.py - Credit estimation

PURE FUNCTIONS - every input is explicit, no ledger access:

    credit = floor(collateral_amount * price / PRICE_SCALE * loan_to_value)

The result is truncated toward zero to whole borrowed-asset units, so the
pool never lends a fraction more than the collateral supports.
"""

from decimal import Decimal, ROUND_DOWN

from .core import InsufficientLiquidity, to_quantity
from .oracle import PRICE_SCALE


def calculate_credit(
    collateral_amount: Decimal,
    price: Decimal,
    loan_to_value: Decimal,
) -> Decimal:
    """
    Convert collateral into the maximum loan it supports.

    Args:
        collateral_amount: Collateral units offered
        price: Scaled oracle price (borrowed units per collateral unit * PRICE_SCALE)
        loan_to_value: Fraction of collateral value that may be borrowed

    Returns:
        Whole borrowed-asset units, truncated toward zero.

    Example:
        >>> calculate_credit(Decimal("1000000"), Decimal(10 ** 8), Decimal("0.5"))
        Decimal('500000')
    """
    value = collateral_amount * price / Decimal(PRICE_SCALE)
    return (value * loan_to_value).quantize(Decimal(1), rounding=ROUND_DOWN)


def estimate_credit(
    collateral_amount: Decimal,
    price: Decimal,
    loan_to_value: Decimal,
    available_liquidity: Decimal,
) -> Decimal:
    """
    Compute the credit for a collateral amount, bounded by pool liquidity.

    Raises:
        ValueError: If collateral_amount is not a positive whole amount.
        InsufficientLiquidity: If the credit exceeds available_liquidity.
    """
    collateral_amount = to_quantity(collateral_amount, "collateral_amount")
    credit = calculate_credit(collateral_amount, price, loan_to_value)
    if credit > available_liquidity:
        raise InsufficientLiquidity(
            f"Insufficient available balance: credit {credit} exceeds "
            f"available liquidity {available_liquidity}"
        )
    return credit
