"""Processing fee estimates for dividend payouts"""
from decimal import Decimal, ROUND_HALF_UP

FEE_PERCENTAGE = Decimal("2.9")
FIXED_FEE_CENTS = 30
MAX_FEE_CENTS = 30_00


def calculate_dividend_fee_cents(amount_in_cents: int) -> int:
    """2.9% + 30 cents per dividend, capped at $30"""
    if amount_in_cents <= 0:
        return 0
    variable = (Decimal(amount_in_cents) * FEE_PERCENTAGE / Decimal(100)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return min(int(variable) + FIXED_FEE_CENTS, MAX_FEE_CENTS)
