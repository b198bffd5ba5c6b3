"""Credit arithmetic.

All credit amounts are Decimals rounded to 2 places after every arithmetic
step, so float drift never accumulates across many transactions. The wallet
floor is 0 with a half-cent tolerance.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CREDIT_QUANTUM = Decimal("0.01")
ZERO = Decimal("0.00")
BALANCE_TOLERANCE = Decimal("0.005")


def round_credits(value: Decimal) -> Decimal:
    """Round to 2 decimals, half-up."""
    return value.quantize(CREDIT_QUANTUM, rounding=ROUND_HALF_UP)


def parse_credits(value: object) -> Decimal:
    """Parse a credit amount from a number or string ("4", "4.5", "4,50").

    Raises ValueError on anything that is not a finite number.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"Not a credit amount: {value!r}")
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, float):
        parsed = Decimal(str(value))
    else:
        normalized = str(value).strip().replace(",", ".")
        if not normalized:
            raise ValueError("Empty credit amount")
        try:
            parsed = Decimal(normalized)
        except InvalidOperation:
            raise ValueError(f"Not a credit amount: {value!r}") from None
    if not parsed.is_finite():
        raise ValueError(f"Not a finite credit amount: {value!r}")
    return round_credits(parsed)


def is_below_floor(balance: Decimal) -> bool:
    """True when a balance is observably negative (beyond rounding tolerance)."""
    return balance < -BALANCE_TOLERANCE


def credits_to_float(value: Decimal | None) -> float | None:
    """JSON-facing number for a 2-decimal credit amount."""
    if value is None:
        return None
    return float(round_credits(value))


def credits_to_display(value: Decimal) -> str:
    """6 -> '6.00 credits', 1234.5 -> '1,234.50 credits'."""
    return f"{round_credits(value):,.2f} credits"
