"""Token amount formatting and parsing (fixed-decimal minor units)."""

from stablecoin_kernel.errors import KernelError

DEFAULT_DECIMALS = 6


class AmountFormatError(KernelError, ValueError):
    """A textual amount could not be parsed."""


def format_token_amount(amount: int, decimals: int = DEFAULT_DECIMALS, grouping: bool = True) -> str:
    """
    Render minor units as a decimal string.

    Trailing fractional zeros are dropped; ``grouping`` adds thousands
    separators to the integer part (display only, parse_token_amount
    accepts them back).
    """
    if amount < 0:
        raise AmountFormatError(f"Negative amount: {amount}")
    divisor = 10 ** decimals
    integer_part, fractional_part = divmod(amount, divisor)
    integer_str = f"{integer_part:,}" if grouping else str(integer_part)
    if fractional_part == 0:
        return integer_str
    fractional_str = str(fractional_part).rjust(decimals, "0").rstrip("0")
    return f"{integer_str}.{fractional_str}"


def parse_token_amount(text: str, decimals: int = DEFAULT_DECIMALS) -> int:
    """Parse a decimal string into minor units. Excess precision is an error."""
    cleaned = text.strip().replace(",", "")
    if not cleaned:
        raise AmountFormatError("Empty amount")
    integer_str, _, fractional_str = cleaned.partition(".")
    integer_str = integer_str or "0"
    if not integer_str.isdigit() or (fractional_str and not fractional_str.isdigit()):
        raise AmountFormatError(f"Invalid amount: {text!r}")
    if len(fractional_str.rstrip("0")) > decimals:
        raise AmountFormatError(f"Amount {text!r} exceeds {decimals} decimals")
    fractional_str = fractional_str[:decimals].ljust(decimals, "0")
    return int(integer_str) * 10 ** decimals + int(fractional_str or "0")
