"""Token unit and duration helpers.

Settlement amounts are integers in the token's smallest unit. Human-readable
amounts are parsed with Decimal so no binary floating point ever touches a
value that ends up in a voucher.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Union

USDC_DECIMALS = 6

_DURATION_RE = re.compile(r"^(\d+)(s|m|h|d)$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_units(amount: Union[str, int, Decimal], decimals: int = USDC_DECIMALS) -> int:
    """Parse a decimal amount ("10.50") into smallest units (10_500_000)."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid amount: {amount!r}")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount!r} has more than {decimals} decimals")
    return int(scaled)


def format_units(value: int, decimals: int = USDC_DECIMALS) -> str:
    """Format smallest units as a plain decimal string without trailing zeros."""
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 10**decimals)
    if not frac:
        return f"{sign}{whole}"
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac_str}"


def parse_usdc(amount: Union[str, int, Decimal]) -> int:
    return parse_units(amount, USDC_DECIMALS)


def format_usdc(value: int) -> str:
    return format_units(value, USDC_DECIMALS)


def parse_duration(duration: Union[int, str]) -> int:
    """Parse seconds or a "<n>s|m|h|d" string ("24h", "7d") into seconds."""
    if isinstance(duration, int) and not isinstance(duration, bool):
        if duration <= 0:
            raise ValueError("Duration must be positive")
        return duration
    if isinstance(duration, str):
        if duration.isdigit():
            return parse_duration(int(duration))
        match = _DURATION_RE.match(duration.strip())
        if match:
            seconds = int(match.group(1)) * _DURATION_UNITS[match.group(2)]
            if seconds <= 0:
                raise ValueError("Duration must be positive")
            return seconds
    raise ValueError(f"Invalid duration format: {duration!r}")
