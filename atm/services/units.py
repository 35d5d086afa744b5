"""Conversions between wei and ether display strings."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext

from web3 import Web3

# Wide enough that large balances times a rate never round before the cents.
_PRECISION = 200
_CENT = Decimal("0.01")


def wei_to_ether(wei: int) -> Decimal:
    return Decimal(Web3.from_wei(int(wei), "ether"))


def format_ether(wei: int) -> str:
    """Render a wei amount as the shortest exact ether string ("1", "1.5")."""
    text = format(wei_to_ether(wei), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def parse_ether(text: str | int | Decimal) -> int:
    """Convert an ether amount into wei, rejecting negatives and sub-wei digits."""
    try:
        value = Decimal(str(text).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid ether amount: {text!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Invalid ether amount: {text!r}")
    if value < 0:
        raise ValueError("Ether amount cannot be negative.")
    wei = Web3.to_wei(value, "ether")
    if wei_to_ether(wei) != value:
        raise ValueError("Ether amount has more than 18 decimal places.")
    return wei


ONE_ETHER = parse_ether("1")


def usd_estimate(ether: Decimal, rate: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return (ether * rate).quantize(_CENT, rounding=ROUND_HALF_UP)


def format_usd(amount: Decimal) -> str:
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return f"${amount.quantize(_CENT, rounding=ROUND_HALF_UP)}"
