# shadowsettle/services/units.py
import re
from decimal import Decimal, InvalidOperation
from typing import Union

from web3 import Web3

from shadowsettle.errors import ValidationError

USDC_DECIMALS = 6
DISPLAY_DECIMALS = 2

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

Amount = Union[int, float, str, Decimal]


def normalize_address(addr) -> str:
    """
    EIP-55 checksum form. Inputs may come with mixed casing from the
    frontend or the TEE, so casing is dropped before checksumming.
    """
    s = str(addr or "").strip()
    if not _ADDRESS_RE.match(s):
        raise ValidationError(f"Invalid address: {s}")
    return Web3.to_checksum_address(s.lower())


def to_base_units(amount: Amount, decimals: int = USDC_DECIMALS) -> int:
    """Human amount (12.34) to the token's fixed-point integer (12340000)."""
    if isinstance(amount, bool):
        raise ValidationError(f"Invalid amount: {amount}")
    try:
        # str() first so floats keep their shortest repr (12.34, not 12.339999...)
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {amount}")
    if not value.is_finite() or value < 0:
        raise ValidationError(f"Invalid amount: {amount}")

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValidationError(f"Invalid amount: {amount} (more than {decimals} decimals)")
    return int(scaled)


def from_base_units(raw: Union[int, str], decimals: int = USDC_DECIMALS) -> str:
    """Exact inverse of to_base_units: 12340000 -> '12.34'."""
    value = Decimal(int(raw)).scaleb(-decimals)
    text = format(value.normalize(), "f")
    return text


def format_display(raw: Union[int, str], decimals: int = USDC_DECIMALS) -> str:
    """
    Display string for a fixed-point balance: grouped whole part and the
    fractional part truncated (not rounded) to two digits. 1234567890 -> '1,234.56'
    """
    raw = int(raw)
    unit = 10 ** decimals
    whole, frac = divmod(raw, unit)
    frac_str = str(frac).zfill(decimals)[:DISPLAY_DECIMALS]
    return f"{whole:,}.{frac_str}"


def to_attestation_bytes(attestation) -> bytes:
    if not isinstance(attestation, str) or not attestation.startswith("0x"):
        raise ValidationError("Invalid attestation: must be 0x-prefixed hex string")
    try:
        data = Web3.to_bytes(hexstr=attestation)
    except (ValueError, TypeError):
        raise ValidationError("Invalid attestation: must be 0x-prefixed hex string")
    if not data:
        raise ValidationError("Invalid attestation: empty")
    return data
