"""
Wallet address validation.
"""

import re
from typing import Any

from wallet_analysis.exceptions import ValidationError


EVM_ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_valid_address(address: Any) -> bool:
    """True for a 20-byte hex address with 0x prefix."""
    return isinstance(address, str) and bool(EVM_ADDRESS_PATTERN.match(address.strip()))


def sanitize_address(address: Any) -> str:
    """
    Return the trimmed, lower-cased address.

    Raises:
        ValidationError: missing or malformed address
    """
    if address is None or (isinstance(address, str) and not address.strip()):
        raise ValidationError("Wallet address is required")

    if not is_valid_address(address):
        raise ValidationError(
            "Invalid wallet address format",
            address=str(address)[:64],
            details={"expected": "0x followed by 40 hex characters"},
        )

    return address.strip().lower()
