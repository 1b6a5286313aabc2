"""
Tests for wallet address validation.
"""

import pytest

from wallet_analysis.exceptions import ValidationError
from wallet_analysis.validation import is_valid_address, sanitize_address

from tests.conftest import WALLET


class TestAddressValidation:

    @pytest.mark.parametrize("address", [
        WALLET,
        WALLET.upper().replace("0X", "0x"),
        f"  {WALLET}\n",
    ])
    def test_valid(self, address):
        assert is_valid_address(address)
        assert sanitize_address(address) == WALLET

    @pytest.mark.parametrize("address", [
        "0x123",
        WALLET[2:],
        WALLET + "0",
        "0x" + "g" * 40,
        12345,
    ])
    def test_invalid(self, address):
        assert not is_valid_address(address)
        with pytest.raises(ValidationError) as exc_info:
            sanitize_address(address)
        assert exc_info.value.message == "Invalid wallet address format"

    @pytest.mark.parametrize("address", [None, "", "   "])
    def test_missing(self, address):
        with pytest.raises(ValidationError) as exc_info:
            sanitize_address(address)
        assert exc_info.value.message == "Wallet address is required"
