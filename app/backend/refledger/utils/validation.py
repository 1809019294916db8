"""
Validation of user-supplied values.
"""

import re

from refledger.core.exceptions import InvalidWalletError

# User-friendly TON address: bounceable (EQ) or non-bounceable (UQ), base64url
TON_WALLET_PATTERN = re.compile(r"^(UQ|EQ)[A-Za-z0-9_-]{46}$")


class WalletValidator:
    """Validator for TON payout addresses."""

    @staticmethod
    def is_valid_wallet(address: str) -> bool:
        if not address:
            return False
        return TON_WALLET_PATTERN.match(address.strip()) is not None

    @staticmethod
    def validate_wallet(address: str) -> str:
        """
        Validate and normalize a wallet address.

        Returns:
            The trimmed address

        Raises:
            InvalidWalletError: if the format is wrong
        """
        wallet = (address or "").strip()
        if not WalletValidator.is_valid_wallet(wallet):
            raise InvalidWalletError(wallet)
        return wallet
