"""
In-memory fungible-unit ledger.

Stands in for the token contracts of the base, borrow, receipt and share assets
in simulations and tests.
"""

import logging
from typing import Dict, Tuple

from .errors import InsufficientBalanceError
from .interfaces import AssetLedger

logger = logging.getLogger(__name__)


class InMemoryLedger(AssetLedger):
    """Balances, total supply and allowances keyed by asset symbol."""

    def __init__(self):
        self._balances: Dict[Tuple[str, str], int] = {}
        self._supply: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}

    def balance_of(self, asset: str, holder: str) -> int:
        return self._balances.get((asset, holder), 0)

    def total_supply(self, asset: str) -> int:
        return self._supply.get(asset, 0)

    def mint(self, asset: str, to: str, amount: int) -> None:
        self._require_non_negative(amount)
        self._balances[(asset, to)] = self.balance_of(asset, to) + amount
        self._supply[asset] = self.total_supply(asset) + amount

    def burn(self, asset: str, holder: str, amount: int) -> None:
        self._require_non_negative(amount)
        balance = self.balance_of(asset, holder)
        if amount > balance:
            raise InsufficientBalanceError(
                f"burn of {amount} {asset} exceeds balance {balance} of {holder}"
            )
        self._balances[(asset, holder)] = balance - amount
        self._supply[asset] = self.total_supply(asset) - amount

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        self._require_non_negative(amount)
        balance = self.balance_of(asset, sender)
        if amount > balance:
            raise InsufficientBalanceError(
                f"transfer of {amount} {asset} exceeds balance {balance} of {sender}"
            )
        self._balances[(asset, sender)] = balance - amount
        self._balances[(asset, recipient)] = self.balance_of(asset, recipient) + amount

    def approve(self, asset: str, holder: str, spender: str, amount: int) -> None:
        self._require_non_negative(amount)
        self._allowances[(asset, holder, spender)] = amount

    def allowance(self, asset: str, holder: str, spender: str) -> int:
        return self._allowances.get((asset, holder, spender), 0)

    def spend_allowance(self, asset: str, holder: str, spender: str, amount: int) -> None:
        current = self.allowance(asset, holder, spender)
        if amount > current:
            raise InsufficientBalanceError(
                f"{spender} allowance {current} on {holder}'s {asset} is below {amount}"
            )
        self._allowances[(asset, holder, spender)] = current - amount

    @staticmethod
    def _require_non_negative(amount: int) -> None:
        if amount < 0:
            raise ValueError(f"amount must be >= 0, got {amount}")
