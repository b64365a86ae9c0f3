"""
External Collaborator Interfaces

The vault core only talks to the outside world through these contracts:

1. AssetLedger     - balances, supply and allowances for assets and shares
2. PriceOracle     - read-only WAD-scaled exchange rates
3. CreditVenue     - collateral / borrow / repay / withdraw + account risk
4. StakingConverter - one-directional borrow asset -> receipt asset
5. AssetExchange   - secondary-market swap, used only while unwinding

The account argument stands in for the implicit caller of an on-chain call.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class AccountRisk:
    """
    Account-level risk metrics reported by a credit venue.

    All values are in the venue's value unit (the vault's base asset);
    safety_ratio is WAD-scaled, below 1.0 the account is liquidatable.
    """
    collateral_value: int
    debt_value: int
    available_borrow_value: int
    safety_ratio: int


class AssetLedger(ABC):
    """Fungible-unit ledger for every asset the vault touches, shares included."""

    @abstractmethod
    def balance_of(self, asset: str, holder: str) -> int:
        ...

    @abstractmethod
    def total_supply(self, asset: str) -> int:
        ...

    @abstractmethod
    def mint(self, asset: str, to: str, amount: int) -> None:
        ...

    @abstractmethod
    def burn(self, asset: str, holder: str, amount: int) -> None:
        ...

    @abstractmethod
    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        ...

    @abstractmethod
    def approve(self, asset: str, holder: str, spender: str, amount: int) -> None:
        ...

    @abstractmethod
    def allowance(self, asset: str, holder: str, spender: str) -> int:
        ...

    @abstractmethod
    def spend_allowance(self, asset: str, holder: str, spender: str, amount: int) -> None:
        ...


class PriceOracle(ABC):

    @abstractmethod
    def rate(self, asset_a: str, asset_b: str) -> int:
        """
        Units of asset_b per unit of asset_a, WAD-scaled.

        May be stale, and may be 0 when no price is available.
        """


class CreditVenue(ABC):
    """A lending/borrowing market holding the vault's collateral and debt."""

    name: str

    @abstractmethod
    def supply_collateral(self, asset: str, amount: int, on_behalf_of: str) -> None:
        ...

    @abstractmethod
    def borrow(self, asset: str, amount: int, on_behalf_of: str) -> int:
        ...

    @abstractmethod
    def repay(self, asset: str, amount: int, on_behalf_of: str) -> int:
        ...

    @abstractmethod
    def withdraw_collateral(self, asset: str, amount: int, to: str) -> int:
        ...

    @abstractmethod
    def get_account_risk(self, account: str) -> AccountRisk:
        ...

    @abstractmethod
    def collateral_of(self, account: str, asset: str) -> int:
        ...

    @abstractmethod
    def debt_of(self, account: str, asset: str) -> int:
        ...


class StakingConverter(ABC):

    @abstractmethod
    def convert(self, amount: int, account: str) -> int:
        """Stake `amount` of the borrow asset held by account; return receipt units received."""


class AssetExchange(ABC):

    @abstractmethod
    def swap(self, asset_in: str, asset_out: str, amount_in: int, account: str) -> int:
        """Swap amount_in of asset_in held by account; return asset_out received."""
