"""
Simulated External Venues

Deterministic in-memory stand-ins for the oracle, credit venues, staking
converter and receipt exchange. They settle through an AssetLedger so that the
vault's idle balances and the venues' reserves stay consistent.

Pricing:
- StaticPriceOracle stores one WAD price per asset in a common numeraire.
- SimulatedCreditVenue values everything in its value asset (the vault's base
  asset) through the oracle, applies per-asset LTV / liquidation thresholds
  and reports an Aave-style health factor.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from src.config.constants import BPS, NO_DEBT_SAFETY_RATIO, WAD
from .errors import VenueError
from .interfaces import (
    AccountRisk,
    AssetExchange,
    AssetLedger,
    CreditVenue,
    PriceOracle,
    StakingConverter,
)

logger = logging.getLogger(__name__)


class StaticPriceOracle(PriceOracle):
    """Oracle backed by a settable price table (WAD price per asset)."""

    def __init__(self, prices: Optional[Dict[str, int]] = None):
        self._prices: Dict[str, int] = dict(prices or {})

    def set_price(self, asset: str, price: int) -> None:
        if price < 0:
            raise ValueError(f"price must be >= 0, got {price}")
        self._prices[asset] = price
        logger.debug(f"[StaticPriceOracle] {asset} price set to {price}")

    def price(self, asset: str) -> int:
        return self._prices.get(asset, 0)

    def rate(self, asset_a: str, asset_b: str) -> int:
        if asset_a == asset_b:
            return WAD
        price_a = self._prices.get(asset_a, 0)
        price_b = self._prices.get(asset_b, 0)
        if price_a == 0 or price_b == 0:
            return 0
        return price_a * WAD // price_b


@dataclass(frozen=True)
class CollateralConfig:
    """Risk parameters of one collateral asset, in basis points."""
    ltv_bps: int
    liquidation_threshold_bps: int

    def __post_init__(self):
        if not (0 <= self.ltv_bps <= self.liquidation_threshold_bps <= BPS):
            raise ValueError(
                f"Must have 0 <= ltv_bps <= liquidation_threshold_bps <= {BPS}, "
                f"got ltv_bps={self.ltv_bps}, "
                f"liquidation_threshold_bps={self.liquidation_threshold_bps}"
            )


class SimulatedCreditVenue(CreditVenue):
    """
    Collateralised lending market.

    Borrowing is limited to the LTV-weighted collateral value; collateral can
    only be withdrawn while the health factor stays at or above 1.0.
    Borrowed liquidity comes out of the venue's own ledger balance.
    """

    def __init__(
        self,
        name: str,
        ledger: AssetLedger,
        oracle: PriceOracle,
        value_asset: str,
        collateral: Dict[str, CollateralConfig],
        borrowable: Iterable[str],
        address: Optional[str] = None,
    ):
        self.name = name
        self.address = address or f"venue:{name}"
        self.ledger = ledger
        self.oracle = oracle
        self.value_asset = value_asset
        self.collateral_configs = dict(collateral)
        self.borrowable = set(borrowable)

        self._collateral: Dict[Tuple[str, str], int] = {}
        self._debt: Dict[Tuple[str, str], int] = {}

        logger.info(
            f"[SimulatedCreditVenue:{self.name}] Initialized: "
            f"collateral={sorted(self.collateral_configs)}, borrowable={sorted(self.borrowable)}"
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def supply_collateral(self, asset: str, amount: int, on_behalf_of: str) -> None:
        if asset not in self.collateral_configs:
            raise VenueError(f"{self.name}: {asset} is not accepted as collateral")
        if amount <= 0:
            raise VenueError(f"{self.name}: supply amount must be > 0, got {amount}")

        self.ledger.transfer(asset, on_behalf_of, self.address, amount)
        key = (on_behalf_of, asset)
        self._collateral[key] = self._collateral.get(key, 0) + amount

    def borrow(self, asset: str, amount: int, on_behalf_of: str) -> int:
        if asset not in self.borrowable:
            raise VenueError(f"{self.name}: {asset} cannot be borrowed")
        if amount <= 0:
            raise VenueError(f"{self.name}: borrow amount must be > 0, got {amount}")

        risk = self.get_account_risk(on_behalf_of)
        value = self._value(asset, amount)
        if value > risk.available_borrow_value:
            raise VenueError(
                f"{self.name}: borrow value {value} exceeds available {risk.available_borrow_value}"
            )

        self.ledger.transfer(asset, self.address, on_behalf_of, amount)
        key = (on_behalf_of, asset)
        self._debt[key] = self._debt.get(key, 0) + amount
        return amount

    def repay(self, asset: str, amount: int, on_behalf_of: str) -> int:
        key = (on_behalf_of, asset)
        repaid = min(amount, self._debt.get(key, 0))
        if repaid <= 0:
            return 0

        self.ledger.transfer(asset, on_behalf_of, self.address, repaid)
        self._debt[key] -= repaid
        return repaid

    def withdraw_collateral(self, asset: str, amount: int, to: str) -> int:
        key = (to, asset)
        withdrawn = min(amount, self._collateral.get(key, 0))
        if withdrawn <= 0:
            return 0

        collateral_after = dict(self._collateral)
        collateral_after[key] -= withdrawn
        risk_after = self._risk(to, collateral_after, self._debt)
        if risk_after.debt_value > 0 and risk_after.safety_ratio < WAD:
            raise VenueError(
                f"{self.name}: withdrawing {withdrawn} {asset} would leave "
                f"health factor {risk_after.safety_ratio / WAD:.4f} below 1.0"
            )

        self._collateral[key] -= withdrawn
        self.ledger.transfer(asset, self.address, to, withdrawn)
        return withdrawn

    def accrue_interest(self, asset: str, rate_bps: int) -> None:
        """Grow every open debt in `asset` by rate_bps (simulation hook)."""
        for key, debt in self._debt.items():
            if key[1] == asset and debt > 0:
                self._debt[key] = debt + debt * rate_bps // BPS

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_account_risk(self, account: str) -> AccountRisk:
        return self._risk(account, self._collateral, self._debt)

    def collateral_of(self, account: str, asset: str) -> int:
        return self._collateral.get((account, asset), 0)

    def debt_of(self, account: str, asset: str) -> int:
        return self._debt.get((account, asset), 0)

    def _risk(
        self,
        account: str,
        collateral: Dict[Tuple[str, str], int],
        debt: Dict[Tuple[str, str], int],
    ) -> AccountRisk:
        collateral_value = 0
        borrow_power = 0
        liquidation_power = 0
        for (holder, asset), amount in collateral.items():
            if holder != account or amount <= 0:
                continue
            config = self.collateral_configs[asset]
            value = self._value(asset, amount)
            collateral_value += value
            borrow_power += value * config.ltv_bps // BPS
            liquidation_power += value * config.liquidation_threshold_bps // BPS

        debt_value = 0
        for (holder, asset), amount in debt.items():
            if holder == account and amount > 0:
                debt_value += self._value(asset, amount)

        if debt_value == 0:
            safety_ratio = NO_DEBT_SAFETY_RATIO
        else:
            safety_ratio = liquidation_power * WAD // debt_value

        return AccountRisk(
            collateral_value=collateral_value,
            debt_value=debt_value,
            available_borrow_value=max(0, borrow_power - debt_value),
            safety_ratio=safety_ratio,
        )

    def _value(self, asset: str, amount: int) -> int:
        if asset == self.value_asset:
            return amount
        return amount * self.oracle.rate(asset, self.value_asset) // WAD


class SimulatedStakingConverter(StakingConverter):
    """Burns the borrow asset and mints receipt units at the oracle rate."""

    def __init__(self, ledger: AssetLedger, oracle: PriceOracle, borrow_asset: str, receipt_asset: str):
        self.ledger = ledger
        self.oracle = oracle
        self.borrow_asset = borrow_asset
        self.receipt_asset = receipt_asset

    def convert(self, amount: int, account: str) -> int:
        if amount <= 0:
            raise VenueError(f"convert amount must be > 0, got {amount}")
        receipt_amount = amount * self.oracle.rate(self.borrow_asset, self.receipt_asset) // WAD
        if receipt_amount == 0:
            raise VenueError(f"staking {amount} {self.borrow_asset} yields no {self.receipt_asset}")

        self.ledger.burn(self.borrow_asset, account, amount)
        self.ledger.mint(self.receipt_asset, account, receipt_amount)
        return receipt_amount


class SimulatedExchange(AssetExchange):
    """Swaps at the oracle rate minus a flat fee; liquidity is unbounded."""

    def __init__(self, ledger: AssetLedger, oracle: PriceOracle, fee_bps: int = 0):
        if not (0 <= fee_bps < BPS):
            raise ValueError(f"fee_bps must be in [0, {BPS}), got {fee_bps}")
        self.ledger = ledger
        self.oracle = oracle
        self.fee_bps = fee_bps

    def swap(self, asset_in: str, asset_out: str, amount_in: int, account: str) -> int:
        if amount_in <= 0:
            return 0
        rate = self.oracle.rate(asset_in, asset_out)
        if rate == 0:
            raise VenueError(f"no price for {asset_in} -> {asset_out}")

        amount_out = amount_in * rate // WAD * (BPS - self.fee_bps) // BPS
        self.ledger.burn(asset_in, account, amount_in)
        self.ledger.mint(asset_out, account, amount_out)
        return amount_out
