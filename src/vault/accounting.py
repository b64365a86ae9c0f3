"""
Accounting Engine

Converts between base-asset value and pooled ownership units (shares) and
accrues the performance fee.

Key Principles:
- Views and accruing calls see the same rate: conversions first add the fee
  shares an accrual would mint right now.
- Virtual liquidity: shares = assets * (supply + virtual_shares) / (total_assets + 1),
  which keeps the empty vault well defined and defeats first-depositor
  inflation of the exchange rate.
- Rounding always favours the vault: callers pick FLOOR or CEIL per direction.

Total assets are not owned here; they come from the strategy engine's
valuation through `total_assets_provider`.
"""

import logging
from typing import Callable, Tuple

from src.config.constants import BPS
from src.venues.interfaces import AssetLedger
from .math import Rounding, mul_div, zero_floor_sub
from .state import VaultState

logger = logging.getLogger(__name__)


class AccountingEngine:
    """
    Share/asset conversion with continuous fee accrual.

    Fee parameters are trusted: the governance controller validates them
    before they reach VaultState.
    """

    def __init__(
        self,
        state: VaultState,
        ledger: AssetLedger,
        share_asset: str,
        total_assets_provider: Callable[[], int],
    ):
        self.state = state
        self.ledger = ledger
        self.share_asset = share_asset
        self.total_assets_provider = total_assets_provider

    # ------------------------------------------------------------------
    # Fee accrual
    # ------------------------------------------------------------------

    def accrued_fee_shares(self) -> Tuple[int, int]:
        """
        Fee shares an accrual would mint now, and the current total assets.

        Interest is the growth of total assets since the last snapshot; the fee
        slice of it is priced with the pre-fee totals.
        """
        new_total_assets = self.total_assets_provider()
        total_interest = zero_floor_sub(new_total_assets, self.state.last_total_assets)

        fee_shares = 0
        if total_interest > 0 and self.state.fee_bps > 0:
            fee_assets = mul_div(total_interest, self.state.fee_bps, BPS, Rounding.FLOOR)
            fee_shares = self._to_shares(
                fee_assets,
                self.state.total_share_supply,
                new_total_assets - fee_assets,
                Rounding.FLOOR,
            )
        return fee_shares, new_total_assets

    def accrue_fee(self) -> int:
        """
        Mint pending fee shares and snapshot total assets.

        Must run before anything that changes the share supply or prices shares.
        A zero-interest accrual is a valid no-op that only refreshes the snapshot.

        Returns:
            Fee shares minted
        """
        fee_shares, new_total_assets = self.accrued_fee_shares()

        if fee_shares > 0:
            self.mint_shares(self.state.fee_recipient, fee_shares)
            logger.info(
                f"[AccountingEngine] Accrued fee: {fee_shares} shares to {self.state.fee_recipient} "
                f"(total_assets {self.state.last_total_assets} -> {new_total_assets})"
            )

        self.state.last_total_assets = new_total_assets
        return fee_shares

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def convert_to_shares(self, assets: int, rounding: Rounding = Rounding.FLOOR) -> int:
        fee_shares, total_assets = self.accrued_fee_shares()
        return self._to_shares(
            assets, self.state.total_share_supply + fee_shares, total_assets, rounding
        )

    def convert_to_assets(self, shares: int, rounding: Rounding = Rounding.FLOOR) -> int:
        fee_shares, total_assets = self.accrued_fee_shares()
        return self._to_assets(
            shares, self.state.total_share_supply + fee_shares, total_assets, rounding
        )

    def convert_to_shares_with_totals(self, assets: int, rounding: Rounding) -> int:
        """Conversion against the already-accrued totals (inside an operation)."""
        return self._to_shares(
            assets, self.state.total_share_supply, self.state.last_total_assets, rounding
        )

    def convert_to_assets_with_totals(self, shares: int, rounding: Rounding) -> int:
        return self._to_assets(
            shares, self.state.total_share_supply, self.state.last_total_assets, rounding
        )

    def _to_shares(self, assets: int, total_supply: int, total_assets: int, rounding: Rounding) -> int:
        return mul_div(
            assets, total_supply + self.state.virtual_shares, total_assets + 1, rounding
        )

    def _to_assets(self, shares: int, total_supply: int, total_assets: int, rounding: Rounding) -> int:
        return mul_div(
            shares, total_assets + 1, total_supply + self.state.virtual_shares, rounding
        )

    # ------------------------------------------------------------------
    # Share supply
    # ------------------------------------------------------------------

    def mint_shares(self, to: str, shares: int) -> None:
        self.ledger.mint(self.share_asset, to, shares)
        self.state.total_share_supply += shares

    def burn_shares(self, owner: str, shares: int) -> None:
        self.ledger.burn(self.share_asset, owner, shares)
        self.state.total_share_supply -= shares

    def record_deposit(self, assets: int) -> None:
        self.state.last_total_assets += assets

    def record_withdrawal(self, assets: int) -> None:
        self.state.last_total_assets = zero_floor_sub(self.state.last_total_assets, assets)
