"""
Shared fixtures: a vault wired to in-memory venues at 1:1 prices.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config.constants import WAD
from src.config.vault_config import StrategyParams, VaultParams
from src.utils.clock import ManualClock
from src.vault import LeveragedVault
from src.venues import (
    CollateralConfig,
    InMemoryLedger,
    SimulatedCreditVenue,
    SimulatedExchange,
    SimulatedStakingConverter,
    StaticPriceOracle,
)

BASE = "wstETH"
BORROW = "WETH"
RECEIPT = "weETH"
SHARE = "lvETH"


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def make_vault(clock):
    """
    Factory for a vault with owner/curator/guardian/keeper roles.

    Keyword overrides not listed below go to StrategyParams.
    """

    def _make(
        ltv_bps=8000,
        liquidation_threshold_bps=8500,
        liquidity=10**6 * WAD,
        multi_venue=False,
        venue_b_ltv_bps=7500,
        venue_b_liquidation_threshold_bps=9000,
        venue_cls=SimulatedCreditVenue,
        vault_params=None,
        exchange_fee_bps=0,
        **strategy_overrides,
    ):
        oracle = StaticPriceOracle({BASE: WAD, BORROW: WAD, RECEIPT: WAD})
        ledger = InMemoryLedger()

        venue_a = venue_cls(
            name="lending_a",
            ledger=ledger,
            oracle=oracle,
            value_asset=BASE,
            collateral={
                BASE: CollateralConfig(ltv_bps, liquidation_threshold_bps),
                RECEIPT: CollateralConfig(ltv_bps, liquidation_threshold_bps),
            },
            borrowable=[BORROW],
        )
        ledger.mint(BORROW, venue_a.address, liquidity)

        venue_b = None
        if multi_venue:
            venue_b = SimulatedCreditVenue(
                name="lending_b",
                ledger=ledger,
                oracle=oracle,
                value_asset=BASE,
                collateral={
                    RECEIPT: CollateralConfig(venue_b_ltv_bps, venue_b_liquidation_threshold_bps),
                },
                borrowable=[BORROW],
            )
            ledger.mint(BORROW, venue_b.address, liquidity)

        return LeveragedVault(
            ledger=ledger,
            oracle=oracle,
            converter=SimulatedStakingConverter(ledger, oracle, BORROW, RECEIPT),
            exchange=SimulatedExchange(ledger, oracle, fee_bps=exchange_fee_bps),
            venue_a=venue_a,
            venue_b=venue_b,
            base_asset=BASE,
            borrow_asset=BORROW,
            receipt_asset=RECEIPT,
            share_asset=SHARE,
            owner="owner",
            vault_params=vault_params or VaultParams(deposit_ceiling=10**9 * WAD),
            strategy_params=StrategyParams(**strategy_overrides),
            curator="curator",
            guardian="guardian",
            allocators=["keeper"],
            skim_recipient="treasury",
            clock=clock,
        )

    return _make
