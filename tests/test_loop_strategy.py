"""
Unit tests for the LoopStrategyEngine.

Tests verify:
- Build stops at the health floor before the target or iteration cap
- Build reaches the target leverage when health allows
- Full unwind zeroes every tracker and every venue balance
- Partial unwind releases at least the requested amount and scales legs
- Partial unwind degrades to full unwind (shortfall, threshold, dust)
- Two-venue layout, including the bridging borrow on a stalled venue B
- Zero oracle rates are tolerated by valuation and build
"""

import logging
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config.constants import WAD
from src.vault import EconomicGuardError

E = WAD
HF_130 = 1_300_000_000_000_000_000
HF_110 = 1_100_000_000_000_000_000


def deposit(vault, account, amount):
    vault.ledger.mint(vault.base_asset, account, amount)
    return vault.deposit(account, amount, account)


def assert_flat(vault):
    position = vault.position
    assert position.iteration_count == 0
    assert position.total_borrowed == 0
    assert position.total_receipt_held == 0
    for venue in vault.strategy.venues:
        assert venue.debt_of(vault.address, vault.borrow_asset) == 0
        assert venue.collateral_of(vault.address, vault.receipt_asset) == 0
        assert venue.collateral_of(vault.address, vault.base_asset) == 0


class TestBuild:
    """Test leverage build-up."""

    def test_health_floor_stops_at_iteration_three(self, make_vault):
        # LTV 80%, LT 85%: health after each iteration is 1.91, 1.44, 1.29
        vault = make_vault(target_leverage_bps=30_000, max_iterations=5, min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)

        assert vault.position.iteration_count == 3
        assert vault.position.total_borrowed == (800 + 640 + 512) * E
        assert vault.position.total_receipt_held == (800 + 640 + 512) * E
        assert vault.strategy.min_safety_ratio() < HF_130
        assert vault.strategy.current_leverage_bps() < 30_000

    def test_reaches_target_when_health_allows(self, make_vault):
        vault = make_vault(target_leverage_bps=30_000, max_iterations=5)
        deposit(vault, "alice", 1000 * E)

        assert vault.position.iteration_count == 4
        assert vault.strategy.current_leverage_bps() == 30_000
        assert vault.total_assets() == 1000 * E

    def test_iteration_cap(self, make_vault):
        vault = make_vault(target_leverage_bps=30_000, max_iterations=2)
        deposit(vault, "alice", 1000 * E)

        assert vault.position.iteration_count == 2
        assert vault.position.total_borrowed == (800 + 640) * E

    def test_one_x_target_only_supplies_base(self, make_vault):
        vault = make_vault(target_leverage_bps=10_000)
        deposit(vault, "alice", 1000 * E)

        venue = vault.strategy.venue_a
        assert vault.position.is_flat
        assert venue.collateral_of(vault.address, vault.base_asset) == 1000 * E
        assert venue.debt_of(vault.address, vault.borrow_asset) == 0

    def test_zero_rate_skips_build(self, make_vault):
        vault = make_vault()
        vault.oracle.set_price(vault.receipt_asset, 0)
        deposit(vault, "alice", 1000 * E)

        assert vault.position.is_flat
        assert vault.ledger.balance_of(vault.base_asset, vault.address) == 1000 * E
        assert vault.total_assets() == 1000 * E


class TestUnwindFull:
    """Test full unwind."""

    def test_full_unwind_zeroes_everything(self, make_vault):
        vault = make_vault(min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)

        released = vault.strategy.unwind_full()

        assert_flat(vault)
        assert released == 1000 * E
        assert vault.ledger.balance_of(vault.base_asset, vault.address) == 1000 * E
        assert vault.ledger.balance_of(vault.receipt_asset, vault.address) == 0
        assert vault.ledger.balance_of(vault.borrow_asset, vault.address) == 0

    def test_stalled_primary_venue_aborts(self, make_vault):
        vault = make_vault(min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)
        debt = vault.strategy.venue_a.debt_of(vault.address, vault.borrow_asset)

        # receipt slump leaves venue A at health ~1.005, below the unwind floor
        vault.oracle.set_price(vault.receipt_asset, 670_000_000_000_000_000)

        with pytest.raises(EconomicGuardError, match="stalled"):
            vault.emergency_unwind("guardian")

        assert vault.position.iteration_count == 3
        assert vault.position.paused is False
        assert vault.strategy.venue_a.debt_of(vault.address, vault.borrow_asset) == debt

    def test_step_budget(self, make_vault):
        vault = make_vault(min_health_factor=HF_130, max_unwind_steps=1)
        deposit(vault, "alice", 1000 * E)

        with pytest.raises(EconomicGuardError, match="steps"):
            vault.rebalance("keeper", full=True)
        assert vault.position.iteration_count == 3


class TestUnwindPartial:
    """Test proportional unwind for withdrawals."""

    def test_withdraw_scales_position(self, make_vault):
        vault = make_vault(min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)
        borrowed_before = vault.position.total_borrowed

        vault.withdraw("alice", 100 * E, "alice", "alice")

        assert vault.ledger.balance_of(vault.base_asset, "alice") == 100 * E
        assert vault.total_assets() == 900 * E
        assert vault.position.iteration_count == 3
        assert 0 < vault.position.total_borrowed < borrowed_before
        assert vault.position.total_borrowed == vault.strategy.venue_a.debt_of(
            vault.address, vault.borrow_asset
        )

    @pytest.mark.parametrize("needed", [1 * E, 250 * E, 600 * E, 900 * E])
    def test_releases_at_least_requested(self, make_vault, needed):
        vault = make_vault(min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)

        released = vault.strategy.unwind_partial(needed)

        assert released >= needed
        assert vault.ledger.balance_of(vault.base_asset, vault.address) >= needed

    def test_shortfall_falls_back_to_full(self, make_vault):
        vault = make_vault(min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)

        released = vault.strategy.unwind_partial(2000 * E)

        assert_flat(vault)
        assert released == 1000 * E

    def test_ratio_at_threshold_unwinds_fully(self, make_vault):
        vault = make_vault(min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)

        vault.strategy.unwind_partial(999 * E)
        assert_flat(vault)

    def test_dust_position_closed(self, make_vault):
        vault = make_vault(min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)
        vault.strategy_params.dust_threshold = 10**30

        vault.strategy.unwind_partial(100 * E)
        assert_flat(vault)

    def test_zero_request_is_noop(self, make_vault):
        vault = make_vault(min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)

        assert vault.strategy.unwind_partial(0) == 0
        assert vault.position.iteration_count == 3


class TestMultiVenue:
    """Test the two-venue layout."""

    def test_build_uses_both_venues(self, make_vault):
        vault = make_vault(multi_venue=True, min_health_factor=HF_110)
        deposit(vault, "alice", 1000 * E)

        strategy = vault.strategy
        assert vault.position.iteration_count >= 1
        assert strategy.venue_a.debt_of(vault.address, vault.borrow_asset) > 0
        assert strategy.venue_b.debt_of(vault.address, vault.borrow_asset) > 0
        assert strategy.venue_b.collateral_of(vault.address, vault.receipt_asset) > 0
        assert strategy.min_safety_ratio() >= HF_110
        assert vault.total_assets() == 1000 * E

    def test_first_iteration_respects_split(self, make_vault):
        vault = make_vault(multi_venue=True, min_health_factor=HF_110, max_iterations=1, venue_split_bps=2_500)
        deposit(vault, "alice", 1000 * E)

        # desired debt 2000, a quarter of it from venue A
        assert vault.strategy.venue_a.debt_of(vault.address, vault.borrow_asset) == 500 * E

    def test_full_unwind_innermost_first(self, make_vault):
        vault = make_vault(multi_venue=True, min_health_factor=HF_110)
        deposit(vault, "alice", 1000 * E)

        released = vault.strategy.unwind_full()

        assert_flat(vault)
        assert released == 1000 * E

    def test_stalled_venue_b_is_bridged(self, make_vault, caplog):
        vault = make_vault(multi_venue=True, min_health_factor=HF_110)
        deposit(vault, "alice", 1000 * E)

        # venue B health drops to ~1.008, below the unwind floor
        vault.oracle.set_price(vault.receipt_asset, 840_000_000_000_000_000)
        value_before = vault.total_assets()

        with caplog.at_level(logging.WARNING):
            vault.strategy.unwind_full()

        assert "Bridging borrow" in caplog.text
        assert_flat(vault)
        assert abs(vault.total_assets() - value_before) <= 10**6

    def test_partial_unwind_two_venues(self, make_vault):
        vault = make_vault(multi_venue=True, min_health_factor=HF_110)
        deposit(vault, "alice", 1000 * E)

        vault.withdraw("alice", 300 * E, "alice", "alice")

        assert vault.ledger.balance_of(vault.base_asset, "alice") == 300 * E
        assert vault.position.iteration_count >= 1
        assert vault.total_assets() == 700 * E


class TestValuation:
    """Test total-assets valuation."""

    def test_receipt_appreciation_raises_value(self, make_vault):
        vault = make_vault(min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)

        vault.oracle.set_price(vault.receipt_asset, 1_010_000_000_000_000_000)

        # 1952 receipts gain 1%
        assert vault.total_assets() == 1000 * E + 1952 * E // 100

    def test_zero_receipt_rate_excluded(self, make_vault, caplog):
        vault = make_vault(min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)

        vault.oracle.set_price(vault.receipt_asset, 0)
        with caplog.at_level(logging.WARNING):
            value = vault.total_assets()

        # base collateral minus debt, floored at zero
        assert value == 0
        assert "oracle rate" in caplog.text

    def test_describe(self, make_vault):
        vault = make_vault(min_health_factor=HF_130)
        deposit(vault, "alice", 1000 * E)

        info = vault.strategy.describe()
        assert info["iteration_count"] == 3
        assert info["net_position_value"] == 1000 * E
        assert info["total_assets"] == 1000 * E


def set_market_prices(vault):
    # base > receipt > borrow, as for wstETH / weETH / WETH
    vault.oracle.set_price(vault.base_asset, BASE_PRICE)
    vault.oracle.set_price(vault.receipt_asset, RECEIPT_PRICE)


BASE_PRICE = 1_170_000_000_000_000_000
RECEIPT_PRICE = 1_050_000_000_000_000_000


class TestMarketPrices:
    """Test build and unwind when the three assets are not priced 1:1."""

    def test_build_treats_rounding_remainder_as_target(self, make_vault):
        vault = make_vault()
        set_market_prices(vault)

        deposit(vault, "u0", 1000 * E)

        assert vault.balance_of("u0") == 1000 * E
        assert vault.position.iteration_count == 4
        assert 29_990 <= vault.strategy.current_leverage_bps() <= 30_010
        assert abs(vault.total_assets() - 1000 * E) < 10**6

    @pytest.mark.parametrize("multi_venue", [False, True])
    def test_build_and_full_unwind(self, make_vault, multi_venue):
        vault = make_vault(multi_venue=multi_venue, min_health_factor=HF_110)
        set_market_prices(vault)
        deposit(vault, "alice", 1000 * E)

        assert vault.position.iteration_count >= 1
        assert vault.strategy.min_safety_ratio() >= WAD

        released = vault.emergency_unwind("guardian")

        assert_flat(vault)
        assert abs(released - 1000 * E) < 10**6

    @pytest.mark.parametrize("multi_venue", [False, True])
    def test_full_unwind_with_exchange_fee(self, make_vault, multi_venue):
        vault = make_vault(multi_venue=multi_venue, min_health_factor=HF_110, exchange_fee_bps=30)
        set_market_prices(vault)
        deposit(vault, "alice", 1000 * E)

        released = vault.strategy.unwind_full()

        assert_flat(vault)
        assert 980 * E <= released < 1000 * E

    @pytest.mark.parametrize("exchange_fee_bps", [0, 30])
    @pytest.mark.parametrize("needed", [1 * E, 100 * E, 600 * E, 900 * E])
    def test_partial_unwind_releases_requested(self, make_vault, exchange_fee_bps, needed):
        vault = make_vault(min_health_factor=HF_130, exchange_fee_bps=exchange_fee_bps)
        set_market_prices(vault)
        deposit(vault, "alice", 1000 * E)

        released = vault.strategy.unwind_partial(needed)

        assert released >= needed
        assert vault.ledger.balance_of(vault.base_asset, vault.address) >= needed

    @pytest.mark.parametrize("exchange_fee_bps", [0, 30])
    def test_withdraw_pays_exact_amount(self, make_vault, exchange_fee_bps):
        vault = make_vault(exchange_fee_bps=exchange_fee_bps)
        set_market_prices(vault)
        deposit(vault, "alice", 1000 * E)

        vault.withdraw("alice", 250 * E, "alice", "alice")

        assert vault.ledger.balance_of(vault.base_asset, "alice") == 250 * E
        assert vault.total_assets() <= 750 * E
