"""
Unit tests for the LeveragedVault facade.

Tests verify:
- Deposit ceiling enforcement
- Deposit/mint/withdraw/redeem share math and previews
- Allowance spending for third-party withdrawals
- Re-entrant calls rejected, failed operations rolled back
- Rebalance, emergency unwind, resume and skim role gating
"""

import sys
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config.constants import WAD
from src.config.vault_config import VaultParams
from src.vault import (
    AuthorizationError,
    BoundsViolationError,
    EconomicGuardError,
    InvalidStateError,
    ReentrancyError,
)
from src.venues import InsufficientBalanceError, SimulatedCreditVenue, VenueError

E = WAD


def fund(vault, account, amount):
    vault.ledger.mint(vault.base_asset, account, amount)


class ReentrantVenue(SimulatedCreditVenue):
    """Venue that calls back into the vault while taking collateral."""

    vault = None

    def supply_collateral(self, asset, amount, on_behalf_of):
        if self.vault is not None:
            self.vault.ledger.mint(self.vault.base_asset, "mallory", E)
            self.vault.deposit("mallory", E, "mallory")
        super().supply_collateral(asset, amount, on_behalf_of)


class TestDepositCeiling:
    """Test the deposit ceiling guard."""

    def test_ceiling_scenario(self, make_vault):
        vault = make_vault(vault_params=VaultParams(deposit_ceiling=1000 * E))
        for account, amount in (("alice", 900 * E), ("bob", 50 * E), ("carol", 200 * E)):
            fund(vault, account, amount)

        vault.deposit("alice", 900 * E, "alice")
        assert vault.total_assets() == 900 * E

        vault.deposit("bob", 50 * E, "bob")
        assert vault.max_deposit() == 50 * E

        with pytest.raises(EconomicGuardError, match="ceiling"):
            vault.deposit("carol", 200 * E, "carol")

        assert vault.balance_of("carol") == 0
        assert vault.ledger.balance_of(vault.base_asset, "carol") == 200 * E
        assert vault.total_assets() == 950 * E

    def test_zero_ceiling_blocks_deposits(self, make_vault):
        vault = make_vault(vault_params=VaultParams())
        fund(vault, "alice", E)
        with pytest.raises(EconomicGuardError):
            vault.deposit("alice", E, "alice")

    def test_mint_checks_ceiling(self, make_vault):
        vault = make_vault(vault_params=VaultParams(deposit_ceiling=100 * E))
        fund(vault, "alice", 200 * E)
        with pytest.raises(EconomicGuardError):
            vault.mint("alice", 150 * E, "alice")


class TestDepositWithdraw:
    """Test share issuance and redemption."""

    def test_deposit_mints_shares(self, make_vault):
        vault = make_vault()
        fund(vault, "alice", 1000 * E)

        shares = vault.deposit("alice", 1000 * E, "bob")

        assert shares == 1000 * E
        assert vault.balance_of("bob") == shares
        assert vault.total_supply() == shares
        assert vault.state.last_total_assets == 1000 * E
        assert vault.ledger.balance_of(vault.base_asset, "alice") == 0

    def test_zero_amounts_rejected(self, make_vault):
        vault = make_vault()
        with pytest.raises(BoundsViolationError):
            vault.deposit("alice", 0, "alice")
        with pytest.raises(BoundsViolationError):
            vault.withdraw("alice", 0, "alice", "alice")

    def test_mint_pulls_rounded_up_assets(self, make_vault):
        vault = make_vault()
        fund(vault, "alice", 2000 * E)
        vault.deposit("alice", 1000 * E, "alice")
        fund(vault, vault.address, 3 * E + 7)

        expected = vault.preview_mint(10 * E)
        assets = vault.mint("alice", 10 * E, "alice")

        assert assets == expected
        assert vault.convert_to_assets(10 * E) <= assets

    def test_redeem_everything(self, make_vault):
        vault = make_vault()
        fund(vault, "alice", 1000 * E)
        shares = vault.deposit("alice", 1000 * E, "alice")

        assets = vault.redeem("alice", shares, "alice", "alice")

        assert assets == 1000 * E
        assert vault.ledger.balance_of(vault.base_asset, "alice") == 1000 * E
        assert vault.total_supply() == 0
        assert vault.position.is_flat

    def test_withdraw_burns_rounded_up_shares(self, make_vault):
        vault = make_vault()
        fund(vault, "alice", 1000 * E)
        vault.deposit("alice", 1000 * E, "alice")
        fund(vault, vault.address, 10 * E + 1)

        expected = vault.preview_withdraw(100 * E)
        shares = vault.withdraw("alice", 100 * E, "alice", "alice")

        assert shares == expected
        assert vault.ledger.balance_of(vault.base_asset, "alice") == 100 * E

    def test_round_trip_never_profits(self, make_vault):
        vault = make_vault()
        fund(vault, "alice", 1000 * E)
        vault.deposit("alice", 1000 * E, "alice")
        fund(vault, vault.address, 37 * E + 11)

        for amount in (1, 999, 5 * E + 3, 77 * E):
            assert vault.preview_redeem(vault.preview_deposit(amount)) <= amount
            assert vault.preview_withdraw(vault.preview_mint(amount)) >= amount

    def test_cannot_withdraw_more_than_owned(self, make_vault):
        vault = make_vault()
        fund(vault, "alice", 100 * E)
        vault.deposit("alice", 100 * E, "alice")

        with pytest.raises(EconomicGuardError):
            vault.withdraw("alice", 101 * E, "alice", "alice")
        assert vault.balance_of("alice") == 100 * E

    def test_third_party_withdraw_needs_allowance(self, make_vault):
        vault = make_vault()
        fund(vault, "alice", 100 * E)
        vault.deposit("alice", 100 * E, "alice")

        with pytest.raises(InsufficientBalanceError):
            vault.withdraw("bob", 10 * E, "bob", "alice")

        vault.ledger.approve(vault.share_asset, "alice", "bob", 10 * E)
        shares = vault.withdraw("bob", 10 * E, "bob", "alice")

        assert vault.ledger.balance_of(vault.base_asset, "bob") == 10 * E
        assert vault.ledger.allowance(vault.share_asset, "alice", "bob") == 10 * E - shares

    def test_max_views(self, make_vault):
        vault = make_vault(vault_params=VaultParams(deposit_ceiling=500 * E))
        fund(vault, "alice", 200 * E)
        vault.deposit("alice", 200 * E, "alice")

        assert vault.max_deposit() == 300 * E
        assert vault.max_mint() == vault.convert_to_shares(300 * E)
        assert vault.max_withdraw("alice") == 200 * E
        assert vault.max_redeem("alice") == 200 * E


class TestAtomicity:
    """Test re-entrancy rejection and rollback."""

    def test_reentrant_deposit_rejected(self, make_vault):
        vault = make_vault(venue_cls=ReentrantVenue)
        vault.strategy.venue_a.vault = vault
        fund(vault, "alice", 1000 * E)

        with pytest.raises(ReentrancyError):
            vault.deposit("alice", 1000 * E, "alice")

        assert vault.ledger.balance_of(vault.base_asset, "alice") == 1000 * E
        assert vault.total_supply() == 0
        assert vault.balance_of("mallory") == 0
        assert vault.strategy.venue_a.collateral_of(vault.address, vault.base_asset) == 0
        assert vault.guard.active_operation is None

    def test_failed_build_rolls_back_deposit(self, make_vault):
        # venue has no liquidity to lend, so the first borrow fails mid-build
        vault = make_vault(liquidity=0)
        fund(vault, "alice", 1000 * E)

        with pytest.raises(VenueError):
            vault.deposit("alice", 1000 * E, "alice")

        assert vault.ledger.balance_of(vault.base_asset, "alice") == 1000 * E
        assert vault.total_supply() == 0
        assert vault.state.last_total_assets == 0
        assert vault.position.is_flat
        assert vault.strategy.venue_a.collateral_of(vault.address, vault.base_asset) == 0

    def test_state_objects_keep_identity_after_rollback(self, make_vault):
        vault = make_vault(liquidity=0)
        fund(vault, "alice", E)
        with pytest.raises(VenueError):
            vault.deposit("alice", E, "alice")

        assert vault.strategy.venue_a.ledger is vault.ledger
        assert vault.strategy.params is vault.strategy_params
        assert vault.accounting.state is vault.state


class TestStrategyManagement:
    """Test rebalance, emergency unwind, resume and skim."""

    def test_rebalance_requires_allocator(self, make_vault):
        vault = make_vault()
        with pytest.raises(AuthorizationError):
            vault.rebalance("mallory")
        assert vault.rebalance("keeper") == 0
        assert vault.rebalance("curator") == 0

    def test_rebalance_after_target_change(self, make_vault):
        vault = make_vault(target_leverage_bps=20_000)
        fund(vault, "alice", 1000 * E)
        vault.deposit("alice", 1000 * E, "alice")
        assert vault.strategy.current_leverage_bps() == 20_000

        vault.governance.set_target_leverage("curator", 30_000)
        vault.rebalance("keeper")
        assert vault.strategy.current_leverage_bps() == 30_000

    def test_full_rebalance_rebuilds(self, make_vault):
        vault = make_vault()
        fund(vault, "alice", 1000 * E)
        vault.deposit("alice", 1000 * E, "alice")
        count = vault.position.iteration_count

        vault.rebalance("keeper", full=True)

        assert vault.position.iteration_count == count
        assert vault.total_assets() == 1000 * E

    def test_emergency_unwind_pauses(self, make_vault):
        vault = make_vault()
        fund(vault, "alice", 1500 * E)
        vault.deposit("alice", 1000 * E, "alice")

        with pytest.raises(AuthorizationError):
            vault.emergency_unwind("keeper")

        released = vault.emergency_unwind("guardian")
        assert released == 1000 * E
        assert vault.position.is_flat
        assert vault.position.paused

        # deposits stay idle while paused
        vault.deposit("alice", 500 * E, "alice")
        assert vault.ledger.balance_of(vault.base_asset, vault.address) == 1500 * E
        assert vault.position.is_flat

        vault.governance.resume_strategy("curator")
        assert vault.rebalance("keeper") > 0
        assert vault.total_assets() == 1500 * E

    def test_skim(self, make_vault):
        vault = make_vault()
        vault.ledger.mint("USDC", vault.address, 42)

        assert vault.skim("anyone", "USDC") == 42
        assert vault.ledger.balance_of("USDC", "treasury") == 42

        with pytest.raises(InvalidStateError):
            vault.skim("anyone", vault.base_asset)

    def test_fee_accrues_on_next_deposit(self, make_vault):
        vault = make_vault(
            vault_params=VaultParams(fee_bps=1000, fee_recipient="treasury", deposit_ceiling=10**6 * E)
        )
        fund(vault, "alice", 1000 * E)
        fund(vault, "bob", 10 * E)
        vault.deposit("alice", 1000 * E, "alice")

        fund(vault, vault.address, 100 * E)
        vault.deposit("bob", 10 * E, "bob")

        fee_shares = vault.balance_of("treasury")
        assert fee_shares > 0
        assert abs(vault.convert_to_assets(fee_shares) - 10 * E) <= 10

    def test_snapshot_fields(self, make_vault):
        vault = make_vault()
        fund(vault, "alice", 100 * E)
        vault.deposit("alice", 100 * E, "alice")

        snap = vault.snapshot()
        for key in ("total_assets", "total_supply", "share_price", "iteration_count", "leverage_bps"):
            assert key in snap
        assert snap["share_price"] == pytest.approx(1.0)

    def test_unwind_costs_stay_with_remaining_holders(self, make_vault):
        vault = make_vault(exchange_fee_bps=30)
        fund(vault, "alice", 1000 * E)
        fund(vault, "bob", 1000 * E)
        vault.deposit("alice", 1000 * E, "alice")
        vault.deposit("bob", 1000 * E, "bob")
        before = vault.total_assets()

        expected_shares = vault.preview_withdraw(10 * E)
        shares = vault.withdraw("alice", 10 * E, "alice", "alice")

        # withdrawer gets the quoted price; swap fees hit the pool
        assert shares == expected_shares
        assert vault.ledger.balance_of(vault.base_asset, "alice") == 10 * E
        assert vault.total_assets() < before - 10 * E
        assert vault.convert_to_assets(vault.balance_of("bob")) < 1000 * E
