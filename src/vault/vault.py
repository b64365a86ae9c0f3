"""
Leveraged Vault

Depositor-facing facade over the accounting engine, governance controller
and loop strategy engine.

Operation flow:
1. Operation guard opens (re-entrancy check + state snapshot)
2. Fee accrual, snapshot of total assets
3. Share math against the accrued totals
4. Strategy build (deposits) or unwind (withdrawals needing liquidity)
5. Any exception restores every participant and propagates to the caller
"""

import logging
from typing import Callable, Dict, Iterable, Optional

from src.config.constants import WAD
from src.config.vault_config import StrategyParams, VaultParams
from src.utils.clock import system_clock
from src.venues.interfaces import AssetExchange, AssetLedger, CreditVenue, PriceOracle, StakingConverter
from .accounting import AccountingEngine
from .errors import BoundsViolationError, EconomicGuardError, InvalidStateError
from .governance import GovernanceController
from .guard import OperationGuard
from .math import Rounding, zero_floor_sub
from .roles import Role, RoleSet
from .state import LoopPosition, VaultState
from .strategy import LoopStrategyEngine
from .timelock import GovernanceState

logger = logging.getLogger(__name__)


class LeveragedVault:
    """
    Pooled vault that levers deposits through a borrow-and-restake loop.

    Amounts are integers in the smallest unit of each asset. Every public
    mutating method takes the acting account as `caller`.
    """

    def __init__(
        self,
        ledger: AssetLedger,
        oracle: PriceOracle,
        converter: StakingConverter,
        exchange: AssetExchange,
        venue_a: CreditVenue,
        base_asset: str,
        borrow_asset: str,
        receipt_asset: str,
        share_asset: str,
        owner: str,
        venue_b: Optional[CreditVenue] = None,
        vault_params: Optional[VaultParams] = None,
        strategy_params: Optional[StrategyParams] = None,
        curator: Optional[str] = None,
        guardian: Optional[str] = None,
        allocators: Iterable[str] = (),
        skim_recipient: Optional[str] = None,
        clock: Optional[Callable[[], int]] = None,
        address: str = "vault",
    ):
        vault_params = vault_params or VaultParams()
        self.address = address
        self.ledger = ledger
        self.oracle = oracle
        self.base_asset = base_asset
        self.borrow_asset = borrow_asset
        self.receipt_asset = receipt_asset
        self.share_asset = share_asset
        self.clock = clock or system_clock

        self.state = VaultState(
            fee_bps=vault_params.fee_bps,
            fee_recipient=vault_params.fee_recipient,
            deposit_ceiling=vault_params.deposit_ceiling,
            virtual_shares=10 ** vault_params.decimals_offset,
        )
        self.position = LoopPosition()
        self.strategy_params = strategy_params or StrategyParams()
        self.roles = RoleSet(
            owner=owner,
            curator=curator,
            guardian=guardian,
            allocators=set(allocators),
            skim_recipient=skim_recipient,
        )
        self.governance_state = GovernanceState(timelock=vault_params.timelock)

        self.strategy = LoopStrategyEngine(
            params=self.strategy_params,
            position=self.position,
            ledger=ledger,
            oracle=oracle,
            converter=converter,
            exchange=exchange,
            venue_a=venue_a,
            venue_b=venue_b,
            account=address,
            base_asset=base_asset,
            borrow_asset=borrow_asset,
            receipt_asset=receipt_asset,
        )
        self.accounting = AccountingEngine(
            state=self.state,
            ledger=ledger,
            share_asset=share_asset,
            total_assets_provider=self.strategy.total_assets,
        )

        self.guard = OperationGuard()
        self.guard.register(
            self.state,
            self.position,
            self.strategy_params,
            self.governance_state,
            self.roles,
            ledger,
            venue_a,
            venue_b,
            converter,
            exchange,
        )
        self.guard.share(oracle, self.strategy, self.accounting, self)

        self.governance = GovernanceController(
            state=self.governance_state,
            roles=self.roles,
            accounting=self.accounting,
            strategy_params=self.strategy_params,
            position=self.position,
            guard=self.guard,
            clock=self.clock,
        )
        self.guard.share(self.governance)

        logger.info(
            f"[LeveragedVault] Initialized {share_asset}: base={base_asset}, borrow={borrow_asset}, "
            f"receipt={receipt_asset}, venues={[v.name for v in self.strategy.venues]}, "
            f"ceiling={self.state.deposit_ceiling}, fee={self.state.fee_bps}bps"
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def total_assets(self) -> int:
        return self.strategy.total_assets()

    def total_supply(self) -> int:
        return self.state.total_share_supply

    def balance_of(self, account: str) -> int:
        return self.ledger.balance_of(self.share_asset, account)

    def convert_to_shares(self, assets: int) -> int:
        return self.accounting.convert_to_shares(assets, Rounding.FLOOR)

    def convert_to_assets(self, shares: int) -> int:
        return self.accounting.convert_to_assets(shares, Rounding.FLOOR)

    def max_deposit(self, receiver: Optional[str] = None) -> int:
        return zero_floor_sub(self.state.deposit_ceiling, self.total_assets())

    def max_mint(self, receiver: Optional[str] = None) -> int:
        return self.accounting.convert_to_shares(self.max_deposit(receiver), Rounding.FLOOR)

    def max_withdraw(self, owner: str) -> int:
        return self.accounting.convert_to_assets(self.balance_of(owner), Rounding.FLOOR)

    def max_redeem(self, owner: str) -> int:
        return self.balance_of(owner)

    def preview_deposit(self, assets: int) -> int:
        return self.accounting.convert_to_shares(assets, Rounding.FLOOR)

    def preview_mint(self, shares: int) -> int:
        return self.accounting.convert_to_assets(shares, Rounding.CEIL)

    def preview_withdraw(self, assets: int) -> int:
        return self.accounting.convert_to_shares(assets, Rounding.CEIL)

    def preview_redeem(self, shares: int) -> int:
        return self.accounting.convert_to_assets(shares, Rounding.FLOOR)

    def share_price(self) -> float:
        """Base asset per whole share (for reporting)."""
        return self.convert_to_assets(WAD) / WAD

    def snapshot(self) -> Dict[str, object]:
        data = {
            "total_assets": self.total_assets(),
            "total_supply": self.state.total_share_supply,
            "last_total_assets": self.state.last_total_assets,
            "share_price": self.share_price(),
            "idle_base": self.ledger.balance_of(self.base_asset, self.address),
            "fee_shares": (
                self.balance_of(self.state.fee_recipient) if self.state.fee_recipient else 0
            ),
        }
        data.update(self.strategy.describe())
        return data

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    def deposit(self, caller: str, assets: int, receiver: str) -> int:
        """Deposit base asset, mint shares (rounded down) to receiver."""
        with self.guard.atomic("deposit"):
            if assets <= 0:
                raise BoundsViolationError(f"deposit amount must be > 0, got {assets}")
            self.accounting.accrue_fee()
            self._check_ceiling(assets)

            shares = self.accounting.convert_to_shares_with_totals(assets, Rounding.FLOOR)
            if shares == 0:
                raise BoundsViolationError(f"deposit of {assets} mints zero shares")
            self._deposit(caller, receiver, assets, shares)
        return shares

    def mint(self, caller: str, shares: int, receiver: str) -> int:
        """Mint exactly `shares`, pulling the base asset (rounded up)."""
        with self.guard.atomic("mint"):
            if shares <= 0:
                raise BoundsViolationError(f"mint amount must be > 0, got {shares}")
            self.accounting.accrue_fee()

            assets = self.accounting.convert_to_assets_with_totals(shares, Rounding.CEIL)
            self._check_ceiling(assets)
            self._deposit(caller, receiver, assets, shares)
        return assets

    def _check_ceiling(self, assets: int) -> None:
        headroom = zero_floor_sub(self.state.deposit_ceiling, self.state.last_total_assets)
        if assets > headroom:
            raise EconomicGuardError(
                f"deposit of {assets} exceeds ceiling headroom {headroom} "
                f"(ceiling={self.state.deposit_ceiling}, total_assets={self.state.last_total_assets})"
            )

    def _deposit(self, caller: str, receiver: str, assets: int, shares: int) -> None:
        self.ledger.transfer(self.base_asset, caller, self.address, assets)
        self.accounting.mint_shares(receiver, shares)
        self.accounting.record_deposit(assets)
        logger.info(f"[LeveragedVault] Deposit: {caller} -> {receiver}, assets={assets}, shares={shares}")

        self.strategy.build()

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def withdraw(self, caller: str, assets: int, receiver: str, owner: str) -> int:
        """Withdraw exactly `assets`, burning shares (rounded up) from owner."""
        with self.guard.atomic("withdraw"):
            if assets <= 0:
                raise BoundsViolationError(f"withdraw amount must be > 0, got {assets}")
            self.accounting.accrue_fee()

            shares = self.accounting.convert_to_shares_with_totals(assets, Rounding.CEIL)
            self._withdraw(caller, receiver, owner, assets, shares)
        return shares

    def redeem(self, caller: str, shares: int, receiver: str, owner: str) -> int:
        """Burn `shares` from owner, paying out base asset (rounded down)."""
        with self.guard.atomic("redeem"):
            if shares <= 0:
                raise BoundsViolationError(f"redeem amount must be > 0, got {shares}")
            self.accounting.accrue_fee()

            assets = self.accounting.convert_to_assets_with_totals(shares, Rounding.FLOOR)
            if assets == 0:
                raise BoundsViolationError(f"redeeming {shares} shares returns zero assets")
            self._withdraw(caller, receiver, owner, assets, shares)
        return assets

    def _withdraw(self, caller: str, receiver: str, owner: str, assets: int, shares: int) -> None:
        balance = self.balance_of(owner)
        if shares > balance:
            raise EconomicGuardError(f"{owner} holds {balance} shares, {shares} required")
        if caller != owner:
            self.ledger.spend_allowance(self.share_asset, owner, caller, shares)

        self._ensure_liquidity(assets)

        self.accounting.burn_shares(owner, shares)
        self.ledger.transfer(self.base_asset, self.address, receiver, assets)
        self.accounting.record_withdrawal(assets)
        logger.info(
            f"[LeveragedVault] Withdraw: {owner} -> {receiver} (by {caller}), assets={assets}, shares={shares}"
        )

    def _ensure_liquidity(self, assets: int) -> None:
        idle = self.ledger.balance_of(self.base_asset, self.address)
        if idle >= assets:
            return

        self.strategy.unwind_partial(assets - idle)
        idle = self.ledger.balance_of(self.base_asset, self.address)
        if idle < assets:
            raise EconomicGuardError(f"only {idle} {self.base_asset} available after unwind, {assets} required")

    # ------------------------------------------------------------------
    # Strategy management
    # ------------------------------------------------------------------

    def rebalance(self, caller: str, full: bool = False) -> int:
        """
        Re-lever toward the current target.

        full=True unwinds everything first and rebuilds from scratch.

        Returns:
            Iterations executed by the build
        """
        with self.guard.atomic("rebalance"):
            self.roles.require(caller, Role.ALLOCATOR, Role.CURATOR, operation="rebalance")
            self.accounting.accrue_fee()
            if full:
                self.strategy.unwind_full()
            iterations = self.strategy.build()
        logger.info(f"[LeveragedVault] Rebalance by {caller} (full={full}): {iterations} iterations")
        return iterations

    def emergency_unwind(self, caller: str) -> int:
        """Close the whole position and pause building until resumed."""
        with self.guard.atomic("emergency_unwind"):
            self.roles.require(caller, Role.GUARDIAN, operation="emergency_unwind")
            self.accounting.accrue_fee()
            released = self.strategy.unwind_full()
            self.position.paused = True
        logger.warning(f"[LeveragedVault] Emergency unwind by {caller}: released {released} {self.base_asset}")
        return released

    def skim(self, caller: str, asset: str) -> int:
        """Send a stray token balance held by the vault to the skim recipient."""
        with self.guard.atomic("skim"):
            if asset in (self.base_asset, self.borrow_asset, self.receipt_asset, self.share_asset):
                raise InvalidStateError(f"{asset} is managed by the vault and cannot be skimmed")
            recipient = self.roles.skim_recipient
            if recipient is None:
                raise BoundsViolationError("skim recipient is not set")

            amount = self.ledger.balance_of(asset, self.address)
            if amount > 0:
                self.ledger.transfer(asset, self.address, recipient, amount)
        logger.info(f"[LeveragedVault] Skimmed {amount} {asset} to {recipient} (by {caller})")
        return amount
