"""
Loop Strategy Engine

Builds and reverses the recursive borrow-and-restake position:

    base collateral -> borrow -> stake into receipt -> post receipt -> borrow ...

Layouts:
- Single venue: every receipt is posted back to venue A.
- Two venues: each iteration borrows a slice of the remaining need from A,
  posts the receipt to B, borrows from B, stakes again and posts that
  receipt back to A.

States: Flat (iteration_count == 0) and Leveraged.

Unwinding walks venues innermost first (B, then A). Debt is repaid with
borrow asset obtained by freeing collateral within `unwind_health_floor`
and swapping it on the exchange, since the staking converter only works in
one direction. A stalled secondary venue may be bridged with a borrow from
venue A; a stalled primary venue aborts the operation.

The engine also values the position for the accounting engine.
"""

import logging
from typing import Dict, List, Optional

from src.config.constants import BPS, WAD
from src.config.vault_config import StrategyParams
from src.venues.interfaces import AssetExchange, AssetLedger, CreditVenue, PriceOracle, StakingConverter
from .errors import EconomicGuardError
from .math import Rounding, mul_div, zero_floor_sub
from .state import LoopPosition

logger = logging.getLogger(__name__)


class LoopStrategyEngine:
    """
    Leverage loop over one or two credit venues.

    Args:
        params: Strategy parameters (shared with governance)
        position: Aggregate exposure trackers
        ledger: Asset ledger holding the vault's idle balances
        oracle: Read-only price oracle
        converter: Borrow asset -> receipt asset staking service
        exchange: Secondary market used while unwinding
        venue_a: Primary credit venue (holds the base collateral)
        venue_b: Optional secondary credit venue
        account: Address the vault acts as
        base_asset / borrow_asset / receipt_asset: Asset symbols
    """

    def __init__(
        self,
        params: StrategyParams,
        position: LoopPosition,
        ledger: AssetLedger,
        oracle: PriceOracle,
        converter: StakingConverter,
        exchange: AssetExchange,
        venue_a: CreditVenue,
        venue_b: Optional[CreditVenue],
        account: str,
        base_asset: str,
        borrow_asset: str,
        receipt_asset: str,
    ):
        self.params = params
        self.position = position
        self.ledger = ledger
        self.oracle = oracle
        self.converter = converter
        self.exchange = exchange
        self.venue_a = venue_a
        self.venue_b = venue_b
        self.account = account
        self.base_asset = base_asset
        self.borrow_asset = borrow_asset
        self.receipt_asset = receipt_asset

        self._unwind_steps = 0
        self._bridged = 0

        logger.info(
            f"[LoopStrategyEngine] Initialized: venues={[v.name for v in self.venues]}, "
            f"target={params.target_leverage_bps / BPS:.2f}x, max_iterations={params.max_iterations}"
        )

    @property
    def venues(self) -> List[CreditVenue]:
        return [self.venue_a] if self.venue_b is None else [self.venue_a, self.venue_b]

    @property
    def is_multi_venue(self) -> bool:
        return self.venue_b is not None

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    def total_assets(self) -> int:
        """
        Vault value in base-asset units.

        idle base + base collateral + receipts (idle and posted) + idle borrow
        asset - debt, floored at zero. Legs whose oracle rate is zero are left
        out.
        """
        base = self.ledger.balance_of(self.base_asset, self.account)
        receipts = self.ledger.balance_of(self.receipt_asset, self.account)
        idle_borrow = self.ledger.balance_of(self.borrow_asset, self.account)
        debt = 0
        for venue in self.venues:
            base += venue.collateral_of(self.account, self.base_asset)
            receipts += venue.collateral_of(self.account, self.receipt_asset)
            debt += venue.debt_of(self.account, self.borrow_asset)

        value = (
            base
            + self._value_in_base(self.receipt_asset, receipts)
            + self._value_in_base(self.borrow_asset, idle_borrow)
        )
        return zero_floor_sub(value, self._value_in_base(self.borrow_asset, debt, Rounding.CEIL))

    def net_position_value(self) -> int:
        """Deployed collateral value (base and receipt) minus debt value."""
        collateral = 0
        debt = 0
        for venue in self.venues:
            collateral += venue.collateral_of(self.account, self.base_asset)
            collateral += self._value_in_base(
                self.receipt_asset, venue.collateral_of(self.account, self.receipt_asset)
            )
            debt += venue.debt_of(self.account, self.borrow_asset)
        return zero_floor_sub(collateral, self._value_in_base(self.borrow_asset, debt, Rounding.CEIL))

    def current_leverage_bps(self) -> int:
        collateral = 0
        debt = 0
        for venue in self.venues:
            risk = venue.get_account_risk(self.account)
            collateral += risk.collateral_value
            debt += risk.debt_value
        equity = zero_floor_sub(collateral, debt)
        if equity == 0:
            return 0
        return mul_div(collateral, BPS, equity)

    def min_safety_ratio(self) -> int:
        return min(venue.get_account_risk(self.account).safety_ratio for venue in self.venues)

    def describe(self) -> Dict[str, object]:
        return {
            "iteration_count": self.position.iteration_count,
            "total_borrowed": self.position.total_borrowed,
            "total_receipt_held": self.position.total_receipt_held,
            "paused": self.position.paused,
            "total_assets": self.total_assets(),
            "net_position_value": self.net_position_value(),
            "leverage_bps": self.current_leverage_bps(),
            "min_safety_ratio": self.min_safety_ratio(),
        }

    def _value_in_base(self, asset: str, amount: int, rounding: Rounding = Rounding.FLOOR) -> int:
        if amount == 0 or asset == self.base_asset:
            return amount
        rate = self.oracle.rate(asset, self.base_asset)
        if rate == 0:
            logger.warning(
                f"[LoopStrategyEngine] Zero {asset}/{self.base_asset} oracle rate; "
                f"{amount} {asset} left out of valuation"
            )
            return 0
        return mul_div(amount, rate, WAD, rounding)

    def _borrow_units(self, value: int) -> int:
        """Base-asset value -> borrow-asset units (floor)."""
        rate = self.oracle.rate(self.borrow_asset, self.base_asset)
        if rate == 0 or value <= 0:
            return 0
        return mul_div(value, WAD, rate)

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self) -> int:
        """
        Deploy idle base asset and lever up toward the target.

        Returns:
            Number of iterations executed
        """
        if self.position.paused:
            logger.info("[LoopStrategyEngine] Build skipped: strategy paused")
            return 0

        if not self._rates_available():
            logger.warning("[LoopStrategyEngine] Build skipped: oracle returned a zero rate")
            return 0

        idle = self.ledger.balance_of(self.base_asset, self.account)
        if idle > 0:
            self.venue_a.supply_collateral(self.base_asset, idle, self.account)
            logger.debug(f"[LoopStrategyEngine] Supplied {idle} {self.base_asset} to {self.venue_a.name}")

        equity = 0
        for venue in self.venues:
            risk = venue.get_account_risk(self.account)
            equity += risk.collateral_value - risk.debt_value
        desired_debt_value = mul_div(max(equity, 0), self.params.target_leverage_bps - BPS, BPS)

        min_borrow = self._min_borrow()
        iterations = 0
        for _ in range(self.params.max_iterations):
            # a remainder below min_borrow is rounding dust: target reached
            need = self._borrow_units(desired_debt_value - self._debt_value())
            if need < min_borrow:
                break

            amount = min(self._borrow_capacity(self.venue_a), need)
            if self.is_multi_venue:
                amount = min(amount, mul_div(need, self.params.venue_split_bps, BPS))
            if amount < min_borrow:
                logger.debug(f"[LoopStrategyEngine] {self.venue_a.name} has no borrow capacity left")
                break

            receipt = self._borrow_and_stake(self.venue_a, amount)
            if self.is_multi_venue:
                self.venue_b.supply_collateral(self.receipt_asset, receipt, self.account)
                need_b = self._borrow_units(desired_debt_value - self._debt_value())
                amount_b = min(self._borrow_capacity(self.venue_b), need_b)
                if amount_b >= min_borrow:
                    receipt_b = self._borrow_and_stake(self.venue_b, amount_b)
                    self.venue_a.supply_collateral(self.receipt_asset, receipt_b, self.account)
            else:
                self.venue_a.supply_collateral(self.receipt_asset, receipt, self.account)

            iterations += 1
            safety = self.min_safety_ratio()
            logger.debug(
                f"[LoopStrategyEngine] Iteration {iterations}: borrowed={self.position.total_borrowed}, "
                f"safety={safety / WAD:.4f}"
            )
            if safety < self.params.min_health_factor:
                logger.warning(
                    f"[LoopStrategyEngine] Safety ratio {safety / WAD:.4f} below minimum "
                    f"{self.params.min_health_factor / WAD:.4f}; stopping after iteration {iterations}"
                )
                break

        self.position.iteration_count += iterations
        logger.info(
            f"[LoopStrategyEngine] Build: {iterations} iterations, "
            f"leverage={self.current_leverage_bps() / BPS:.2f}x, "
            f"position_iterations={self.position.iteration_count}"
        )
        return iterations

    def _rates_available(self) -> bool:
        return all(
            self.oracle.rate(a, b) > 0
            for a, b in (
                (self.borrow_asset, self.receipt_asset),
                (self.receipt_asset, self.base_asset),
                (self.borrow_asset, self.base_asset),
            )
        )

    def _min_borrow(self) -> int:
        """Smallest borrow worth a loop step: above dust and staking to at least one receipt unit."""
        yields_one = mul_div(1, WAD, self.oracle.rate(self.borrow_asset, self.receipt_asset), Rounding.CEIL)
        return max(yields_one, self._borrow_units(self.params.dust_threshold), 1)

    def _debt_value(self) -> int:
        return sum(venue.get_account_risk(self.account).debt_value for venue in self.venues)

    def _borrow_capacity(self, venue: CreditVenue) -> int:
        return self._borrow_units(venue.get_account_risk(self.account).available_borrow_value)

    def _borrow_and_stake(self, venue: CreditVenue, amount: int) -> int:
        borrowed = venue.borrow(self.borrow_asset, amount, self.account)
        receipt = self.converter.convert(borrowed, self.account)
        self.position.total_borrowed += borrowed
        self.position.total_receipt_held += receipt
        return receipt

    # ------------------------------------------------------------------
    # Unwind
    # ------------------------------------------------------------------

    def unwind_full(self) -> int:
        """
        Repay every debt, withdraw every collateral, convert to base asset.

        Returns:
            Base asset released to the vault's idle balance
        """
        idle_before = self.ledger.balance_of(self.base_asset, self.account)
        self._unwind_steps = 0
        self._bridged = 0

        for venue in reversed(self.venues):
            repay_target = venue.debt_of(self.account, self.borrow_asset)
            self._reduce_venue(venue, repay_target, release=None)

        self._swap_residuals_to_base()
        self.position.reset()

        released = self.ledger.balance_of(self.base_asset, self.account) - idle_before
        logger.info(
            f"[LoopStrategyEngine] Full unwind: released {released} {self.base_asset} "
            f"in {self._unwind_steps} steps"
        )
        return released

    def unwind_partial(self, additional_needed: int) -> int:
        """
        Release at least `additional_needed` base asset by scaling every leg.

        Degrades to a full unwind when the position cannot cover the request,
        when the ratio is close enough to 100% or when only dust would remain.

        Returns:
            Base asset released to the vault's idle balance
        """
        if additional_needed <= 0:
            return 0

        net = self.net_position_value()
        if net < additional_needed:
            logger.warning(
                f"[LoopStrategyEngine] Net position {net} below requested {additional_needed}; "
                f"falling back to full unwind"
            )
            return self.unwind_full()

        buffer = mul_div(self.params.unwind_buffer_bps, WAD, BPS)
        ratio = min(mul_div(additional_needed, WAD, net, Rounding.CEIL) + buffer, WAD)
        if ratio >= mul_div(self.params.full_unwind_threshold_bps, WAD, BPS):
            logger.info(f"[LoopStrategyEngine] Unwind ratio {ratio / WAD:.4%} at threshold; unwinding fully")
            return self.unwind_full()

        idle_before = self.ledger.balance_of(self.base_asset, self.account)
        self._unwind_steps = 0
        self._bridged = 0

        for venue in reversed(self.venues):
            release = {
                asset: mul_div(venue.collateral_of(self.account, asset), ratio, WAD)
                for asset in (self.receipt_asset, self.base_asset)
            }
            repay_target = mul_div(venue.debt_of(self.account, self.borrow_asset), ratio, WAD, Rounding.CEIL)
            if venue is self.venue_a:
                # bridging debt drawn from A is always cleared in the same call
                repay_target += self._bridged
            self._reduce_venue(venue, repay_target, release=release)

        self._swap_residuals_to_base()
        self._sync_position(ratio)

        released = self.ledger.balance_of(self.base_asset, self.account) - idle_before
        logger.info(
            f"[LoopStrategyEngine] Partial unwind: ratio={ratio / WAD:.4%}, released {released} "
            f"{self.base_asset}, iterations={self.position.iteration_count}"
        )

        if released < additional_needed:
            logger.warning(
                f"[LoopStrategyEngine] Partial unwind released {released} < {additional_needed}; "
                f"unwinding fully"
            )
            return released + self.unwind_full()

        if not self.position.is_flat and self._exposure_value() < self.params.dust_threshold:
            logger.info("[LoopStrategyEngine] Remaining exposure is dust; closing position")
            return released + self.unwind_full()

        return released

    def _reduce_venue(self, venue: CreditVenue, repay_target: int, release: Optional[Dict[str, int]]) -> None:
        """
        Repay up to repay_target at venue, then withdraw the release amounts.

        release=None releases every collateral the venue holds for the vault.
        """
        is_primary = venue is self.venue_a
        repaid = 0
        while repaid < repay_target:
            outstanding = min(repay_target - repaid, venue.debt_of(self.account, self.borrow_asset))
            if outstanding <= 0:
                break
            self._consume_step(venue)

            available = self._borrow_asset_on_hand(outstanding)
            if available == 0:
                available = self._free_collateral(venue, outstanding, release)
            if available == 0:
                if release is not None and not any(release.values()):
                    # partial release budget spent; the rest stays levered
                    break
                if is_primary:
                    raise EconomicGuardError(
                        f"unwind stalled at {venue.name}: no collateral can be freed "
                        f"(safety={venue.get_account_risk(self.account).safety_ratio / WAD:.4f})"
                    )
                available = self._bridge(outstanding)

            repaid += venue.repay(self.borrow_asset, min(available, outstanding), self.account)

        for asset in (self.receipt_asset, self.base_asset):
            held = venue.collateral_of(self.account, asset)
            amount = held if release is None else min(held, release.get(asset, 0))
            if amount > 0:
                venue.withdraw_collateral(asset, amount, self.account)

    def _consume_step(self, venue: CreditVenue) -> None:
        self._unwind_steps += 1
        if self._unwind_steps > self.params.max_unwind_steps:
            raise EconomicGuardError(
                f"unwind exceeded {self.params.max_unwind_steps} steps at {venue.name}"
            )

    def _borrow_asset_on_hand(self, outstanding: int) -> int:
        """Idle borrow asset, topped up by swapping idle receipts."""
        on_hand = self.ledger.balance_of(self.borrow_asset, self.account)
        idle_receipt = self.ledger.balance_of(self.receipt_asset, self.account)
        if on_hand < outstanding and idle_receipt > 0:
            needed = self._input_for(self.receipt_asset, outstanding - on_hand)
            self.exchange.swap(
                self.receipt_asset, self.borrow_asset, min(idle_receipt, needed), self.account
            )
            on_hand = self.ledger.balance_of(self.borrow_asset, self.account)
        return on_hand

    def _free_collateral(self, venue: CreditVenue, outstanding: int, release: Optional[Dict[str, int]]) -> int:
        """
        Withdraw collateral worth about `outstanding` borrow units without
        taking the venue below the unwind health floor, and swap it into the
        borrow asset. Receipts go first, base collateral second.
        """
        risk = venue.get_account_risk(self.account)
        floor = self.params.unwind_health_floor
        if risk.debt_value > 0 and risk.safety_ratio <= floor:
            return 0
        if risk.debt_value == 0:
            withdrawable_value = risk.collateral_value
        else:
            withdrawable_value = mul_div(risk.collateral_value, risk.safety_ratio - floor, risk.safety_ratio)

        for asset in (self.receipt_asset, self.base_asset):
            held = venue.collateral_of(self.account, asset)
            if release is not None:
                held = min(held, release.get(asset, 0))
            rate_to_base = WAD if asset == self.base_asset else self.oracle.rate(asset, self.base_asset)
            if held == 0 or rate_to_base == 0:
                continue

            amount = min(
                held,
                self._input_for(asset, outstanding),
                mul_div(withdrawable_value, WAD, rate_to_base),
            )
            if amount == 0:
                continue

            withdrawn = venue.withdraw_collateral(asset, amount, self.account)
            if release is not None:
                release[asset] -= withdrawn
            self.exchange.swap(asset, self.borrow_asset, withdrawn, self.account)
            logger.debug(f"[LoopStrategyEngine] Freed {withdrawn} {asset} from {venue.name} for repayment")
            return self.ledger.balance_of(self.borrow_asset, self.account)
        return 0

    def _input_for(self, asset: str, borrow_amount: int) -> int:
        """Units of asset to swap for borrow_amount, with the unwind buffer on top."""
        rate = self.oracle.rate(asset, self.borrow_asset)
        if rate == 0:
            return 0
        grossed = mul_div(borrow_amount, BPS + self.params.unwind_buffer_bps, BPS, Rounding.CEIL)
        return mul_div(grossed, WAD, rate, Rounding.CEIL)

    def _bridge(self, outstanding: int) -> int:
        """Short-lived borrow from venue A to clear a stalled secondary venue."""
        amount = min(self._borrow_capacity(self.venue_a), outstanding)
        if amount <= 0:
            raise EconomicGuardError(
                f"unwind stalled: {self.venue_a.name} cannot fund a bridging borrow of {outstanding}"
            )
        borrowed = self.venue_a.borrow(self.borrow_asset, amount, self.account)
        self._bridged += borrowed
        logger.warning(f"[LoopStrategyEngine] Bridging borrow of {borrowed} {self.borrow_asset} from {self.venue_a.name}")
        return borrowed

    def _swap_residuals_to_base(self) -> None:
        for asset in (self.receipt_asset, self.borrow_asset):
            balance = self.ledger.balance_of(asset, self.account)
            if balance > 0:
                self.exchange.swap(asset, self.base_asset, balance, self.account)

    def _sync_position(self, ratio: int) -> None:
        """Re-read trackers from the venues after a proportional unwind."""
        borrowed = 0
        receipts = self.ledger.balance_of(self.receipt_asset, self.account)
        for venue in self.venues:
            borrowed += venue.debt_of(self.account, self.borrow_asset)
            receipts += venue.collateral_of(self.account, self.receipt_asset)

        self.position.total_borrowed = borrowed
        self.position.total_receipt_held = receipts
        if borrowed == 0 and receipts == 0:
            self.position.iteration_count = 0
        else:
            scaled = mul_div(self.position.iteration_count, WAD - ratio, WAD, Rounding.CEIL)
            self.position.iteration_count = max(scaled, 1)

    def _exposure_value(self) -> int:
        return self._value_in_base(self.borrow_asset, self.position.total_borrowed) + self._value_in_base(
            self.receipt_asset, self.position.total_receipt_held
        )
