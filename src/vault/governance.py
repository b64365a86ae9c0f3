"""
Governance / Timelock Controller

Owns the mutable risk parameters of a vault:

Timelocked (submit, then accept once the delay has elapsed):
- timelock: delay itself, bounded to [MIN_TIMELOCK, MAX_TIMELOCK];
  lengthening applies immediately
- guardian: risk overseer; appointing one when none exists applies immediately
- deposit_ceiling: lowering applies immediately

Immediate, owner only:
- curator, allocators, fee, fee recipient, skim recipient, ownership transfer

Immediate, curator (owner implied):
- target leverage, max iterations, venue split, resuming a paused strategy

Every mutation runs under the shared OperationGuard, so a rejected call leaves
state untouched and nothing can be changed from inside an in-flight vault
operation.
"""

import logging
from typing import Any, Callable, Dict, Optional

from src.config.constants import BPS, MAX_FEE_BPS, MAX_ITERATIONS, MAX_LEVERAGE_BPS, MAX_TIMELOCK, MIN_TIMELOCK
from src.config.vault_config import StrategyParams
from .accounting import AccountingEngine
from .errors import AuthorizationError, BoundsViolationError, EconomicGuardError, InvalidStateError
from .guard import OperationGuard
from .roles import Role, RoleSet
from .state import LoopPosition
from .timelock import GovernanceState, PendingChange, TimelockedParameter

logger = logging.getLogger(__name__)

TIMELOCK = "timelock"
GUARDIAN = "guardian"
DEPOSIT_CEILING = "deposit_ceiling"


class GovernanceController:
    """
    Role-gated parameter changes for one vault.

    Args:
        state: Timelock value and pending records
        roles: Role assignments
        accounting: Accrues fees before fee economics change
        strategy_params: Loop strategy parameters (curator-managed)
        position: Loop position (for the emergency pause flag)
        guard: Operation guard shared with the vault
        clock: Returns current time in seconds
    """

    def __init__(
        self,
        state: GovernanceState,
        roles: RoleSet,
        accounting: AccountingEngine,
        strategy_params: StrategyParams,
        position: LoopPosition,
        guard: OperationGuard,
        clock: Callable[[], int],
    ):
        self.state = state
        self.roles = roles
        self.accounting = accounting
        self.strategy_params = strategy_params
        self.position = position
        self.guard = guard
        self.clock = clock

        self.parameters: Dict[str, TimelockedParameter] = {
            TIMELOCK: TimelockedParameter(
                TIMELOCK,
                get_current=lambda: self.state.timelock,
                apply=self._apply_timelock,
                check_bounds=self._check_timelock_bounds,
                is_risk_reducing=lambda current, new: new > current,
            ),
            GUARDIAN: TimelockedParameter(
                GUARDIAN,
                get_current=lambda: self.roles.guardian,
                apply=self._apply_guardian,
                is_risk_reducing=lambda current, new: current is None,
            ),
            DEPOSIT_CEILING: TimelockedParameter(
                DEPOSIT_CEILING,
                get_current=lambda: self.accounting.state.deposit_ceiling,
                apply=self._apply_deposit_ceiling,
                check_bounds=self._check_ceiling_bounds,
                is_risk_reducing=lambda current, new: new < current,
            ),
        }

        logger.info(
            f"[GovernanceController] Initialized: owner={self.roles.owner}, "
            f"timelock={self.state.timelock}s, guardian={self.roles.guardian}"
        )

    # ------------------------------------------------------------------
    # Timelocked parameters
    # ------------------------------------------------------------------

    def submit(self, caller: str, name: str, value: Any) -> bool:
        """
        Propose a new value.

        Checks run in order: unchanged value (InvalidState, whatever the
        caller's role), owner role, existing pending change, static bounds.

        Returns:
            True if applied immediately (risk-reducing), False if now pending
        """
        param = self._parameter(name)
        with self.guard.atomic(f"submit_{name}"):
            param.require_changed(value)
            self.roles.require(caller, Role.OWNER, operation=f"submit_{name}")
            return param.submit(self.state, value, self.clock())

    def accept(self, caller: str, name: str) -> Any:
        """Apply a pending value once its delay has elapsed (permissionless)."""
        param = self._parameter(name)
        with self.guard.atomic(f"accept_{name}"):
            value = param.accept(self.state, self.clock())
        logger.info(f"[GovernanceController] {caller} accepted {name}={value!r}")
        return value

    def revoke(self, caller: str, name: str) -> Any:
        param = self._parameter(name)
        allowed = (Role.GUARDIAN, Role.CURATOR) if name == DEPOSIT_CEILING else (Role.GUARDIAN,)
        with self.guard.atomic(f"revoke_{name}"):
            self.roles.require(caller, *allowed, operation=f"revoke_{name}")
            return param.revoke(self.state)

    def pending(self, name: str) -> PendingChange:
        self._parameter(name)
        return self.state.pending_for(name)

    def submit_timelock(self, caller: str, new_timelock: int) -> bool:
        return self.submit(caller, TIMELOCK, new_timelock)

    def accept_timelock(self, caller: str) -> int:
        return self.accept(caller, TIMELOCK)

    def revoke_pending_timelock(self, caller: str) -> int:
        return self.revoke(caller, TIMELOCK)

    def submit_guardian(self, caller: str, new_guardian: Optional[str]) -> bool:
        return self.submit(caller, GUARDIAN, new_guardian)

    def accept_guardian(self, caller: str) -> Optional[str]:
        return self.accept(caller, GUARDIAN)

    def revoke_pending_guardian(self, caller: str) -> Optional[str]:
        return self.revoke(caller, GUARDIAN)

    def submit_deposit_ceiling(self, caller: str, new_ceiling: int) -> bool:
        return self.submit(caller, DEPOSIT_CEILING, new_ceiling)

    def accept_deposit_ceiling(self, caller: str) -> int:
        return self.accept(caller, DEPOSIT_CEILING)

    def revoke_pending_deposit_ceiling(self, caller: str) -> int:
        return self.revoke(caller, DEPOSIT_CEILING)

    def _parameter(self, name: str) -> TimelockedParameter:
        if name not in self.parameters:
            raise ValueError(f"Unknown timelocked parameter: {name}. Available: {list(self.parameters)}")
        return self.parameters[name]

    @staticmethod
    def _check_timelock_bounds(value: int) -> None:
        if not isinstance(value, int) or not (MIN_TIMELOCK <= value <= MAX_TIMELOCK):
            raise BoundsViolationError(
                f"timelock must be within [{MIN_TIMELOCK}, {MAX_TIMELOCK}] seconds, got {value}"
            )

    @staticmethod
    def _check_ceiling_bounds(value: int) -> None:
        if not isinstance(value, int) or value < 0:
            raise BoundsViolationError(f"deposit_ceiling must be a non-negative integer, got {value}")

    def _apply_timelock(self, value: int) -> None:
        self.state.timelock = value

    def _apply_guardian(self, value: Optional[str]) -> None:
        self.roles.guardian = value

    def _apply_deposit_ceiling(self, value: int) -> None:
        self.accounting.state.deposit_ceiling = value

    # ------------------------------------------------------------------
    # Immediate owner-only settings
    # ------------------------------------------------------------------

    def set_curator(self, caller: str, new_curator: Optional[str]) -> None:
        with self.guard.atomic("set_curator"):
            self.roles.require(caller, Role.OWNER, operation="set_curator")
            if new_curator == self.roles.curator:
                raise InvalidStateError(f"curator is already {new_curator!r}")
            self.roles.curator = new_curator
        logger.info(f"[GovernanceController] curator set to {new_curator}")

    def set_allocator(self, caller: str, account: str, enabled: bool) -> None:
        with self.guard.atomic("set_allocator"):
            self.roles.require(caller, Role.OWNER, operation="set_allocator")
            if not account:
                raise BoundsViolationError("allocator address must not be empty")
            if (account in self.roles.allocators) == enabled:
                raise InvalidStateError(f"allocator {account} already {'enabled' if enabled else 'disabled'}")
            if enabled:
                self.roles.allocators.add(account)
            else:
                self.roles.allocators.discard(account)
        logger.info(f"[GovernanceController] allocator {account} enabled={enabled}")

    def set_fee(self, caller: str, new_fee_bps: int) -> None:
        vault_state = self.accounting.state
        with self.guard.atomic("set_fee"):
            self.roles.require(caller, Role.OWNER, operation="set_fee")
            if new_fee_bps == vault_state.fee_bps:
                raise InvalidStateError(f"fee is already {new_fee_bps} bps")
            if not (0 <= new_fee_bps <= MAX_FEE_BPS):
                raise BoundsViolationError(f"fee must be within [0, {MAX_FEE_BPS}] bps, got {new_fee_bps}")
            if new_fee_bps != 0 and vault_state.fee_recipient is None:
                raise BoundsViolationError("a non-zero fee requires a fee recipient")

            # interest up to now is charged at the old rate
            self.accounting.accrue_fee()
            vault_state.fee_bps = new_fee_bps
        logger.info(f"[GovernanceController] fee set to {new_fee_bps} bps")

    def set_fee_recipient(self, caller: str, new_recipient: Optional[str]) -> None:
        vault_state = self.accounting.state
        with self.guard.atomic("set_fee_recipient"):
            self.roles.require(caller, Role.OWNER, operation="set_fee_recipient")
            if new_recipient == vault_state.fee_recipient:
                raise InvalidStateError(f"fee recipient is already {new_recipient!r}")
            if new_recipient is None and vault_state.fee_bps != 0:
                raise BoundsViolationError("cannot clear the fee recipient while the fee is non-zero")

            # pending fees go to the outgoing recipient
            self.accounting.accrue_fee()
            vault_state.fee_recipient = new_recipient
        logger.info(f"[GovernanceController] fee recipient set to {new_recipient}")

    def set_skim_recipient(self, caller: str, new_recipient: Optional[str]) -> None:
        with self.guard.atomic("set_skim_recipient"):
            self.roles.require(caller, Role.OWNER, operation="set_skim_recipient")
            if new_recipient == self.roles.skim_recipient:
                raise InvalidStateError(f"skim recipient is already {new_recipient!r}")
            self.roles.skim_recipient = new_recipient
        logger.info(f"[GovernanceController] skim recipient set to {new_recipient}")

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self.guard.atomic("transfer_ownership"):
            self.roles.require(caller, Role.OWNER, operation="transfer_ownership")
            if not new_owner:
                raise BoundsViolationError("new owner must not be empty")
            if new_owner == self.roles.owner or new_owner == self.state.pending_owner:
                raise InvalidStateError(f"{new_owner} is already owner or pending owner")
            self.state.pending_owner = new_owner
        logger.info(f"[GovernanceController] ownership transfer to {new_owner} started")

    def accept_ownership(self, caller: str) -> None:
        with self.guard.atomic("accept_ownership"):
            if self.state.pending_owner is None:
                raise InvalidStateError("no pending ownership transfer")
            if caller != self.state.pending_owner:
                raise AuthorizationError(f"{caller} is not the pending owner")
            self.roles.owner = caller
            self.state.pending_owner = None
        logger.info(f"[GovernanceController] ownership accepted by {caller}")

    # ------------------------------------------------------------------
    # Curator settings
    # ------------------------------------------------------------------

    def set_target_leverage(self, caller: str, leverage_bps: int) -> None:
        with self.guard.atomic("set_target_leverage"):
            self.roles.require(caller, Role.CURATOR, operation="set_target_leverage")
            if leverage_bps == self.strategy_params.target_leverage_bps:
                raise InvalidStateError(f"target leverage is already {leverage_bps} bps")
            if leverage_bps > MAX_LEVERAGE_BPS:
                raise EconomicGuardError(
                    f"target leverage {leverage_bps} bps exceeds maximum {MAX_LEVERAGE_BPS} bps"
                )
            if leverage_bps < BPS:
                raise BoundsViolationError(f"target leverage must be >= {BPS} bps (1x), got {leverage_bps}")
            self.strategy_params.target_leverage_bps = leverage_bps
        logger.info(f"[GovernanceController] target leverage set to {leverage_bps / BPS:.2f}x")

    def set_max_iterations(self, caller: str, max_iterations: int) -> None:
        with self.guard.atomic("set_max_iterations"):
            self.roles.require(caller, Role.CURATOR, operation="set_max_iterations")
            if max_iterations == self.strategy_params.max_iterations:
                raise InvalidStateError(f"max iterations is already {max_iterations}")
            if not (1 <= max_iterations <= MAX_ITERATIONS):
                raise BoundsViolationError(
                    f"max iterations must be within [1, {MAX_ITERATIONS}], got {max_iterations}"
                )
            self.strategy_params.max_iterations = max_iterations
        logger.info(f"[GovernanceController] max iterations set to {max_iterations}")

    def set_venue_split(self, caller: str, split_bps: int) -> None:
        with self.guard.atomic("set_venue_split"):
            self.roles.require(caller, Role.CURATOR, operation="set_venue_split")
            if split_bps == self.strategy_params.venue_split_bps:
                raise InvalidStateError(f"venue split is already {split_bps} bps")
            if not (0 < split_bps <= BPS):
                raise BoundsViolationError(f"venue split must be within (0, {BPS}] bps, got {split_bps}")
            self.strategy_params.venue_split_bps = split_bps
        logger.info(f"[GovernanceController] venue split set to {split_bps} bps")

    def resume_strategy(self, caller: str) -> None:
        """Lift the build pause left by an emergency unwind."""
        with self.guard.atomic("resume_strategy"):
            self.roles.require(caller, Role.CURATOR, operation="resume_strategy")
            if not self.position.paused:
                raise InvalidStateError("strategy is not paused")
            self.position.paused = False
        logger.info(f"[GovernanceController] strategy resumed by {caller}")
