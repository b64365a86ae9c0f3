"""
Mutable state records owned by one vault instance.

VaultState is owned by the AccountingEngine, LoopPosition by the
LoopStrategyEngine. Both are plain dataclasses so the operation guard can
snapshot and restore them.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class VaultState:
    """
    Share accounting state.

    Attributes:
        total_share_supply: Shares outstanding (fee shares included)
        last_total_assets: Base-asset value recorded at the last accrual
        fee_bps: Performance fee on interest, in basis points
        fee_recipient: Receives fee shares; required while fee_bps > 0
        deposit_ceiling: Deposits may never push total assets above this
        virtual_shares: 10 ** decimals_offset, virtual liquidity padding
    """
    total_share_supply: int = 0
    last_total_assets: int = 0
    fee_bps: int = 0
    fee_recipient: Optional[str] = None
    deposit_ceiling: int = 0
    virtual_shares: int = 1


@dataclass
class LoopPosition:
    """
    Aggregate exposure of the loop strategy.

    total_borrowed is in borrow-asset units summed over venues;
    total_receipt_held counts receipt units posted as collateral or held idle.
    """
    iteration_count: int = 0
    total_borrowed: int = 0
    total_receipt_held: int = 0
    paused: bool = False

    @property
    def is_flat(self) -> bool:
        return self.iteration_count == 0

    def reset(self) -> None:
        self.iteration_count = 0
        self.total_borrowed = 0
        self.total_receipt_held = 0
