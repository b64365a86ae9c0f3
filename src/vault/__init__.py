"""
Leveraged Loop Vault Core

1. Accounting Engine - share/asset conversion and fee accrual (accounting.py)
2. Governance/Timelock Controller - role-gated, timelocked parameters (governance.py, timelock.py)
3. Loop Strategy Engine - leverage build, partial and full unwind (strategy.py)

LeveragedVault (vault.py) wires the three together behind an operation guard
that rejects re-entrant calls and rolls back failed operations.
"""

from .errors import (
    VaultError,
    AuthorizationError,
    InvalidStateError,
    ReentrancyError,
    BoundsViolationError,
    TimingViolationError,
    EconomicGuardError,
)
from .math import Rounding, mul_div
from .state import VaultState, LoopPosition
from .roles import Role, RoleSet
from .timelock import PendingChange, GovernanceState, TimelockedParameter
from .guard import OperationGuard
from .accounting import AccountingEngine
from .governance import GovernanceController
from .strategy import LoopStrategyEngine
from .vault import LeveragedVault

__all__ = [
    "VaultError",
    "AuthorizationError",
    "InvalidStateError",
    "ReentrancyError",
    "BoundsViolationError",
    "TimingViolationError",
    "EconomicGuardError",
    "Rounding",
    "mul_div",
    "VaultState",
    "LoopPosition",
    "Role",
    "RoleSet",
    "PendingChange",
    "GovernanceState",
    "TimelockedParameter",
    "OperationGuard",
    "AccountingEngine",
    "GovernanceController",
    "LoopStrategyEngine",
    "LeveragedVault",
]
