"""
External collaborators: interfaces consumed by the vault core and their
in-memory simulations.
"""

from .errors import VenueError, InsufficientBalanceError
from .interfaces import (
    AccountRisk,
    AssetLedger,
    PriceOracle,
    CreditVenue,
    StakingConverter,
    AssetExchange,
)
from .ledger import InMemoryLedger
from .simulated import (
    StaticPriceOracle,
    CollateralConfig,
    SimulatedCreditVenue,
    SimulatedStakingConverter,
    SimulatedExchange,
)

__all__ = [
    'VenueError',
    'InsufficientBalanceError',
    'AccountRisk',
    'AssetLedger',
    'PriceOracle',
    'CreditVenue',
    'StakingConverter',
    'AssetExchange',
    'InMemoryLedger',
    'StaticPriceOracle',
    'CollateralConfig',
    'SimulatedCreditVenue',
    'SimulatedStakingConverter',
    'SimulatedExchange',
]
