"""
Vault error taxonomy.

Every rejected operation raises one of these synchronously; the operation
guard rolls back all state touched before the failure.
"""


class VaultError(Exception):
    """Base class for vault rejections."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class AuthorizationError(VaultError):
    """Caller lacks the role required by the operation."""


class InvalidStateError(VaultError):
    """Value already set, change already pending, or nothing pending."""


class ReentrancyError(InvalidStateError):
    """A state-mutating call arrived while another one was in flight."""


class BoundsViolationError(VaultError):
    """Parameter outside its static bounds, or a disallowed empty address."""


class TimingViolationError(VaultError):
    """Timelock has not elapsed yet."""


class EconomicGuardError(VaultError):
    """Deposit ceiling, safety ratio, leverage or liquidity guard tripped."""
