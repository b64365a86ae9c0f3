"""
Errors raised by the external collaborators (ledger, venues, converter, exchange).

These are not part of the vault's own taxonomy: the vault lets them abort the
enclosing operation and its transaction restores the pre-call state.
"""


class VenueError(Exception):
    """An external venue refused the request."""


class InsufficientBalanceError(VenueError):
    """A ledger transfer, burn or allowance spend exceeded what is available."""
