"""
Timelocked Parameter

One reusable submit -> accept-after-delay state machine, parameterised by a
bounds check, an apply function and a risk-reducing predicate:

    Idle --submit--> Pending --accept (now >= valid_at)--> Applied -> Idle
      +--submit (risk-reducing)--> Applied -> Idle
    Pending --revoke--> Idle

A pending record is never overwritten; it must be accepted or revoked first.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .errors import InvalidStateError, TimingViolationError

logger = logging.getLogger(__name__)


@dataclass
class PendingChange:
    """valid_at == 0 means nothing is pending."""
    value: Any = None
    valid_at: int = 0

    @property
    def is_pending(self) -> bool:
        return self.valid_at != 0


@dataclass
class GovernanceState:
    timelock: int
    pending: Dict[str, PendingChange] = field(default_factory=dict)
    pending_owner: Optional[str] = None

    def pending_for(self, name: str) -> PendingChange:
        return self.pending.get(name, PendingChange())


class TimelockedParameter:
    """
    Args:
        name: Parameter key in GovernanceState.pending
        get_current: Returns the value in effect
        apply: Puts a value into effect
        check_bounds: Raises BoundsViolationError for out-of-bounds values
        is_risk_reducing: (current, proposed) -> True if the change only
                          tightens safety and may skip the delay
    """

    def __init__(
        self,
        name: str,
        get_current: Callable[[], Any],
        apply: Callable[[Any], None],
        check_bounds: Optional[Callable[[Any], None]] = None,
        is_risk_reducing: Optional[Callable[[Any, Any], bool]] = None,
    ):
        self.name = name
        self.get_current = get_current
        self.apply = apply
        self.check_bounds = check_bounds
        self.is_risk_reducing = is_risk_reducing

    def require_changed(self, value: Any) -> None:
        if value == self.get_current():
            raise InvalidStateError(f"{self.name} is already set to {value!r}")

    def submit(self, state: GovernanceState, value: Any, now: int) -> bool:
        """
        Returns:
            True if the value was applied immediately, False if it is now pending
        """
        if state.pending_for(self.name).is_pending:
            raise InvalidStateError(f"{self.name} already has a pending change")

        if self.check_bounds is not None:
            self.check_bounds(value)

        current = self.get_current()
        if self.is_risk_reducing is not None and self.is_risk_reducing(current, value):
            self.apply(value)
            logger.info(f"[TimelockedParameter:{self.name}] {current!r} -> {value!r} applied immediately")
            return True

        valid_at = now + state.timelock
        state.pending[self.name] = PendingChange(value=value, valid_at=valid_at)
        logger.info(f"[TimelockedParameter:{self.name}] {value!r} pending until {valid_at}")
        return False

    def accept(self, state: GovernanceState, now: int) -> Any:
        pending = state.pending_for(self.name)
        if not pending.is_pending:
            raise InvalidStateError(f"no pending change for {self.name}")
        if now < pending.valid_at:
            raise TimingViolationError(
                f"{self.name} timelock not elapsed: now={now}, valid_at={pending.valid_at}"
            )

        del state.pending[self.name]
        self.apply(pending.value)
        logger.info(f"[TimelockedParameter:{self.name}] accepted {pending.value!r}")
        return pending.value

    def revoke(self, state: GovernanceState) -> Any:
        pending = state.pending_for(self.name)
        if not pending.is_pending:
            raise InvalidStateError(f"no pending change for {self.name}")

        del state.pending[self.name]
        logger.info(f"[TimelockedParameter:{self.name}] revoked pending {pending.value!r}")
        return pending.value
