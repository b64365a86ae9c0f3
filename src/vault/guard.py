"""
Operation guard: re-entrancy rejection plus transactional rollback.

Every state-mutating vault or governance operation runs inside
`guard.atomic(name)`. A nested call while one is in flight raises
ReentrancyError; any exception restores all registered participants.
"""

import logging
from contextlib import contextmanager
from typing import List, Optional

from .errors import ReentrancyError
from .transaction import Transaction

logger = logging.getLogger(__name__)


class OperationGuard:

    def __init__(self):
        self._participants: List[object] = []
        self._shared: List[object] = []
        self._active: Optional[str] = None

    def register(self, *participants: object) -> None:
        """Objects snapshotted and restored by every operation."""
        for obj in participants:
            if obj is not None and all(obj is not p for p in self._participants):
                self._participants.append(obj)

    def share(self, *collaborators: object) -> None:
        """Objects referenced by participants that must keep their identity."""
        for obj in collaborators:
            if obj is not None and all(obj is not s for s in self._shared):
                self._shared.append(obj)

    @property
    def active_operation(self) -> Optional[str]:
        return self._active

    @contextmanager
    def atomic(self, name: str):
        if self._active is not None:
            logger.warning(f"[OperationGuard] Rejected re-entrant {name} during {self._active}")
            raise ReentrancyError(f"{name} called while {self._active} is in flight")

        self._active = name
        try:
            with Transaction(self._participants, shared=self._shared, name=name):
                yield
        finally:
            self._active = None
