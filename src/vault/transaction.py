"""
All-or-nothing execution over a set of stateful objects.

Snapshots each participant's __dict__ on entry and restores it if the body
raises. Shared collaborators (and the participants themselves) are seeded into
the deepcopy memo so cross references keep their identity after a restore.
"""

import logging
from copy import deepcopy
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class Transaction:

    def __init__(
        self,
        objects: Iterable[object],
        shared: Iterable[object] = (),
        name: Optional[str] = None,
    ):
        self.objects = list(objects)
        self.shared = list(shared)
        self.name = name or "tx"
        self._snapshots: Dict[int, dict] = {}

    def _memo(self) -> dict:
        memo = {id(obj): obj for obj in self.objects}
        memo.update({id(obj): obj for obj in self.shared})
        return memo

    def __enter__(self):
        self._snapshots = {
            id(obj): deepcopy(obj.__dict__, self._memo()) for obj in self.objects
        }
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self._rollback()
            logger.info(f"[Transaction] {self.name} rolled back: {exc_type.__name__}: {exc}")
        self._snapshots = {}
        return False

    def _rollback(self) -> None:
        for obj in self.objects:
            snap = self._snapshots.get(id(obj))
            if snap is not None:
                obj.__dict__.clear()
                obj.__dict__.update(deepcopy(snap, self._memo()))
