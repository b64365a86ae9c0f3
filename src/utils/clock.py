"""
Clocks for timelock evaluation.

Timelocks are evaluated lazily against "now" at call time; the vault takes any
zero-argument callable returning integer seconds.
"""

import time


def system_clock() -> int:
    """Wall-clock seconds."""
    return int(time.time())


class ManualClock:
    """Deterministic clock for simulations and tests."""

    def __init__(self, start: int = 1_700_000_000):
        self.now = int(start)

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"seconds must be >= 0, got {seconds}")
        self.now += int(seconds)
        return self.now
