"""Process-wide admission gate bounding concurrently active jobs."""

from __future__ import annotations

import threading


class ConcurrencyGate:
    """Non-blocking bounded counter shared by every worker in a process."""

    def __init__(self, max_active: int) -> None:
        if max_active <= 0:
            raise ValueError(f"max_active must be a positive integer, got {max_active}.")
        self._max_active = max_active
        self._active = 0
        self._lock = threading.Lock()

    @property
    def max_active(self) -> int:
        return self._max_active

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    def try_admit(self) -> bool:
        """Take a slot if one is free; never blocks and never waits for one."""

        with self._lock:
            if self._active >= self._max_active:
                return False
            self._active += 1
            return True

    def release(self) -> None:
        """Return a slot. Unmatched releases leave the counter at zero."""

        with self._lock:
            self._active = max(0, self._active - 1)
