"""In-memory exclusivity marker for directly triggered backup runs."""

from __future__ import annotations

import threading

from .models import NamespacedName


class RunGuard:
    """Set of identities that currently have a direct run in flight.

    Scheduled runs are not tracked here; their ScheduleEntry is.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[NamespacedName] = set()

    def try_acquire(self, key: NamespacedName) -> bool:
        """Insert ``key`` unless already present.

        Returns:
            True if this call inserted it
        """
        with self._lock:
            if key in self._active:
                return False
            self._active.add(key)
            return True

    def release(self, key: NamespacedName) -> None:
        with self._lock:
            self._active.discard(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._active

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)
