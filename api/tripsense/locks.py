"""
In-process lock registry keyed by connection id.

Only guards against overlapping polls inside one process; separate worker
processes each hold their own registry.
"""
import threading
from contextlib import contextmanager
from typing import Iterator, Set


class LockRegistry:
    def __init__(self):
        self._held: Set[str] = set()
        self._guard = threading.Lock()

    def try_acquire(self, key: str) -> bool:
        with self._guard:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def release(self, key: str) -> None:
        with self._guard:
            self._held.discard(key)

    @contextmanager
    def hold(self, key: str) -> Iterator[bool]:
        """Yield True when the key was acquired (and release it on exit), else False."""
        acquired = self.try_acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)
