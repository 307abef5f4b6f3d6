"""Per-key mutual exclusion with bounded waits."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class KeyedLock:
    """Serializes work per key inside one process; idle keys are discarded."""

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: str, *, timeout: float) -> Iterator[None]:
        """Hold the lock for ``key``. Raises ``TimeoutError`` after ``timeout`` seconds."""

        with self._guard:
            entry = self._entries.setdefault(key, _Entry())
            entry.holders += 1
        acquired = entry.lock.acquire(timeout=timeout)
        try:
            if not acquired:
                raise TimeoutError(f"Timed out waiting for lock {key!r}")
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


__all__ = ["KeyedLock"]
