"""Counting semaphore that hands out releasable tokens."""

from __future__ import annotations

import threading
from typing import Callable


class Token:
    """A held slot of a semaphore; releasing it more than once is harmless."""

    def __init__(self, release: Callable[[], None]) -> None:
        self._release = release
        self._released = False
        self._lock = threading.Lock()

    def release(self) -> None:
        """Give the slot back. Only the first call has any effect."""
        with self._lock:
            if self._released:
                return
            self._released = True
        self._release()

    def __enter__(self) -> Token:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class Semaphore:
    """Limits the number of concurrently held tokens to ``size``."""

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("semaphore size must not be negative")
        self._sem = threading.Semaphore(size)

    def acquire(self, timeout: float | None = None) -> Token | None:
        """Wait for a free slot; return None if ``timeout`` seconds pass first."""
        if self._sem.acquire(timeout=timeout):
            return Token(self._sem.release)
        return None

    def try_acquire(self) -> Token | None:
        """Take a free slot without waiting, or return None if none is free."""
        if self._sem.acquire(blocking=False):
            return Token(self._sem.release)
        return None