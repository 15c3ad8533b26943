"""Borrow Tracking.

This module tracks scoped block borrows so structural mutation of a table
cannot happen while a borrowed buffer is still waiting to be released.

Key Concepts:
    - Borrow: A ``with table.block_of_rows(...)`` or
      ``with table.block_of_column_values(...)`` scope. The buffer is
      written back when the scope ends.
    - Structural Mutation: Resizing, allocating, freeing storage or adding
      tables to a merged table. Each checks the tracker first.

Safety Model:
    1. Disjoint borrows on dense storage may run concurrently.
    2. Structural mutation while any borrow is open raises
       ``BorrowConflictError``.
    3. Plain ``get_*`` / ``release_*`` calls are not tracked; callers using
       them serialise structural changes themselves.
"""

import threading
from contextlib import contextmanager
from typing import Iterator

from .errors import BorrowConflictError

__all__ = [
    'BorrowTracker',
]


class BorrowTracker:
    """Counts in-flight scoped borrows of one table.

    Attributes:
        _lock: Guards ``_active``.
        _active: Number of open borrows.

    Example:
        >>> tracker = BorrowTracker()
        >>> with tracker.borrow():
        ...     tracker.ensure_idle("resize")   # raises BorrowConflictError
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active = 0

    @property
    def active(self) -> int:
        """Number of open borrows."""
        with self._lock:
            return self._active

    @property
    def is_idle(self) -> bool:
        return self.active == 0

    def acquire(self) -> None:
        with self._lock:
            self._active += 1

    def release(self) -> None:
        with self._lock:
            if self._active == 0:
                raise RuntimeError("BorrowTracker released more often than acquired")
            self._active -= 1

    @contextmanager
    def borrow(self) -> Iterator[None]:
        """Hold a borrow for the duration of the ``with`` block."""
        self.acquire()
        try:
            yield
        finally:
            self.release()

    def ensure_idle(self, action: str) -> None:
        """Raise if any borrow is open.

        Args:
            action: Name of the structural change, used in the message.

        Raises:
            BorrowConflictError: If borrows are open.
        """
        active = self.active
        if active:
            raise BorrowConflictError(
                f"Cannot {action} while {active} block borrow(s) are open"
            )

    def __repr__(self) -> str:
        return f"BorrowTracker(active={self.active})"
