"""
Single-value slots shared between the scan callback and the periodic tasks.

A slot holds one reference. Writers install a complete new value; readers
take the current value as a snapshot. Values put into a slot are never
mutated afterwards, so a snapshot stays consistent after the lock is
released.
"""

import threading
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class AtomicSlot(Generic[T]):
    """Lock-guarded holder of the latest value (or None when never set)."""

    def __init__(self, value: Optional[T] = None) -> None:
        self._lock = threading.Lock()
        self._value: Optional[T] = value

    def get(self) -> Optional[T]:
        with self._lock:
            return self._value

    def set(self, value: Optional[T]) -> None:
        with self._lock:
            self._value = value

    def set_if_empty(self, value: T) -> bool:
        """Install `value` only when the slot is still empty; returns True on success."""
        with self._lock:
            if self._value is not None:
                return False
            self._value = value
            return True

    @property
    def is_set(self) -> bool:
        with self._lock:
            return self._value is not None
