# hrv_live/session/published.py
"""
Single-writer, multiple-reader published value.

The acquisition pipeline is the only writer; API handlers and exporters only
read. A reader always sees a complete value (the reference is swapped in one
step), never blocks the writer for longer than the swap, and can optionally
wait for the next publication.
"""

from threading import Condition
from typing import Generic, Optional, Tuple, TypeVar


T = TypeVar("T")


class PublishedCell(Generic[T]):
    """
    Holds the latest published value and a monotonically increasing version.
    """

    def __init__(self, initial: T) -> None:
        self._value: T = initial
        self._version: int = 0
        self._cond = Condition()

    def publish(self, value: T) -> int:
        """Swap in a new value, wake up waiting readers, return the new version."""
        with self._cond:
            self._value = value
            self._version += 1
            self._cond.notify_all()
            return self._version

    def get(self) -> T:
        """Latest value (plain reference read, no locking)."""
        return self._value

    @property
    def version(self) -> int:
        return self._version

    def read(self) -> Tuple[int, T]:
        """(version, value) pair read consistently."""
        with self._cond:
            return self._version, self._value

    def wait_for(self, version: int, timeout: Optional[float] = None) -> Tuple[int, T]:
        """
        Block until a version newer than `version` is published or the
        timeout expires; returns the (version, value) pair seen at wake-up.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._version > version, timeout=timeout)
            return self._version, self._value

    def __repr__(self) -> str:
        return f"<PublishedCell(version={self._version})>"
