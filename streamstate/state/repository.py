"""
State repository: the materialized key/value projection of a stream.

Partition tasks dispatch into one repository concurrently, so every operation
takes the repository lock. Only single-key operations are atomic.
"""

import threading
from typing import Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from streamstate.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class StateRepository(Generic[T]):
    """
    Thread-safe, last-write-wins key/value store.

    Example:
        repository = StateRepository()
        repository.put("order-1", {"status": "open"})
        repository.compute("counter", lambda value: (value or 0) + 1)
    """

    def __init__(self, name: str = "default"):
        """
        Initialize repository.

        Args:
            name: Name used in log output (usually the stream name)
        """
        self.name = name
        self._entries: Dict[str, T] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, value: T) -> None:
        with self._lock:
            self._entries[key] = value

    def remove(self, key: str) -> Optional[T]:
        """
        Remove a key.

        Returns:
            The removed value, or None if the key was absent
        """
        with self._lock:
            return self._entries.pop(key, None)

    def compute(self, key: str, update: Callable[[Optional[T]], Optional[T]]) -> Optional[T]:
        """
        Atomically replace the value of a key.

        Args:
            key: Key to update
            update: Function from the current value (or None) to the new
                value; returning None removes the key

        Returns:
            The new value
        """
        with self._lock:
            value = update(self._entries.get(key))
            if value is None:
                self._entries.pop(key, None)
            else:
                self._entries[key] = value
            return value

    def keys(self) -> List[str]:
        """Keys present at call time, in insertion order."""
        with self._lock:
            return list(self._entries.keys())

    def items(self) -> List[Tuple[str, T]]:
        """Copy of all entries taken at call time, in insertion order."""
        with self._lock:
            return list(self._entries.items())

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()

        logger.info("Cleared state repository", repository=self.name, entries=count)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __repr__(self) -> str:
        return f"StateRepository(name={self.name!r}, size={self.size()})"
