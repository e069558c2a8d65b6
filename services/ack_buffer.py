"""
AckBuffer - holds acknowledgment levels that arrive before their message

Owned by the service registry as a process-lifetime singleton. Entries are
keyed by (tenant id, message id) and merged with max(), so repeated or
reordered deliveries converge. The buffer is bounded; when full the oldest
entry is evicted. Losing entries on restart only delays ack state until the
provider re-delivers it.
"""

import threading
from collections import OrderedDict
from typing import Hashable, Optional

from logging_config import get_logger

logger = get_logger(__name__)


def merge_ack(current: Optional[int], incoming: Optional[int]) -> int:
    """Max-merge two ack levels; a missing side never lowers the other."""
    if incoming is None:
        return current or 0
    if current is None:
        return incoming
    return max(current, incoming)


class AckBuffer:
    """Bounded, lock-protected map of pending acknowledgment levels"""

    def __init__(self, max_entries: int = 10000):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: 'OrderedDict[Hashable, int]' = OrderedDict()
        self._lock = threading.Lock()

    def store(self, key: Hashable, ack: int) -> int:
        """
        Buffer an ack level, merging with any value already held.

        Returns:
            The merged level now held for the key
        """
        with self._lock:
            merged = merge_ack(self._entries.pop(key, None), ack)
            self._entries[key] = merged
            while len(self._entries) > self.max_entries:
                evicted_key, evicted_ack = self._entries.popitem(last=False)
                logger.warning("Ack buffer full, evicting oldest entry",
                               evicted_key=str(evicted_key), evicted_ack=evicted_ack,
                               max_entries=self.max_entries)
            return merged

    def consume(self, key: Hashable) -> Optional[int]:
        """Remove and return the buffered level for a key, if any."""
        with self._lock:
            return self._entries.pop(key, None)

    def peek(self, key: Hashable) -> Optional[int]:
        with self._lock:
            return self._entries.get(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
