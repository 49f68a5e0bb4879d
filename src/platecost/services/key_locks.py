"""
Per-key lock registry for ledger writers.

On-hand updates are read-modify-write. Two writers touching the same
(item, location) key must be serialized, otherwise one decrement can
overwrite the other. Writers to different keys proceed in parallel.

Operations that touch several keys (a transfer debits one location and
credits another) acquire every key in sorted order so two opposite
transfers cannot deadlock.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterable, Iterator, List


class KeyedLockRegistry:
    """
    Thread-safe registry of one re-entrant lock per key.

    Locks are created on first use and kept for the life of the registry;
    the key space (items x locations) is bounded by master data.
    """

    def __init__(self):
        self._locks: Dict[Hashable, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        """
        Hold the locks for all given keys for the duration of the block.

        Duplicate keys are acquired once.

        Example:
            with ledger_locks.hold(("item-1", "loc-a"), ("item-1", "loc-b")):
                ...
        """
        ordered = sorted(set(keys), key=repr)
        acquired: List[threading.RLock] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def ledger_key(inventory_item_id: str, location_id: str) -> tuple:
    """Lock key for an (item, location) on-hand value."""
    return ("on_hand", inventory_item_id, location_id)


def ledger_keys(inventory_item_id: str, location_ids: Iterable[str]) -> List[tuple]:
    """Lock keys for one item at several locations."""
    return [ledger_key(inventory_item_id, location_id) for location_id in location_ids]


# Process-wide registry shared by every ledger operation
ledger_locks = KeyedLockRegistry()
