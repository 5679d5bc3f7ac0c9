"""Exposure ledger: the set of ``(fixture_id, market)`` keys already admitted."""

from __future__ import annotations

import threading
from collections.abc import Iterable

from matchlab.parlays.types import ExposureKey


class ExposureLedger:
    """Thread-safe used-key set.

    A fresh ledger per batch scopes deduplication to that batch. Sharing one
    ledger between batches makes exposure exclusive across them; ``try_claim``
    checks and inserts all keys of a parlay under one lock.
    """

    def __init__(self, keys: Iterable[ExposureKey] = ()) -> None:
        self._keys: set[ExposureKey] = set(keys)
        self._lock = threading.Lock()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def try_claim(self, keys: Iterable[ExposureKey]) -> tuple[ExposureKey, ...]:
        """Claim every key or none; returns the conflicting keys (empty on success)."""

        wanted = tuple(keys)
        with self._lock:
            conflicts = tuple(key for key in wanted if key in self._keys)
            if not conflicts:
                self._keys.update(wanted)
            return conflicts

    def release(self, keys: Iterable[ExposureKey]) -> None:
        with self._lock:
            self._keys.difference_update(keys)

    def snapshot(self) -> frozenset[ExposureKey]:
        with self._lock:
            return frozenset(self._keys)
