"""Adaptive Replacement Cache with per-entry expiry.

Implements the ARC policy of Megiddo and Modha: two resident lists (``T1``
for entries seen once, ``T2`` for entries seen at least twice) and two ghost
lists (``B1``/``B2``) holding only keys of recently evicted entries. Hits on
a ghost key shift the adaptive target ``p`` towards recency or frequency.

Not thread safe on its own; callers hold a lock around every call.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional, Tuple

_Entry = Tuple[Any, Optional[float]]


class ARCCache:
    def __init__(self, capacity: int, clock: Callable[[], float] = time.monotonic) -> None:
        if capacity <= 0:
            raise ValueError("ARC capacity must be positive")
        self.capacity = capacity
        self._clock = clock
        self._p = 0.0
        self._t1: "OrderedDict[Hashable, _Entry]" = OrderedDict()
        self._t2: "OrderedDict[Hashable, _Entry]" = OrderedDict()
        self._b1: "OrderedDict[Hashable, None]" = OrderedDict()
        self._b2: "OrderedDict[Hashable, None]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._t1) + len(self._t2)

    @property
    def target(self) -> float:
        return self._p

    def get(self, key: Hashable) -> Tuple[Any, bool]:
        for resident in (self._t1, self._t2):
            if key not in resident:
                continue
            value, expires_at = resident[key]
            if expires_at is not None and expires_at <= self._clock():
                del resident[key]
                return None, False
            del resident[key]
            self._t2[key] = (value, expires_at)
            return value, True
        return None, False

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        entry = (value, expires_at)

        if key in self._t1 or key in self._t2:
            self._t1.pop(key, None)
            self._t2.pop(key, None)
            self._t2[key] = entry
            return

        if key in self._b1:
            delta = max(len(self._b2) / len(self._b1), 1.0)
            self._p = min(float(self.capacity), self._p + delta)
            self._replace(key)
            del self._b1[key]
            self._t2[key] = entry
            return

        if key in self._b2:
            delta = max(len(self._b1) / len(self._b2), 1.0)
            self._p = max(0.0, self._p - delta)
            self._replace(key)
            del self._b2[key]
            self._t2[key] = entry
            return

        l1 = len(self._t1) + len(self._b1)
        total = l1 + len(self._t2) + len(self._b2)
        if l1 >= self.capacity:
            if len(self._t1) < self.capacity:
                self._b1.popitem(last=False)
                self._replace(key)
            else:
                self._t1.popitem(last=False)
        elif total >= self.capacity:
            if total >= 2 * self.capacity:
                self._b2.popitem(last=False)
            self._replace(key)
        self._t1[key] = entry

    def _replace(self, key: Hashable) -> None:
        if len(self) < self.capacity:
            return
        t1_len = len(self._t1)
        if t1_len and (t1_len > self._p or (key in self._b2 and t1_len == int(self._p)) or not self._t2):
            evicted, _ = self._t1.popitem(last=False)
            self._b1[evicted] = None
        elif self._t2:
            evicted, _ = self._t2.popitem(last=False)
            self._b2[evicted] = None


__all__ = ["ARCCache"]
